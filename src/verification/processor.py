"""Background processing of one receipt: OCR through decision."""

import time
import uuid
import logging
from datetime import date, datetime
from typing import Callable, List, Optional

from receipts.models import Receipt
from receipts.repository import ReceiptRepository
from review.service import ReviewService
from .decision import decide
from .models import (
    Decision,
    DecisionOutcome,
    ExtractionResult,
    FraudVerdict,
    StageResult,
    VerificationRecord,
)
from .redaction import redact_pii
from .scoring import VerificationPolicy, calculate_verification_score, check_receipt_fraud

logger = logging.getLogger(__name__)


def merge_pii_categories(regex_categories: List[str], extractor_categories: List[str], receipt_id: str) -> List[str]:
    """Union of both PII passes; disagreement is logged, never resolved."""
    regex_set = set(regex_categories)
    extractor_set = set(extractor_categories)

    if extractor_set - regex_set:
        logger.info(
            f"Extractor reported PII not found by pattern scan for {receipt_id}: "
            f"{sorted(extractor_set - regex_set)}"
        )
    if regex_set and not extractor_set:
        logger.info(f"Pattern scan found PII the extractor did not report for {receipt_id}")

    return sorted(regex_set | extractor_set)


class ReceiptProcessor:
    """
    Runs the verification stages for a receipt and applies the outcome.

    Each call appends one VerificationRecord. Receipts that already reached
    a terminal state are not processed again.
    """

    def __init__(
        self,
        receipts: ReceiptRepository,
        review: ReviewService,
        ocr_provider,
        extractor,
        receipts_bucket: str,
        policy: Optional[VerificationPolicy] = None,
        today: Optional[Callable[[], date]] = None
    ):
        self.receipts = receipts
        self.review = review
        self.ocr_provider = ocr_provider
        self.extractor = extractor
        self.receipts_bucket = receipts_bucket
        self.policy = policy or VerificationPolicy()
        self.today = today or (lambda: datetime.utcnow().date())

    def process(self, receipt_id: str) -> Optional[VerificationRecord]:
        """
        Process one receipt.

        Args:
            receipt_id: Receipt ID

        Returns:
            The appended VerificationRecord, or None if the receipt was
            missing or already settled
        """
        receipt = self.receipts.get_receipt(receipt_id, consistent_read=True)
        if receipt is None:
            logger.warning(f"Receipt {receipt_id} not found; dropping message")
            return None

        if receipt.current_status.is_terminal:
            logger.info(f"Receipt {receipt_id} already {receipt.status}; skipping verification")
            self.review.reconcile(receipt)
            return None

        started = datetime.utcnow()
        started_clock = time.monotonic()
        today = self.today()

        logger.info(f"Step 1: Detecting text for receipt {receipt_id}")
        ocr = self.ocr_provider.extract_text(self.receipts_bucket, receipt.storage_key)

        if not ocr.ok:
            logger.warning(f"OCR failed for receipt {receipt_id}: {ocr.error_code}")
            decision = decide(0, None, None, ocr_ok=False, policy=self.policy)
            record = self._record(
                receipt, started, started_clock, ocr, decision,
                extraction_stage=None, redaction=None, verdict=None, score=0, pii=[]
            )
        else:
            logger.info(f"Step 2: Redacting PII for receipt {receipt_id}")
            redaction = redact_pii(ocr.value.text)

            logger.info(f"Step 3: Extracting purchase details for receipt {receipt_id}")
            extraction_stage = self.extractor.extract(ocr.value.text, today)
            extraction: ExtractionResult = extraction_stage.value

            pii = merge_pii_categories(redaction.pii_detected, extraction.pii_detected, receipt_id)

            logger.info(f"Step 4: Scoring receipt {receipt_id}")
            verdict = check_receipt_fraud(extraction, receipt.retailer, today, self.policy)
            score = calculate_verification_score(extraction, today, self.policy)
            decision = decide(score, extraction, verdict, ocr_ok=True, policy=self.policy)

            record = self._record(
                receipt, started, started_clock, ocr, decision,
                extraction_stage=extraction_stage, redaction=redaction,
                verdict=verdict, score=score, pii=pii
            )

        self.receipts.append_verification(record.model_dump(mode='json'))

        logger.info(
            f"Step 5: Applying decision {decision.outcome} ({decision.reason}) "
            f"to receipt {receipt_id}, score {record.verification_score}"
        )
        self.review.apply_automated_decision(receipt_id, decision, score=record.verification_score)

        return record

    def _record(
        self,
        receipt: Receipt,
        started: datetime,
        started_clock: float,
        ocr: StageResult,
        decision: Decision,
        extraction_stage: Optional[StageResult],
        redaction,
        verdict: Optional[FraudVerdict],
        score: int,
        pii: List[str]
    ) -> VerificationRecord:
        extraction: Optional[ExtractionResult] = extraction_stage.value if extraction_stage else None

        manual_review = decision.outcome == DecisionOutcome.MANUAL_REVIEW
        if extraction is not None:
            extraction_data = extraction.model_dump(mode='json', exclude={'pii_detected'})
        else:
            extraction_data = None

        return VerificationRecord(
            receipt_id=receipt.receipt_id,
            attempt_id=f"{started.isoformat()}#{uuid.uuid4().hex[:8]}",
            started_at=started.isoformat(),
            completed_at=datetime.utcnow().isoformat(),
            duration_ms=int((time.monotonic() - started_clock) * 1000),
            ocr_confidence=ocr.value.confidence if ocr.ok else None,
            ocr_error=None if ocr.ok else ocr.error_code,
            ocr_attempts=ocr.attempts,
            ocr_text=redaction.redacted_text if redaction else None,
            pii_categories=pii,
            redaction_count=redaction.redaction_count if redaction else 0,
            extraction=extraction_data,
            extraction_error=(
                extraction_stage.error_code
                if extraction_stage is not None and not extraction_stage.ok else None
            ),
            requires_manual_review=manual_review,
            manual_review_reason=decision.reason if manual_review else None,
            fraud_suspected=verdict.suspected if verdict else False,
            fraud_reasons=verdict.reasons if verdict else [],
            verification_score=score,
            decision=decision.outcome,
            decision_reason=decision.reason
        )
