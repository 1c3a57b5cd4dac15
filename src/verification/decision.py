"""Automated decision policy."""

from typing import Optional

from .models import Decision, DecisionOutcome, ExtractionResult, FraudVerdict
from .scoring import DATE_IN_FUTURE, TITLE_MISMATCH, VerificationPolicy

OCR_FAILED = 'OCR_FAILED'
SCORE_BELOW_THRESHOLD = 'SCORE_BELOW_THRESHOLD'

# Reasons that reject outright when the extraction is confident
DECISIVE_FRAUD_CODES = {TITLE_MISMATCH, DATE_IN_FUTURE}


def decide(
    score: int,
    extraction: Optional[ExtractionResult],
    verdict: Optional[FraudVerdict],
    ocr_ok: bool,
    policy: Optional[VerificationPolicy] = None
) -> Decision:
    """
    Decide what happens to a receipt after scoring.

    Rules, first match wins:
      1. OCR failed: manual review (OCR_FAILED).
      2. A decisive fraud reason with confident extraction: reject.
      3. The extraction asked for manual review: manual review with its reason.
      4. Any other fraud reason: manual review listing the reason codes.
      5. Score and confidence at or above the thresholds: verify.
      6. Otherwise: manual review (SCORE_BELOW_THRESHOLD).
    """
    policy = policy or VerificationPolicy()

    if not ocr_ok or extraction is None:
        return Decision(outcome=DecisionOutcome.MANUAL_REVIEW, reason=OCR_FAILED)

    codes = verdict.codes if verdict and verdict.suspected else []

    decisive = [code for code in codes if code in DECISIVE_FRAUD_CODES]
    if decisive and extraction.confidence >= policy.decisive_reject_confidence:
        return Decision(outcome=DecisionOutcome.AUTO_REJECT, reason=','.join(decisive))

    if extraction.requires_manual_review:
        return Decision(
            outcome=DecisionOutcome.MANUAL_REVIEW,
            reason=extraction.manual_review_reason or 'EXTRACTOR_FLAGGED'
        )

    if codes:
        return Decision(outcome=DecisionOutcome.MANUAL_REVIEW, reason=','.join(codes))

    if score >= policy.auto_verify_score and extraction.confidence >= policy.auto_verify_min_confidence:
        return Decision(outcome=DecisionOutcome.AUTO_VERIFY)

    return Decision(outcome=DecisionOutcome.MANUAL_REVIEW, reason=SCORE_BELOW_THRESHOLD)
