"""Data models shared by the verification stages."""

from datetime import date
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class StageResult(BaseModel):
    """
    Outcome of one pipeline stage.

    Expected failures (provider timeouts, unparseable responses) are reported
    here instead of being raised. A failed stage may still carry a value, for
    example the conservative extraction result used after a parse failure.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True)

    ok: bool
    value: Optional[Any] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    attempts: int = 1

    @classmethod
    def success(cls, value: Any, attempts: int = 1) -> 'StageResult':
        return cls(ok=True, value=value, attempts=attempts)

    @classmethod
    def failure(
        cls,
        error_code: str,
        error_message: str,
        value: Any = None,
        attempts: int = 1
    ) -> 'StageResult':
        return cls(
            ok=False,
            value=value,
            error_code=error_code,
            error_message=error_message,
            attempts=attempts
        )


class OcrText(BaseModel):
    """Raw text read from a receipt."""

    text: str = Field(..., repr=False)
    confidence: float
    line_count: int


class RedactionResult(BaseModel):
    """Redacted copy of a text and the PII categories found in it."""

    redacted_text: str
    pii_detected: List[str]
    redaction_count: int


class ExtractionResult(BaseModel):
    """Structured purchase details read from receipt text."""

    retailer: Optional[str] = None
    retailer_confidence: float = 0.0
    amount: Optional[float] = None
    currency: Optional[str] = None
    amount_confidence: float = 0.0
    book_title: Optional[str] = None
    book_title_confidence: float = 0.0
    purchase_date: Optional[date] = None
    # A date the extractor reported but that failed plausibility checks
    rejected_purchase_date: Optional[date] = None
    order_number: Optional[str] = None
    format: Optional[str] = None
    pii_detected: List[str] = []
    requires_manual_review: bool = True
    manual_review_reason: Optional[str] = None
    confidence: float = 0.0

    @classmethod
    def conservative(cls, reason: str) -> 'ExtractionResult':
        """All fields empty, zero confidence, manual review forced."""
        return cls(requires_manual_review=True, manual_review_reason=reason, confidence=0.0)


class FraudReason(BaseModel):
    code: str
    message: str


class FraudVerdict(BaseModel):
    """Result of the plausibility checks. A suspected fraud is a verdict, not an error."""

    suspected: bool
    reasons: List[FraudReason] = []

    @property
    def codes(self) -> List[str]:
        return [reason.code for reason in self.reasons]


class DecisionOutcome(str, Enum):
    AUTO_VERIFY = "AUTO_VERIFY"
    AUTO_REJECT = "AUTO_REJECT"
    MANUAL_REVIEW = "MANUAL_REVIEW"


class Decision(BaseModel):
    """What the pipeline does with a receipt after scoring."""

    model_config = ConfigDict(use_enum_values=True)

    outcome: DecisionOutcome
    reason: Optional[str] = None


class VerificationRecord(BaseModel):
    """One processing attempt, appended to the verifications table."""

    receipt_id: str
    attempt_id: str
    started_at: str
    completed_at: str
    duration_ms: int

    # OCR
    ocr_confidence: Optional[float] = None
    ocr_error: Optional[str] = None
    ocr_attempts: int = 0

    # Redaction; raw OCR text is never persisted
    ocr_text: Optional[str] = None
    pii_categories: List[str] = []
    redaction_count: int = 0

    # Extraction
    extraction: Optional[Dict[str, Any]] = None
    extraction_error: Optional[str] = None
    requires_manual_review: bool = True
    manual_review_reason: Optional[str] = None

    # Scoring
    fraud_suspected: bool = False
    fraud_reasons: List[FraudReason] = []
    verification_score: int = 0

    decision: str
    decision_reason: Optional[str] = None
