"""Plausibility checks and the verification score."""

from datetime import date
from typing import Dict, List, Optional, Tuple

from dateutil.relativedelta import relativedelta
from pydantic import BaseModel

from .models import ExtractionResult, FraudReason, FraudVerdict

LOW_CONFIDENCE = 'LOW_CONFIDENCE'
TITLE_MISMATCH = 'TITLE_MISMATCH'
PRICE_OUT_OF_RANGE = 'PRICE_OUT_OF_RANGE'
RETAILER_MISMATCH = 'RETAILER_MISMATCH'
DATE_IN_FUTURE = 'DATE_IN_FUTURE'
DATE_OUT_OF_RANGE = 'DATE_OUT_OF_RANGE'

# Plausible price band per format, inclusive
PRICE_BANDS: Dict[str, Tuple[float, float]] = {
    'hardcover': (15.0, 100.0),
    'ebook': (5.0, 30.0),
    'audiobook': (10.0, 50.0),
}

# Used for the score when the format is unknown
MAX_PLAUSIBLE_AMOUNT = 200.0


class VerificationPolicy(BaseModel):
    """Thresholds for scoring and automated decisions."""

    low_confidence_threshold: float = 0.5
    expected_title_token: str = 'ai-born'
    staleness_months: int = 6
    auto_verify_score: int = 80
    auto_verify_min_confidence: float = 0.8
    decisive_reject_confidence: float = 0.8

    @classmethod
    def from_settings(cls, settings) -> 'VerificationPolicy':
        return cls(
            low_confidence_threshold=settings.LOW_CONFIDENCE_THRESHOLD,
            expected_title_token=settings.EXPECTED_TITLE_TOKEN,
            staleness_months=settings.PURCHASE_STALENESS_MONTHS,
            auto_verify_score=settings.AUTO_VERIFY_SCORE,
            auto_verify_min_confidence=settings.AUTO_VERIFY_MIN_CONFIDENCE,
            decisive_reject_confidence=settings.DECISIVE_REJECT_CONFIDENCE
        )


def title_matches(book_title: Optional[str], policy: VerificationPolicy) -> bool:
    return bool(book_title) and policy.expected_title_token.lower() in book_title.lower()


def amount_in_band(amount: Optional[float], purchase_format: Optional[str]) -> bool:
    """Whether the amount is plausible for the format (any book price if unknown)."""
    if amount is None:
        return False
    band = PRICE_BANDS.get(purchase_format or '')
    if band is None:
        return 0 < amount < MAX_PLAUSIBLE_AMOUNT
    low, high = band
    return low <= amount <= high


def check_receipt_fraud(
    result: ExtractionResult,
    expected_retailer: Optional[str],
    today: date,
    policy: Optional[VerificationPolicy] = None
) -> FraudVerdict:
    """
    Run the plausibility rules against an extraction result.

    Each violated rule contributes one reason.

    Args:
        result: Extraction result
        expected_retailer: Retailer declared by the submitter
        today: Reference date
        policy: Thresholds (default policy when omitted)

    Returns:
        FraudVerdict; suspected when any reason was found
    """
    policy = policy or VerificationPolicy()
    reasons: List[FraudReason] = []

    if result.confidence < policy.low_confidence_threshold:
        reasons.append(FraudReason(
            code=LOW_CONFIDENCE,
            message=f"Extraction confidence {result.confidence:.2f} is below {policy.low_confidence_threshold}"
        ))

    if not title_matches(result.book_title, policy):
        reasons.append(FraudReason(
            code=TITLE_MISMATCH,
            message=f"Book title does not match {policy.expected_title_token}"
        ))

    if result.amount is not None and result.format in PRICE_BANDS:
        if not amount_in_band(result.amount, result.format):
            low, high = PRICE_BANDS[result.format]
            reasons.append(FraudReason(
                code=PRICE_OUT_OF_RANGE,
                message=f"{result.format.capitalize()} price outside expected range ({low:.0f}-{high:.0f})"
            ))

    if expected_retailer and result.retailer:
        if expected_retailer.strip().lower() not in result.retailer.lower():
            reasons.append(FraudReason(code=RETAILER_MISMATCH, message="Retailer mismatch"))

    purchase_date = result.purchase_date or result.rejected_purchase_date
    if purchase_date is not None:
        if purchase_date > today:
            reasons.append(FraudReason(code=DATE_IN_FUTURE, message="Purchase date is in the future"))
        elif purchase_date < today - relativedelta(months=policy.staleness_months):
            reasons.append(FraudReason(
                code=DATE_OUT_OF_RANGE,
                message=f"Purchase date is more than {policy.staleness_months} months old"
            ))

    return FraudVerdict(suspected=bool(reasons), reasons=reasons)


def calculate_verification_score(
    result: ExtractionResult,
    today: date,
    policy: Optional[VerificationPolicy] = None
) -> int:
    """
    Weighted verification score from 0 to 100.

    Confidence contributes up to 40 points, a title match 20, a detected
    retailer 15, an amount in its price band 15 and a valid purchase date 10.
    """
    policy = policy or VerificationPolicy()
    score = result.confidence * 40

    if title_matches(result.book_title, policy):
        score += 20

    if result.retailer:
        score += 15

    if amount_in_band(result.amount, result.format):
        score += 15

    if result.purchase_date is not None and result.purchase_date <= today:
        score += 10

    return max(0, min(100, round(score)))
