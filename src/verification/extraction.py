"""
Structured extraction of purchase details with Amazon Bedrock.

The model's reply is untrusted: it is parsed and validated defensively, and
any reply that does not fit the expected schema becomes a conservative result
that forces manual review.
"""

import os
import re
import json
import math
import logging
from datetime import date, datetime
from typing import Any, List, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from dateutil import parser as date_parser
from dateutil.relativedelta import relativedelta
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from shared.retry import RetryExhaustedError, provider_client_config, retry_call
from .models import ExtractionResult, StageResult

logger = logging.getLogger(__name__)

PARSE_FAILURE = 'PARSE_FAILURE'
EXTRACTION_UNAVAILABLE = 'EXTRACTION_UNAVAILABLE'
DATE_IMPLAUSIBLE = 'DATE_IMPLAUSIBLE'
AMOUNT_IMPLAUSIBLE = 'AMOUNT_IMPLAUSIBLE'

CURRENCY_PATTERN = re.compile(r'^[A-Z]{3}$')

EXTRACTION_PROMPT = """You are a receipt verification expert. Read the receipt text below and extract the purchase details.

RECEIPT TEXT:
{receipt_text}

Extract:
1. RETAILER: the retailer or bookstore name (Amazon, Barnes & Noble, Bookshop.org, Apple Books, Google Play, Kobo, an independent bookstore, ...)
2. AMOUNT: the purchase total as a number
3. CURRENCY: the ISO currency code (USD, GBP, EUR, AUD, ...)
4. BOOK TITLE: the book title as printed, if "AI-Born" is mentioned
5. PURCHASE DATE: the purchase date as YYYY-MM-DD
6. ORDER NUMBER: the order or transaction id
7. FORMAT: hardcover, ebook or audiobook
8. PII: the kinds of personal information present (names, addresses, phone numbers, email addresses, card numbers)

Rate your confidence from 0.0 to 1.0 for the retailer, the amount, the title and overall.

Set requiresManualReview to true when overall confidence is below 0.7, the receipt looks altered or suspicious, the title is not "AI-Born", the amount is unusual for a book, the text is poor quality, or required details are missing.

Respond ONLY with JSON of exactly this shape:
{{
  "retailer": string | null,
  "retailerConfidence": number,
  "amount": number | null,
  "currency": string | null,
  "amountConfidence": number,
  "bookTitle": string | null,
  "bookTitleConfidence": number,
  "purchaseDate": string | null,
  "orderNumber": string | null,
  "format": "hardcover" | "ebook" | "audiobook" | null,
  "piiDetected": string[],
  "requiresManualReview": boolean,
  "manualReviewReason": string | null,
  "overallConfidence": number
}}"""


class ExtractionPayload(BaseModel):
    """Schema the model's JSON reply must satisfy."""

    model_config = ConfigDict(extra='ignore')

    # Keys that must be present, even if null
    retailer: Optional[str]
    amount: Optional[float]
    currency: Optional[str]
    bookTitle: Optional[str]
    purchaseDate: Optional[str]
    format: Optional[str]
    requiresManualReview: bool
    overallConfidence: float = Field(..., ge=0.0, le=1.0)

    retailerConfidence: float = Field(default=0.0, ge=0.0, le=1.0)
    amountConfidence: float = Field(default=0.0, ge=0.0, le=1.0)
    bookTitleConfidence: float = Field(default=0.0, ge=0.0, le=1.0)
    orderNumber: Optional[str] = None
    piiDetected: List[str] = []
    manualReviewReason: Optional[str] = None


def normalize_format(value: Optional[str]) -> Optional[str]:
    """Map free-text format descriptions to hardcover, ebook or audiobook."""
    if not value:
        return None

    normalized = value.lower().strip()

    if any(token in normalized for token in ('hard', 'physical', 'print')):
        return 'hardcover'
    if any(token in normalized for token in ('ebook', 'e-book', 'kindle', 'digital')):
        return 'ebook'
    if any(token in normalized for token in ('audio', 'audible')):
        return 'audiobook'
    return None


def _locate_json(raw: str) -> Optional[str]:
    """The outermost {...} span of a reply, ignoring any surrounding prose."""
    start = raw.find('{')
    end = raw.rfind('}')
    if start == -1 or end <= start:
        return None
    return raw[start:end + 1]


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date_parser.parse(value, default=datetime(2000, 1, 1)).date()
    except (ValueError, OverflowError):
        return None


def parse_extraction_response(
    raw: Optional[str],
    today: date,
    max_age_years: int = 5
) -> ExtractionResult:
    """
    Parse and validate the model's reply.

    Args:
        raw: Reply text
        today: Reference date for date plausibility
        max_age_years: Oldest plausible purchase date, in years before today

    Returns:
        ExtractionResult. A reply that is not JSON or does not fit the schema
        yields the conservative result with reason PARSE_FAILURE.
    """
    candidate = _locate_json(raw or '')
    if candidate is None:
        logger.warning("Extraction reply contained no JSON object")
        return ExtractionResult.conservative(PARSE_FAILURE)

    try:
        data = json.loads(candidate)
        if not isinstance(data, dict):
            raise ValueError("Extraction reply is not a JSON object")
        payload = ExtractionPayload.model_validate(data)
    except (ValueError, PydanticValidationError) as e:
        logger.warning(f"Extraction reply failed validation: {type(e).__name__}")
        return ExtractionResult.conservative(PARSE_FAILURE)

    review_reasons: List[str] = []
    if payload.requiresManualReview:
        review_reasons.append(payload.manualReviewReason or 'EXTRACTOR_FLAGGED')

    amount = payload.amount
    if amount is not None and (not math.isfinite(amount) or amount <= 0):
        amount = None
        review_reasons.append(AMOUNT_IMPLAUSIBLE)

    currency = (payload.currency or '').strip().upper() or None
    if currency is not None and not CURRENCY_PATTERN.match(currency):
        currency = None
    if currency is None and amount is not None:
        currency = 'USD'

    purchase_date = _parse_date(payload.purchaseDate)
    rejected_date = None
    if payload.purchaseDate and purchase_date is None:
        review_reasons.append(DATE_IMPLAUSIBLE)
    elif purchase_date is not None:
        oldest = today - relativedelta(years=max_age_years)
        if purchase_date > today or purchase_date < oldest:
            logger.info(f"Extracted purchase date outside plausible range: {purchase_date}")
            rejected_date = purchase_date
            purchase_date = None
            review_reasons.append(DATE_IMPLAUSIBLE)

    return ExtractionResult(
        retailer=(payload.retailer or '').strip() or None,
        retailer_confidence=payload.retailerConfidence,
        amount=amount,
        currency=currency,
        amount_confidence=payload.amountConfidence if amount is not None else 0.0,
        book_title=(payload.bookTitle or '').strip() or None,
        book_title_confidence=payload.bookTitleConfidence,
        purchase_date=purchase_date,
        rejected_purchase_date=rejected_date,
        order_number=(payload.orderNumber or '').strip() or None,
        format=normalize_format(payload.format),
        pii_detected=sorted({item.strip().lower() for item in payload.piiDetected if item and item.strip()}),
        requires_manual_review=bool(review_reasons),
        manual_review_reason='; '.join(review_reasons) or None,
        confidence=payload.overallConfidence
    )


class ReceiptExtractionService:
    """Extracts purchase details from receipt text with a Bedrock model."""

    def __init__(
        self,
        model_id: str,
        client: Optional[Any] = None,
        max_age_years: int = 5,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 8.0,
        connect_timeout: int = 5,
        read_timeout: int = 30,
        sleep=None
    ):
        if client is not None:
            self.client = client
        else:
            config = provider_client_config(connect_timeout, read_timeout)
            # Support for LocalStack
            endpoint_url = os.environ.get('LOCALSTACK_ENDPOINT')
            if endpoint_url and os.environ.get('USE_LOCALSTACK', 'false').lower() == 'true':
                self.client = boto3.client('bedrock-runtime', endpoint_url=endpoint_url, config=config)
            else:
                self.client = boto3.client('bedrock-runtime', config=config)

        self.model_id = model_id
        self.max_age_years = max_age_years
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.sleep = sleep

    def extract(self, raw_text: str, today: Optional[date] = None) -> StageResult:
        """
        Extract purchase details from raw receipt text.

        Args:
            raw_text: Unredacted OCR text
            today: Reference date (default: current UTC date)

        Returns:
            StageResult whose value is always an ExtractionResult. The stage
            fails with EXTRACTION_UNAVAILABLE when the model could not be
            reached and PARSE_FAILURE when its reply was unusable; both carry
            the conservative result.
        """
        today = today or datetime.utcnow().date()
        attempts = 0

        def call():
            nonlocal attempts
            attempts += 1
            return self.client.converse(
                modelId=self.model_id,
                messages=[{
                    'role': 'user',
                    'content': [{'text': EXTRACTION_PROMPT.format(receipt_text=raw_text)}]
                }],
                inferenceConfig={'maxTokens': 2000, 'temperature': 0}
            )

        try:
            response = retry_call(
                call,
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                max_delay=self.max_delay,
                sleep=self.sleep
            )
        except RetryExhaustedError as e:
            return self._unavailable(str(e.last_error), attempts)
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            logger.error(f"Bedrock extraction failed: {error_code}")
            return self._unavailable(error_code, attempts)
        except BotoCoreError as e:
            logger.error(f"Bedrock call failed: {str(e)}")
            return self._unavailable(str(e), attempts)

        reply = self._reply_text(response)
        result = parse_extraction_response(reply, today, self.max_age_years)

        if result.manual_review_reason == PARSE_FAILURE:
            return StageResult.failure(PARSE_FAILURE, 'Extraction reply was not valid', value=result, attempts=attempts)

        return StageResult.success(result, attempts=attempts)

    @staticmethod
    def _reply_text(response: dict) -> str:
        content = response.get('output', {}).get('message', {}).get('content', [])
        return ''.join(block.get('text', '') for block in content if isinstance(block, dict))

    @staticmethod
    def _unavailable(message: str, attempts: int) -> StageResult:
        return StageResult.failure(
            EXTRACTION_UNAVAILABLE,
            message,
            value=ExtractionResult.conservative(EXTRACTION_UNAVAILABLE),
            attempts=attempts
        )
