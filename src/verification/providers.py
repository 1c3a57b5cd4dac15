"""
Provider construction.

Real providers are AWS clients. Stub providers exist for local development
only; ``Settings.validate_runtime`` refuses them in production.
"""

import logging
from datetime import date
from typing import Optional

from shared.config import Settings
from bonus.email_service import EmailService, Notifier, StubNotifier
from .extraction import EXTRACTION_UNAVAILABLE, ReceiptExtractionService
from .models import ExtractionResult, StageResult
from .textract_service import OCR_UNAVAILABLE, TextractService

logger = logging.getLogger(__name__)


class StubOcrProvider:
    """Reads nothing; every receipt ends up in manual review."""

    def extract_text(self, bucket: str, key: str) -> StageResult:
        logger.info(f"Stub OCR provider skipped s3://{bucket}/{key}")
        return StageResult.failure(OCR_UNAVAILABLE, 'OCR provider is stubbed', attempts=0)


class StubExtractor:
    """Returns the conservative extraction result."""

    def extract(self, raw_text: str, today: Optional[date] = None) -> StageResult:
        return StageResult.failure(
            EXTRACTION_UNAVAILABLE,
            'Extraction provider is stubbed',
            value=ExtractionResult.conservative(EXTRACTION_UNAVAILABLE),
            attempts=0
        )


def build_ocr_provider(settings: Settings):
    if settings.USE_STUB_PROVIDERS:
        logger.warning("Using stub OCR provider")
        return StubOcrProvider()

    return TextractService(
        max_attempts=settings.PROVIDER_MAX_ATTEMPTS,
        base_delay=settings.PROVIDER_BACKOFF_BASE_SECONDS,
        max_delay=settings.PROVIDER_BACKOFF_MAX_SECONDS,
        connect_timeout=settings.PROVIDER_CONNECT_TIMEOUT,
        read_timeout=settings.PROVIDER_READ_TIMEOUT
    )


def build_extractor(settings: Settings):
    if settings.USE_STUB_PROVIDERS:
        logger.warning("Using stub extraction provider")
        return StubExtractor()

    return ReceiptExtractionService(
        model_id=settings.BEDROCK_MODEL_ID,
        max_age_years=settings.MAX_PLAUSIBLE_RECEIPT_AGE_YEARS,
        max_attempts=settings.PROVIDER_MAX_ATTEMPTS,
        base_delay=settings.PROVIDER_BACKOFF_BASE_SECONDS,
        max_delay=settings.PROVIDER_BACKOFF_MAX_SECONDS,
        connect_timeout=settings.PROVIDER_CONNECT_TIMEOUT,
        read_timeout=settings.PROVIDER_READ_TIMEOUT
    )


def build_notifier(settings: Settings) -> Notifier:
    if settings.USE_STUB_PROVIDERS:
        logger.warning("Using stub notifier")
        return StubNotifier()

    return EmailService(
        sender_email=settings.SES_SENDER_EMAIL,
        max_attempts=settings.PROVIDER_MAX_ATTEMPTS,
        base_delay=settings.PROVIDER_BACKOFF_BASE_SECONDS,
        max_delay=settings.PROVIDER_BACKOFF_MAX_SECONDS
    )
