"""Builds the service graph shared by all Lambda handlers."""

import logging
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict

from shared.config import Settings, get_settings
from shared.dynamodb import DynamoDBClient
from shared.rate_limiter import build_rate_limiter
from shared.s3 import S3Client
from receipts.duplicate_guard import DuplicateGuard
from receipts.repository import ReceiptRepository
from receipts.storage import ReceiptStorage
from receipts.submission import ReceiptSubmissionService
from review.service import ReviewService
from bonus.entitlement import EntitlementService
from bonus.repository import ClaimRepository
from verification.processor import ReceiptProcessor
from verification.providers import build_extractor, build_notifier, build_ocr_provider
from verification.scoring import VerificationPolicy

logger = logging.getLogger(__name__)


class Services(BaseModel):
    """Wired services for one Lambda container."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    settings: Settings
    receipts: ReceiptRepository
    submission: ReceiptSubmissionService
    review: ReviewService
    entitlements: EntitlementService
    processor: ReceiptProcessor


def build_services(
    settings: Optional[Settings] = None,
    dynamodb_resource: Optional[Any] = None,
    s3_client: Optional[Any] = None,
    sqs_client: Optional[Any] = None,
    ocr_provider: Optional[Any] = None,
    extractor: Optional[Any] = None,
    notifier: Optional[Any] = None,
    rate_limiter: Optional[Any] = None
) -> Services:
    """
    Build every service from settings.

    Collaborators can be passed in to replace the ones built from settings.

    Raises:
        ConfigurationError: If the configuration is not valid for this environment
    """
    settings = settings or get_settings()
    settings.validate_runtime()

    def table(name: str) -> DynamoDBClient:
        return DynamoDBClient(name, resource=dynamodb_resource)

    receipts_table = table(settings.RECEIPTS_TABLE)
    receipts = ReceiptRepository(
        receipts_table=receipts_table,
        fingerprints_table=table(settings.FINGERPRINTS_TABLE),
        verifications_table=table(settings.VERIFICATIONS_TABLE)
    )
    claims = ClaimRepository(
        claims_table=table(settings.CLAIMS_TABLE),
        entitlements_table=table(settings.ENTITLEMENTS_TABLE),
        receipts_table=receipts_table
    )

    entitlements = EntitlementService(
        claims=claims,
        receipts=receipts,
        assets_storage=S3Client(settings.BONUS_ASSETS_BUCKET, client=s3_client),
        notifier=notifier or build_notifier(settings),
        ttl_hours=settings.ENTITLEMENT_TTL_HOURS,
        app_base_url=settings.APP_BASE_URL
    )

    submission = ReceiptSubmissionService(
        settings=settings,
        repository=receipts,
        storage=ReceiptStorage(
            S3Client(settings.RECEIPTS_BUCKET, client=s3_client),
            public_base_url=settings.RECEIPTS_PUBLIC_URL
        ),
        duplicate_guard=DuplicateGuard(receipts),
        rate_limiter=rate_limiter or build_rate_limiter(settings),
        entitlements=entitlements,
        sqs_client=sqs_client
    )

    # Bonus issuance that fails after a verdict is retried through the processing queue
    review = ReviewService(receipts, entitlements, requeue=submission.enqueue)

    processor = ReceiptProcessor(
        receipts=receipts,
        review=review,
        ocr_provider=ocr_provider or build_ocr_provider(settings),
        extractor=extractor or build_extractor(settings),
        receipts_bucket=settings.RECEIPTS_BUCKET,
        policy=VerificationPolicy.from_settings(settings)
    )

    logger.info(f"Services built for {settings.ENVIRONMENT}")
    return Services(
        settings=settings,
        receipts=receipts,
        submission=submission,
        review=review,
        entitlements=entitlements,
        processor=processor
    )


_services: Optional[Services] = None


def get_services() -> Services:
    """Services for this container, built on first use."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


def reset_services() -> None:
    global _services
    _services = None
