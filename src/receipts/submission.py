"""Receipt submission: the synchronous half of the pipeline."""

import os
import json
import uuid
import logging
from datetime import datetime
from typing import Any, Dict, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from shared.config import Settings
from shared.exceptions import DatabaseError, NotFoundError, RateLimitedError
from shared.rate_limiter import RateLimiter
from .duplicate_guard import DuplicateGuard
from .models import Receipt, ReceiptStatus, SubmissionRequest, SubmissionResult
from .repository import ReceiptRepository
from .storage import ReceiptStorage
from .validation import validate_receipt_file

logger = logging.getLogger(__name__)

ENQUEUE_FAILED = 'ENQUEUE_FAILED'
CLAIM_OPEN_FAILED = 'CLAIM_OPEN_FAILED'


def rate_limit_identifier(submitter_id: str, source_ip: Optional[str]) -> str:
    return f"receipt-upload:{submitter_id}:{source_ip or 'unknown'}"


class ReceiptSubmissionService:
    """
    Accepts receipt uploads.

    A submission is rate limited, validated, checked for duplicates, stored
    and inserted as PENDING, then handed to the processing queue. Everything
    after the insert happens in the background.
    """

    def __init__(
        self,
        settings: Settings,
        repository: ReceiptRepository,
        storage: ReceiptStorage,
        duplicate_guard: DuplicateGuard,
        rate_limiter: RateLimiter,
        entitlements: Optional[Any] = None,
        sqs_client: Optional[Any] = None
    ):
        self.settings = settings
        self.repository = repository
        self.storage = storage
        self.duplicate_guard = duplicate_guard
        self.rate_limiter = rate_limiter
        self.entitlements = entitlements

        if sqs_client is not None:
            self.sqs = sqs_client
        else:
            # Support for LocalStack
            endpoint_url = os.environ.get('LOCALSTACK_ENDPOINT')
            if endpoint_url and os.environ.get('USE_LOCALSTACK', 'false').lower() == 'true':
                self.sqs = boto3.client('sqs', endpoint_url=endpoint_url)
            else:
                self.sqs = boto3.client('sqs')

    def submit(self, request: SubmissionRequest) -> SubmissionResult:
        """
        Accept a receipt submission.

        Args:
            request: Submission with the raw file and declared purchase details

        Returns:
            SubmissionResult with the new receipt id (status PENDING)

        Raises:
            RateLimitedError: If the submitter exceeded the upload rate
            ValidationError: If the file or fields are invalid
            TypeMismatchError: If the declared type disagrees with the content
            PayloadTooLargeError: If the file is over the size ceiling
            DuplicateReceiptError: If the same file was already accepted
            StorageError: If the file could not be stored
        """
        decision = self.rate_limiter.check(
            rate_limit_identifier(request.submitter_id, request.source_ip)
        )
        if not decision.allowed:
            logger.warning(f"Upload rate limit hit for user {request.submitter_id}")
            raise RateLimitedError(decision.reset_seconds)

        validated = validate_receipt_file(
            content=request.file_bytes,
            declared_mime_type=request.declared_mime_type,
            declared_filename=request.declared_filename,
            declared_size=request.declared_size,
            max_size=self.settings.MAX_UPLOAD_BYTES
        )

        self.duplicate_guard.check(validated.fingerprint, request.submitter_id)

        stored = self.storage.store(
            content=request.file_bytes,
            validated=validated,
            submitter_id=request.submitter_id,
            original_filename=request.declared_filename
        )

        receipt = Receipt(
            receipt_id=str(uuid.uuid4()),
            fingerprint=validated.fingerprint,
            user_id=request.submitter_id,
            retailer=request.declared_retailer,
            order_number=request.declared_order_number,
            format=request.declared_format,
            purchase_date=(
                request.declared_purchase_date.isoformat()
                if request.declared_purchase_date else None
            ),
            storage_key=stored.key,
            file_url=stored.url,
            mime_type=validated.mime_type,
            file_size=validated.size,
            status=ReceiptStatus.PENDING,
            source_ip=request.source_ip,
            user_agent=request.user_agent,
            submitted_at=datetime.utcnow().isoformat()
        )

        try:
            self.duplicate_guard.register(receipt)
        except Exception:
            # No receipt row references the object
            self.storage.discard(stored.key)
            raise

        claim_id = None
        if request.delivery_email and self.entitlements is not None:
            claim_id = self._open_claim(receipt, request.delivery_email)

        self.enqueue(receipt.receipt_id)

        logger.info(f"Receipt {receipt.receipt_id} accepted for user {request.submitter_id}")
        return SubmissionResult(
            receipt_id=receipt.receipt_id,
            status=ReceiptStatus.PENDING,
            claim_id=claim_id
        )

    def _open_claim(self, receipt: Receipt, delivery_email: str) -> Optional[str]:
        """
        Open the bonus claim for a freshly inserted receipt.

        The receipt is already committed, so a failure here must not stop it
        from being queued. The receipt is flagged for review instead and the
        owner can claim again through the bonus endpoint.
        """
        try:
            claim = self.entitlements.open_claim(receipt, delivery_email)
        except Exception as e:
            logger.error(f"Failed to open bonus claim for receipt {receipt.receipt_id}: {str(e)}")
            try:
                self.repository.mark_needs_review(receipt.receipt_id, CLAIM_OPEN_FAILED)
            except DatabaseError as flag_error:
                logger.error(f"Could not flag receipt {receipt.receipt_id} for review: {str(flag_error)}")
            return None
        return claim.claim_id if claim else None

    def enqueue(self, receipt_id: str) -> None:
        """Hand the receipt to background processing."""
        try:
            self.sqs.send_message(
                QueueUrl=self.settings.PROCESSING_QUEUE_URL,
                MessageBody=json.dumps({'receipt_id': receipt_id})
            )
        except (ClientError, BotoCoreError) as e:
            # The receipt is durable; surface it to reviewers instead of failing the upload
            logger.error(f"Failed to enqueue receipt {receipt_id} for processing: {str(e)}")
            self.repository.mark_needs_review(receipt_id, ENQUEUE_FAILED)

    def get_receipt_status(self, receipt_id: str, user_id: str) -> Dict[str, Any]:
        """
        Status of a receipt for its owner.

        Raises:
            NotFoundError: If the receipt does not exist or belongs to someone else
        """
        receipt = self.repository.get_receipt(receipt_id)
        if receipt is None or receipt.user_id != user_id:
            raise NotFoundError("Receipt not found")

        status = {
            'receipt_id': receipt.receipt_id,
            'status': receipt.status,
            'retailer': receipt.retailer,
            'submitted_at': receipt.submitted_at,
            'verified_at': receipt.verified_at,
            'verification_score': receipt.verification_score,
            'needs_review': receipt.needs_review,
            'review_reason': receipt.review_reason,
            'rejection_reason': receipt.rejection_reason,
            'extracted': None,
        }

        latest = self.repository.latest_verification(receipt_id)
        if latest:
            status['extracted'] = latest.get('extraction')
            status['decision'] = latest.get('decision')

        if self.entitlements is not None:
            claim = self.entitlements.get_claim(receipt_id)
            if claim:
                status['claim'] = {
                    'claim_id': claim.claim_id,
                    'status': claim.status,
                    'delivered': bool(claim.delivery_tracking_id),
                }

        return status
