"""Rejects receipts whose file was already accepted."""

import hashlib
import logging
from typing import Any, Dict, Optional

from shared.exceptions import ConditionFailedError, DuplicateReceiptError
from .models import Receipt
from .repository import ReceiptRepository

logger = logging.getLogger(__name__)


def mask_owner_reference(user_id: Optional[str]) -> Optional[str]:
    """Opaque, stable reference to the owner of an existing receipt."""
    if not user_id:
        return None
    return f"owner-{hashlib.sha256(user_id.encode('utf-8')).hexdigest()[:8]}"


class DuplicateGuard:
    """Fingerprint based duplicate detection."""

    def __init__(self, repository: ReceiptRepository):
        self.repository = repository

    def check(self, fingerprint: str, submitter_id: str) -> None:
        """
        Fail fast when the fingerprint is already on file.

        This is an early exit only; ``register`` is what enforces uniqueness.

        Raises:
            DuplicateReceiptError: If a receipt with this fingerprint exists
        """
        existing = self.repository.find_by_fingerprint(fingerprint)
        if existing:
            raise self._duplicate(existing, submitter_id)

    def register(self, receipt: Receipt) -> Receipt:
        """
        Insert the receipt, claiming its fingerprint.

        Raises:
            DuplicateReceiptError: If another submission claimed the fingerprint first
            ConditionFailedError: If the insert was rejected for another reason
            DatabaseError: If the write fails
        """
        try:
            return self.repository.insert_receipt(receipt)
        except ConditionFailedError:
            existing = self.repository.find_by_fingerprint(receipt.fingerprint)
            if not existing:
                logger.error(f"Insert of receipt {receipt.receipt_id} rejected with no fingerprint on file")
                raise
            logger.info(f"Lost duplicate race for fingerprint {receipt.fingerprint[:12]}")
            raise self._duplicate(existing, receipt.user_id)

    @staticmethod
    def _duplicate(existing: Dict[str, Any], submitter_id: str) -> DuplicateReceiptError:
        owner_id = existing.get('user_id')
        same_submitter = owner_id == submitter_id

        logger.info(
            f"Duplicate receipt detected: existing={existing.get('receipt_id')}, "
            f"same_submitter={same_submitter}"
        )

        return DuplicateReceiptError(
            existing_receipt_id=existing.get('receipt_id'),
            owner_reference=mask_owner_reference(owner_id),
            same_submitter=same_submitter
        )
