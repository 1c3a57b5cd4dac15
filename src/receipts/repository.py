"""Persistence for receipts, fingerprints and verification attempts."""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from boto3.dynamodb.conditions import Attr, Key

from shared.dynamodb import DynamoDBClient
from shared.exceptions import (
    ConditionFailedError,
    InvalidTransitionError,
    NotFoundError,
)
from .models import Receipt, ReceiptStatus

logger = logging.getLogger(__name__)

STATUS_NAMES = {'#status': 'status'}


class ReceiptRepository:
    """
    Receipt storage over three DynamoDB tables.

    The fingerprints table holds one row per accepted file hash and is the
    uniqueness constraint: a receipt row is only ever written in the same
    transaction that claims its fingerprint.
    """

    def __init__(
        self,
        receipts_table: DynamoDBClient,
        fingerprints_table: DynamoDBClient,
        verifications_table: DynamoDBClient
    ):
        self.receipts_table = receipts_table
        self.fingerprints_table = fingerprints_table
        self.verifications_table = verifications_table

    def find_by_fingerprint(self, fingerprint: str) -> Optional[Dict[str, Any]]:
        """Return the fingerprint row (receipt_id, user_id) if the hash is taken."""
        return self.fingerprints_table.get_item({'fingerprint': fingerprint}, consistent_read=True)

    def insert_receipt(self, receipt: Receipt) -> Receipt:
        """
        Insert a new receipt and claim its fingerprint atomically.

        Args:
            receipt: Receipt to insert, normally in PENDING state

        Returns:
            The inserted receipt

        Raises:
            ConditionFailedError: If the fingerprint (or receipt id) already exists
            DatabaseError: If the write fails
        """
        fingerprint_row = {
            'fingerprint': receipt.fingerprint,
            'receipt_id': receipt.receipt_id,
            'user_id': receipt.user_id,
            'created_at': receipt.submitted_at,
        }

        self.receipts_table.transact_write([
            self.fingerprints_table.transact_put(
                fingerprint_row,
                condition_expression='attribute_not_exists(fingerprint)'
            ),
            self.receipts_table.transact_put(
                receipt.model_dump(exclude_none=True),
                condition_expression='attribute_not_exists(receipt_id)'
            ),
        ])

        logger.info(f"Inserted receipt {receipt.receipt_id}")
        return receipt

    def get_receipt(self, receipt_id: str, consistent_read: bool = False) -> Optional[Receipt]:
        item = self.receipts_table.get_item({'receipt_id': receipt_id}, consistent_read=consistent_read)
        if not item:
            return None
        return Receipt(**item)

    def require_receipt(self, receipt_id: str, consistent_read: bool = False) -> Receipt:
        """
        Get a receipt or fail.

        Raises:
            NotFoundError: If no receipt has this id
        """
        receipt = self.get_receipt(receipt_id, consistent_read=consistent_read)
        if receipt is None:
            raise NotFoundError(f"Receipt {receipt_id} not found")
        return receipt

    def transition_status(
        self,
        receipt_id: str,
        target: ReceiptStatus,
        actor: str,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        score: Optional[int] = None
    ) -> Receipt:
        """
        Move a PENDING receipt to a terminal state.

        The update is conditional on the stored status still being PENDING,
        so of two concurrent verdicts exactly one is applied.

        Args:
            receipt_id: Receipt ID
            target: VERIFIED or REJECTED
            actor: Reviewer id, or "system" for automated decisions
            reason: Rejection or review reason
            notes: Reviewer notes
            score: Verification score to record

        Returns:
            The updated receipt

        Raises:
            NotFoundError: If the receipt does not exist
            InvalidTransitionError: If the receipt already left PENDING
        """
        now = datetime.utcnow().isoformat()
        update_expr = (
            "SET #status = :target, verified_at = :now, verified_by = :actor, "
            "needs_review = :false"
        )
        expr_values = {
            ':target': target.value,
            ':pending': ReceiptStatus.PENDING.value,
            ':now': now,
            ':actor': actor,
            ':false': False,
        }

        if target == ReceiptStatus.REJECTED and reason:
            update_expr += ", rejection_reason = :reason"
            expr_values[':reason'] = reason

        if notes:
            update_expr += ", reviewer_notes = :notes"
            expr_values[':notes'] = notes

        if score is not None:
            update_expr += ", verification_score = :score"
            expr_values[':score'] = score

        try:
            item = self.receipts_table.update_item(
                key={'receipt_id': receipt_id},
                update_expression=update_expr,
                expression_values=expr_values,
                expression_names=STATUS_NAMES,
                condition_expression='attribute_exists(receipt_id) AND #status = :pending'
            )
        except ConditionFailedError:
            current = self.require_receipt(receipt_id, consistent_read=True)
            raise InvalidTransitionError(current.status, target.value)

        logger.info(f"Receipt {receipt_id} moved to {target.value} by {actor}")
        return Receipt(**item)

    def mark_needs_review(
        self,
        receipt_id: str,
        reason: str,
        score: Optional[int] = None
    ) -> Optional[Receipt]:
        """
        Flag a PENDING receipt for manual review.

        Returns:
            The updated receipt, or None if the receipt is no longer PENDING
        """
        update_expr = "SET needs_review = :true, review_reason = :reason"
        expr_values = {
            ':true': True,
            ':reason': reason,
            ':pending': ReceiptStatus.PENDING.value,
        }

        if score is not None:
            update_expr += ", verification_score = :score"
            expr_values[':score'] = score

        try:
            item = self.receipts_table.update_item(
                key={'receipt_id': receipt_id},
                update_expression=update_expr,
                expression_values=expr_values,
                expression_names=STATUS_NAMES,
                condition_expression='attribute_exists(receipt_id) AND #status = :pending'
            )
        except ConditionFailedError:
            logger.info(f"Receipt {receipt_id} is no longer pending; review flag not set")
            return None

        return Receipt(**item)

    def list_review_queue(self, limit: int = 50) -> List[Receipt]:
        """Pending receipts flagged for review, oldest first."""
        filter_expr = Attr('status').eq(ReceiptStatus.PENDING.value) & Attr('needs_review').eq(True)

        items: List[Dict[str, Any]] = []
        start_key = None
        while True:
            page = self.receipts_table.scan(
                filter_expression=filter_expr,
                exclusive_start_key=start_key
            )
            items.extend(page['items'])
            start_key = page['last_evaluated_key']
            if not start_key:
                break

        items.sort(key=lambda item: item.get('submitted_at', ''))
        return [Receipt(**item) for item in items[:limit]]

    def append_verification(self, record: Dict[str, Any]) -> None:
        """
        Append one verification attempt record.

        Records are never overwritten; attempt ids are unique per attempt.
        """
        self.verifications_table.put_item(
            record,
            condition_expression='attribute_not_exists(attempt_id)'
        )

    def latest_verification(self, receipt_id: str) -> Optional[Dict[str, Any]]:
        result = self.verifications_table.query(
            key_condition_expression=Key('receipt_id').eq(receipt_id),
            scan_forward=False,
            limit=1
        )
        items = result['items']
        return items[0] if items else None

    def list_verifications(self, receipt_id: str) -> List[Dict[str, Any]]:
        result = self.verifications_table.query(
            key_condition_expression=Key('receipt_id').eq(receipt_id)
        )
        return result['items']
