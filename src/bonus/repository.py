"""Persistence for bonus claims and entitlements."""

import logging
from datetime import datetime
from typing import List, Optional

from boto3.dynamodb.conditions import Key

from shared.dynamodb import DynamoDBClient
from shared.exceptions import ConditionFailedError
from .models import BonusClaim, ClaimStatus, Entitlement

logger = logging.getLogger(__name__)

STATUS_NAMES = {'#status': 'status'}


class ClaimRepository:
    """Claims (one per receipt) and their append-only entitlement rows."""

    def __init__(
        self,
        claims_table: DynamoDBClient,
        entitlements_table: DynamoDBClient,
        receipts_table: DynamoDBClient
    ):
        self.claims_table = claims_table
        self.entitlements_table = entitlements_table
        self.receipts_table = receipts_table

    def create_claim(self, claim: BonusClaim) -> BonusClaim:
        """
        Create a claim for a receipt that has none.

        Raises:
            ConditionFailedError: If the receipt already has a claim
        """
        self.claims_table.put_item(
            claim.model_dump(exclude_none=True),
            condition_expression='attribute_not_exists(receipt_id)'
        )
        logger.info(f"Created bonus claim {claim.claim_id} for receipt {claim.receipt_id}")
        return claim

    def get_claim(self, receipt_id: str, consistent_read: bool = False) -> Optional[BonusClaim]:
        item = self.claims_table.get_item({'receipt_id': receipt_id}, consistent_read=consistent_read)
        if not item:
            return None
        return BonusClaim(**item)

    def approve_with_entitlements(
        self,
        receipt_id: str,
        actor: str,
        entitlements: List[Entitlement]
    ) -> None:
        """
        Approve a pending claim and write its entitlements in one transaction.

        The transaction also checks that the receipt is VERIFIED, so an
        approval can never be stored for an unverified receipt.

        Raises:
            ConditionFailedError: If the receipt is not VERIFIED or the claim
                is not PENDING
        """
        now = datetime.utcnow().isoformat()

        entries = [
            self.receipts_table.transact_condition_check(
                key={'receipt_id': receipt_id},
                condition_expression='#status = :verified',
                expression_values={':verified': 'VERIFIED'},
                expression_names=STATUS_NAMES
            ),
            self.claims_table.transact_update(
                key={'receipt_id': receipt_id},
                update_expression='SET #status = :approved, processed_by = :actor, processed_at = :now',
                expression_values={
                    ':approved': ClaimStatus.APPROVED.value,
                    ':pending': ClaimStatus.PENDING.value,
                    ':actor': actor,
                    ':now': now,
                },
                expression_names=STATUS_NAMES,
                condition_expression='#status = :pending'
            ),
        ]
        entries.extend(
            self.entitlements_table.transact_put(
                entitlement.model_dump(),
                condition_expression='attribute_not_exists(entitlement_id)'
            )
            for entitlement in entitlements
        )

        self.claims_table.transact_write(entries)
        logger.info(f"Approved bonus claim for receipt {receipt_id} with {len(entitlements)} entitlements")

    def append_entitlements(self, receipt_id: str, entitlements: List[Entitlement]) -> None:
        """
        Record a re-issuance for an already approved claim.

        Raises:
            ConditionFailedError: If the claim is not APPROVED
        """
        entries = [
            self.claims_table.transact_condition_check(
                key={'receipt_id': receipt_id},
                condition_expression='#status = :approved',
                expression_values={':approved': ClaimStatus.APPROVED.value},
                expression_names=STATUS_NAMES
            ),
        ]
        entries.extend(
            self.entitlements_table.transact_put(
                entitlement.model_dump(),
                condition_expression='attribute_not_exists(entitlement_id)'
            )
            for entitlement in entitlements
        )
        self.claims_table.transact_write(entries)

    def reject_claim(self, receipt_id: str, actor: str, notes: Optional[str] = None) -> Optional[BonusClaim]:
        """
        Reject a pending claim.

        Returns:
            The updated claim, or None if there was no pending claim
        """
        update_expr = "SET #status = :rejected, processed_by = :actor, processed_at = :now"
        expr_values = {
            ':rejected': ClaimStatus.REJECTED.value,
            ':pending': ClaimStatus.PENDING.value,
            ':actor': actor,
            ':now': datetime.utcnow().isoformat(),
        }
        if notes:
            update_expr += ", admin_notes = :notes"
            expr_values[':notes'] = notes

        try:
            item = self.claims_table.update_item(
                key={'receipt_id': receipt_id},
                update_expression=update_expr,
                expression_values=expr_values,
                expression_names=STATUS_NAMES,
                condition_expression='attribute_exists(receipt_id) AND #status = :pending'
            )
        except ConditionFailedError:
            return None

        return BonusClaim(**item)

    def record_delivery(self, receipt_id: str, tracking_id: str) -> BonusClaim:
        item = self.claims_table.update_item(
            key={'receipt_id': receipt_id},
            update_expression=(
                "SET delivery_tracking_id = :tracking_id, delivered_at = :now "
                "REMOVE delivery_error"
            ),
            expression_values={
                ':tracking_id': tracking_id,
                ':now': datetime.utcnow().isoformat(),
            }
        )
        return BonusClaim(**item)

    def record_delivery_error(self, receipt_id: str, error: str) -> BonusClaim:
        item = self.claims_table.update_item(
            key={'receipt_id': receipt_id},
            update_expression="SET delivery_error = :error",
            expression_values={':error': error}
        )
        return BonusClaim(**item)

    def list_entitlements(self, claim_id: str) -> List[Entitlement]:
        result = self.entitlements_table.query(
            key_condition_expression=Key('claim_id').eq(claim_id)
        )
        return [Entitlement(**item) for item in result['items']]
