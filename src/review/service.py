"""Applies verdicts to receipts, automated or from reviewers."""

import logging
from typing import Any, Callable, Dict, List, Optional

from shared.exceptions import EntitlementGatingError, InvalidTransitionError
from receipts.models import Receipt, ReceiptStatus
from receipts.repository import ReceiptRepository
from verification.models import Decision, DecisionOutcome
from .state_machine import assert_transition, next_status

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = 'system'


class ReviewService:
    """
    The only writer of receipt state.

    Every verdict goes through the state machine and a conditional write, so
    a terminal receipt can never change again. Verifying a receipt issues its
    bonus; rejecting it rejects its claim.
    """

    def __init__(
        self,
        receipts: ReceiptRepository,
        entitlements: Optional[Any] = None,
        requeue: Optional[Callable[[str], None]] = None
    ):
        self.receipts = receipts
        self.entitlements = entitlements
        self.requeue = requeue

    def apply_automated_decision(
        self,
        receipt_id: str,
        decision: Decision,
        score: Optional[int] = None
    ) -> Optional[Receipt]:
        """
        Apply the pipeline's decision.

        A receipt that a reviewer settled in the meantime is left alone.

        Returns:
            The updated receipt, or None if it was no longer pending
        """
        try:
            if decision.outcome == DecisionOutcome.AUTO_VERIFY:
                return self.verify(receipt_id, SYSTEM_ACTOR, score=score)
            if decision.outcome == DecisionOutcome.AUTO_REJECT:
                return self.reject(receipt_id, SYSTEM_ACTOR, reason=decision.reason, score=score)
        except InvalidTransitionError as e:
            logger.info(f"Automated decision for {receipt_id} skipped: receipt is already {e.current}")
            return None

        return self.enqueue_for_review(receipt_id, decision.reason or 'MANUAL_REVIEW', score=score)

    def apply_reviewer_decision(
        self,
        receipt_id: str,
        action: str,
        reviewer_id: str,
        notes: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Apply a reviewer's approve or reject.

        Args:
            receipt_id: Receipt ID
            action: "approve" or "reject"
            reviewer_id: Reviewer user id
            notes: Optional reviewer notes

        Returns:
            Dict with the updated receipt and, if any, the bonus claim

        Raises:
            NotFoundError: If the receipt does not exist
            ValidationError: If the action is unknown
            InvalidTransitionError: If the receipt is already VERIFIED or REJECTED
        """
        receipt = self.receipts.require_receipt(receipt_id, consistent_read=True)
        target = next_status(receipt.status, action)

        if target == ReceiptStatus.VERIFIED:
            updated = self.verify(receipt_id, reviewer_id, notes=notes)
        else:
            updated = self.reject(receipt_id, reviewer_id, reason='REVIEWER_REJECTED', notes=notes)

        claim = self.entitlements.get_claim(receipt_id) if self.entitlements else None
        logger.info(f"Reviewer {reviewer_id} applied {action} to receipt {receipt_id}")
        return {'receipt': updated, 'claim': claim}

    def verify(
        self,
        receipt_id: str,
        actor: str,
        notes: Optional[str] = None,
        score: Optional[int] = None
    ) -> Receipt:
        """Move a receipt to VERIFIED and issue its bonus, if claimed."""
        receipt = self.receipts.require_receipt(receipt_id, consistent_read=True)
        assert_transition(receipt.status, ReceiptStatus.VERIFIED)

        updated = self.receipts.transition_status(
            receipt_id, ReceiptStatus.VERIFIED, actor, notes=notes, score=score
        )

        if self.entitlements is not None:
            self._issue(receipt_id, actor)

        return updated

    def _issue(self, receipt_id: str, actor: str) -> None:
        """
        Issue the bonus for a receipt that was just verified.

        The verdict is already stored. A failure that may clear on retry
        hands the receipt back to the processing queue, where ``reconcile``
        finishes the issuance.
        """
        try:
            self.entitlements.issue_for_receipt(receipt_id, actor)
        except (InvalidTransitionError, EntitlementGatingError) as e:
            logger.warning(f"Bonus not issued for receipt {receipt_id}: {e.message}")
        except Exception as e:
            if self.requeue is None:
                raise
            logger.error(f"Bonus issuance failed for receipt {receipt_id}, queued for retry: {str(e)}")
            self.requeue(receipt_id)

    def reject(
        self,
        receipt_id: str,
        actor: str,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        score: Optional[int] = None
    ) -> Receipt:
        """Move a receipt to REJECTED and reject its pending claim."""
        receipt = self.receipts.require_receipt(receipt_id, consistent_read=True)
        assert_transition(receipt.status, ReceiptStatus.REJECTED)

        updated = self.receipts.transition_status(
            receipt_id, ReceiptStatus.REJECTED, actor, reason=reason, notes=notes, score=score
        )

        if self.entitlements is not None:
            self.entitlements.reject_claim(receipt_id, actor, notes)

        return updated

    def enqueue_for_review(self, receipt_id: str, reason: str, score: Optional[int] = None) -> Optional[Receipt]:
        """Flag a pending receipt for a reviewer."""
        receipt = self.receipts.mark_needs_review(receipt_id, reason, score=score)
        if receipt:
            logger.info(f"Receipt {receipt_id} queued for review: {reason}")
        return receipt

    def list_review_queue(self, limit: int = 50) -> List[Receipt]:
        return self.receipts.list_review_queue(limit)

    def reconcile(self, receipt: Receipt) -> None:
        """
        Finish side effects of a verdict that was stored earlier.

        Covers a crash between the state change and bonus issuance; both
        follow-ups are idempotent.
        """
        if self.entitlements is None:
            return

        if receipt.status == ReceiptStatus.VERIFIED:
            self.entitlements.issue_for_receipt(receipt.receipt_id, SYSTEM_ACTOR)
        elif receipt.status == ReceiptStatus.REJECTED:
            self.entitlements.reject_claim(receipt.receipt_id, SYSTEM_ACTOR)
