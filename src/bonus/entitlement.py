"""Bonus claim lifecycle and entitlement issuance."""

import uuid
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from shared.exceptions import (
    ConditionFailedError,
    EntitlementGatingError,
    InvalidTransitionError,
    NotFoundError,
)
from shared.s3 import S3Client
from shared.validators import validate_email
from receipts.models import Receipt, ReceiptStatus
from receipts.repository import ReceiptRepository
from .email_service import BONUS_PACK_TEMPLATE, Notifier
from .models import (
    BONUS_ASSETS,
    BonusAsset,
    BonusClaim,
    ClaimStatus,
    Entitlement,
    IssuanceResult,
    NotificationResult,
)
from .repository import ClaimRepository

logger = logging.getLogger(__name__)


class EntitlementService:
    """
    Grants the bonus pack for verified receipts.

    A claim is approved, and its entitlements written, only in a transaction
    that also checks the receipt is VERIFIED. Delivery happens afterwards and
    its failure is recorded on the claim without undoing the approval.
    """

    def __init__(
        self,
        claims: ClaimRepository,
        receipts: ReceiptRepository,
        assets_storage: S3Client,
        notifier: Notifier,
        ttl_hours: int = 24,
        app_base_url: str = '',
        assets: Optional[List[BonusAsset]] = None
    ):
        self.claims = claims
        self.receipts = receipts
        self.assets_storage = assets_storage
        self.notifier = notifier
        self.ttl_hours = ttl_hours
        self.app_base_url = app_base_url
        self.assets = assets if assets is not None else BONUS_ASSETS

    def open_claim(self, receipt: Receipt, delivery_email: str) -> BonusClaim:
        """
        Open a PENDING claim for a receipt.

        Opening a claim twice for the same receipt returns the existing claim.

        Args:
            receipt: Receipt the claim is for
            delivery_email: Where the bonus pack is delivered

        Returns:
            The claim

        Raises:
            ValidationError: If the email is invalid
        """
        claim = BonusClaim(
            receipt_id=receipt.receipt_id,
            claim_id=str(uuid.uuid4()),
            user_id=receipt.user_id,
            delivery_email=validate_email(delivery_email),
            created_at=datetime.utcnow().isoformat()
        )

        try:
            return self.claims.create_claim(claim)
        except ConditionFailedError:
            logger.info(f"Receipt {receipt.receipt_id} already has a bonus claim")
            return self.claims.get_claim(receipt.receipt_id, consistent_read=True)

    def issue_for_receipt(self, receipt_id: str, actor: str) -> Optional[IssuanceResult]:
        """
        Issue entitlements for a newly verified receipt, if a claim exists.

        Returns:
            IssuanceResult, or None when the receipt has no claim
        """
        claim = self.claims.get_claim(receipt_id, consistent_read=True)
        if claim is None:
            logger.info(f"Receipt {receipt_id} verified without a bonus claim; nothing to issue")
            return None

        return self.approve_claim(receipt_id, actor)

    def approve_claim(self, receipt_id: str, actor: str) -> IssuanceResult:
        """
        Approve the claim for a receipt and deliver its entitlements.

        Args:
            receipt_id: Receipt ID
            actor: Reviewer id, or "system"

        Returns:
            IssuanceResult with the approved claim. An already approved claim
            is returned unchanged with no new entitlements.

        Raises:
            NotFoundError: If the receipt or claim does not exist
            EntitlementGatingError: If the receipt is not VERIFIED
            InvalidTransitionError: If the claim was rejected
        """
        receipt = self.receipts.require_receipt(receipt_id, consistent_read=True)
        if receipt.status != ReceiptStatus.VERIFIED:
            raise EntitlementGatingError(
                f"Receipt {receipt_id} is {receipt.status}; bonus requires a verified receipt"
            )

        claim = self._require_claim(receipt_id)
        if claim.status == ClaimStatus.APPROVED:
            return IssuanceResult(claim=claim)
        if claim.status == ClaimStatus.REJECTED:
            raise InvalidTransitionError(claim.status, ClaimStatus.APPROVED.value)

        entitlements = self._build_entitlements(claim)

        try:
            self.claims.approve_with_entitlements(receipt_id, actor, entitlements)
        except ConditionFailedError:
            current = self._require_claim(receipt_id)
            if current.status == ClaimStatus.APPROVED:
                logger.info(f"Claim for receipt {receipt_id} was approved concurrently")
                return IssuanceResult(claim=current)
            raise EntitlementGatingError(
                f"Bonus claim for receipt {receipt_id} could not be approved"
            )

        claim, notification = self._deliver(receipt_id, claim.delivery_email, entitlements)
        return IssuanceResult(claim=claim, entitlements=entitlements, notification=notification)

    def resend_delivery(self, receipt_id: str, actor: str) -> IssuanceResult:
        """
        Issue fresh download links for an approved claim and send them again.

        Raises:
            NotFoundError: If there is no claim
            EntitlementGatingError: If the claim is not APPROVED
        """
        claim = self._require_claim(receipt_id)
        if claim.status != ClaimStatus.APPROVED:
            raise EntitlementGatingError("Only approved claims can be re-delivered")

        entitlements = self._build_entitlements(claim)
        try:
            self.claims.append_entitlements(receipt_id, entitlements)
        except ConditionFailedError:
            raise EntitlementGatingError("Only approved claims can be re-delivered")

        logger.info(f"Re-issued bonus entitlements for receipt {receipt_id} by {actor}")
        claim, notification = self._deliver(receipt_id, claim.delivery_email, entitlements)
        return IssuanceResult(claim=claim, entitlements=entitlements, notification=notification)

    def reject_claim(self, receipt_id: str, actor: str, notes: Optional[str] = None) -> Optional[BonusClaim]:
        """Reject the pending claim of a rejected receipt, if there is one."""
        claim = self.claims.reject_claim(receipt_id, actor, notes)
        if claim:
            logger.info(f"Rejected bonus claim {claim.claim_id} for receipt {receipt_id}")
        return claim

    def get_claim(self, receipt_id: str) -> Optional[BonusClaim]:
        return self.claims.get_claim(receipt_id)

    def _require_claim(self, receipt_id: str) -> BonusClaim:
        claim = self.claims.get_claim(receipt_id, consistent_read=True)
        if claim is None:
            raise NotFoundError(f"No bonus claim for receipt {receipt_id}")
        return claim

    def _build_entitlements(self, claim: BonusClaim) -> List[Entitlement]:
        issued_at = datetime.utcnow()
        expires_at = issued_at + timedelta(hours=self.ttl_hours)
        issuance_id = str(uuid.uuid4())

        entitlements = []
        for asset in self.assets:
            url = self.assets_storage.get_presigned_url(
                asset.storage_key,
                expiration=self.ttl_hours * 3600
            )
            entitlements.append(Entitlement(
                claim_id=claim.claim_id,
                entitlement_id=f"{issued_at.isoformat()}#{issuance_id}#{asset.asset_id}",
                receipt_id=claim.receipt_id,
                issuance_id=issuance_id,
                asset=asset.asset_id,
                download_url=url,
                issued_at=issued_at.isoformat(),
                expires_at=expires_at.isoformat()
            ))

        return entitlements

    def _deliver(self, receipt_id: str, recipient: str, entitlements: List[Entitlement]):
        """Send the download links and record the outcome on the claim."""
        names = {asset.asset_id: asset.display_name for asset in self.assets}
        payload = {
            'downloads': [
                {'display_name': names.get(e.asset, e.asset), 'url': e.download_url}
                for e in entitlements
            ],
            'expires_hours': self.ttl_hours,
            'app_base_url': self.app_base_url,
        }

        try:
            notification = self.notifier.send(recipient, BONUS_PACK_TEMPLATE, payload)
        except Exception as e:
            logger.error(f"Notifier raised for receipt {receipt_id}: {str(e)}", exc_info=True)
            notification = NotificationResult(success=False, error=str(e))

        if notification.success and notification.tracking_id:
            claim = self.claims.record_delivery(receipt_id, notification.tracking_id)
        else:
            logger.error(f"Bonus pack delivery failed for receipt {receipt_id}: {notification.error}")
            claim = self.claims.record_delivery_error(receipt_id, notification.error or 'unknown error')

        return claim, notification
