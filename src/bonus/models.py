"""Bonus claim and entitlement models."""

from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict


class ClaimStatus(str, Enum):
    """Lifecycle state of a bonus claim."""

    PENDING = "PENDING"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class BonusAsset(BaseModel):
    """A downloadable bonus asset."""

    asset_id: str
    display_name: str
    filename: str
    content_type: str

    @property
    def storage_key(self) -> str:
        return f"bonus-pack/{self.filename}"


BONUS_ASSETS: List[BonusAsset] = [
    BonusAsset(
        asset_id='agent-charter-pack',
        display_name='Agent Charter Pack',
        filename='agent-charter-pack.pdf',
        content_type='application/pdf'
    ),
    BonusAsset(
        asset_id='coi-diagnostic',
        display_name='Cognitive Overhead Index (COI) Diagnostic',
        filename='cognitive-overhead-index.xlsx',
        content_type='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet'
    ),
    BonusAsset(
        asset_id='vp-agent-templates',
        display_name='VP-Agent Templates',
        filename='vp-agent-templates.pdf',
        content_type='application/pdf'
    ),
    BonusAsset(
        asset_id='sub-agent-ladders',
        display_name='Sub-Agent Ladders',
        filename='sub-agent-ladders.pdf',
        content_type='application/pdf'
    ),
    BonusAsset(
        asset_id='escalation-protocols',
        display_name='Escalation & Override Protocols',
        filename='escalation-override-protocols.pdf',
        content_type='application/pdf'
    ),
    BonusAsset(
        asset_id='implementation-guide',
        display_name='Implementation Guide',
        filename='implementation-guide.pdf',
        content_type='application/pdf'
    ),
    BonusAsset(
        asset_id='full-bonus-pack',
        display_name='Complete Bonus Pack',
        filename='ai-born-bonus-pack-complete.zip',
        content_type='application/zip'
    ),
]


class BonusClaim(BaseModel):
    """A request for the bonus pack, one per receipt."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    receipt_id: str
    claim_id: str
    user_id: str
    delivery_email: str
    status: ClaimStatus = ClaimStatus.PENDING
    created_at: str
    processed_by: Optional[str] = None
    processed_at: Optional[str] = None
    delivery_tracking_id: Optional[str] = None
    delivery_error: Optional[str] = None
    delivered_at: Optional[str] = None
    admin_notes: Optional[str] = None


class Entitlement(BaseModel):
    """One time-boxed download granted by an issuance event."""

    claim_id: str
    entitlement_id: str
    receipt_id: str
    issuance_id: str
    asset: str
    download_url: str
    issued_at: str
    expires_at: str


class NotificationResult(BaseModel):
    """Outcome of a notification send."""

    success: bool
    tracking_id: Optional[str] = None
    error: Optional[str] = None


class IssuanceResult(BaseModel):
    """Claim state after an issuance attempt, with the entitlements it created."""

    claim: BonusClaim
    entitlements: List[Entitlement] = []
    notification: Optional[NotificationResult] = None

    def download_urls(self) -> Dict[str, str]:
        return {entitlement.asset: entitlement.download_url for entitlement in self.entitlements}
