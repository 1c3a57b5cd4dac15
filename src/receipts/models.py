"""Receipt data models."""

from enum import Enum
from typing import Optional
from datetime import date
from pydantic import BaseModel, ConfigDict, Field


class ReceiptStatus(str, Enum):
    """Lifecycle state of a receipt."""

    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    REJECTED = "REJECTED"

    @property
    def is_terminal(self) -> bool:
        return self is not ReceiptStatus.PENDING


class PurchaseFormat(str, Enum):
    """Book format named on the receipt."""

    HARDCOVER = "hardcover"
    EBOOK = "ebook"
    AUDIOBOOK = "audiobook"


class SubmissionRequest(BaseModel):
    """A proof-of-purchase submission as received from the caller."""

    submitter_id: str
    declared_retailer: str
    declared_order_number: Optional[str] = None
    declared_format: Optional[PurchaseFormat] = None
    declared_purchase_date: Optional[date] = None
    file_bytes: bytes = Field(..., repr=False)
    declared_mime_type: str
    declared_filename: str
    declared_size: Optional[int] = None
    source_ip: Optional[str] = None
    user_agent: Optional[str] = None
    delivery_email: Optional[str] = None


class ValidatedFile(BaseModel):
    """Facts established about an upload by the validation gateway."""

    mime_type: str
    extension: str
    size: int
    fingerprint: str


class Receipt(BaseModel):
    """Receipt model, one per accepted upload."""

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    receipt_id: str
    fingerprint: str
    user_id: str
    retailer: str
    order_number: Optional[str] = None
    format: Optional[PurchaseFormat] = None
    purchase_date: Optional[str] = None
    storage_key: str
    file_url: str
    mime_type: str
    file_size: int
    status: ReceiptStatus = ReceiptStatus.PENDING
    source_ip: Optional[str] = None
    user_agent: Optional[str] = None
    submitted_at: str
    verified_at: Optional[str] = None
    verified_by: Optional[str] = None
    rejection_reason: Optional[str] = None
    needs_review: bool = False
    review_reason: Optional[str] = None
    reviewer_notes: Optional[str] = None
    verification_score: Optional[int] = None

    @property
    def current_status(self) -> ReceiptStatus:
        return ReceiptStatus(self.status)


class SubmissionResult(BaseModel):
    """Synchronous outcome of an accepted submission."""

    model_config = ConfigDict(use_enum_values=True)

    receipt_id: str
    status: ReceiptStatus
    claim_id: Optional[str] = None
