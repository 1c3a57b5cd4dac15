"""Durable storage for validated receipt files."""

import hashlib
import logging
import re
import secrets
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel

from shared.exceptions import StorageError
from shared.s3 import S3Client
from .models import ValidatedFile

logger = logging.getLogger(__name__)

RECEIPTS_PREFIX = 'receipts'
MAX_FILENAME_LENGTH = 255


class StoredObject(BaseModel):
    """Reference to a persisted receipt file."""

    key: str
    url: str


def sanitize_filename(filename: str) -> str:
    """Reduce a filename to a safe character set."""
    sanitized = re.sub(r'[^a-zA-Z0-9._-]', '_', filename or '')
    sanitized = re.sub(r'\.+', '.', sanitized)
    sanitized = sanitized.lstrip('.')
    return sanitized[:MAX_FILENAME_LENGTH]


def generate_secure_filename(
    original_name: str,
    extension: str,
    submitter_id: str,
    now: Optional[datetime] = None,
    nonce: Optional[str] = None
) -> str:
    """
    Generate a collision-resistant object name for a receipt.

    The user-supplied name only feeds the hash; it never appears in the key.

    Args:
        original_name: Filename supplied by the submitter
        extension: Extension derived from the detected content type
        submitter_id: Submitting user id
        now: Timestamp (default: current UTC time)
        nonce: Random salt (default: fresh random hex)

    Returns:
        Filename of the form receipt-<epoch_ms>-<16 hex chars>.<ext>
    """
    now = now or datetime.utcnow()
    nonce = nonce or secrets.token_hex(8)
    timestamp = int(now.timestamp() * 1000)

    digest = hashlib.sha256(
        f"{submitter_id}-{sanitize_filename(original_name)}-{timestamp}-{nonce}".encode('utf-8')
    ).hexdigest()[:16]

    return sanitize_filename(f"receipt-{timestamp}-{digest}.{extension}")


class ReceiptStorage:
    """Writes receipt files to the receipts bucket."""

    def __init__(self, s3_client: S3Client, public_base_url: Optional[str] = None):
        self.s3_client = s3_client
        self.public_base_url = public_base_url

    def store(
        self,
        content: bytes,
        validated: ValidatedFile,
        submitter_id: str,
        original_filename: str,
        metadata: Optional[Dict[str, str]] = None
    ) -> StoredObject:
        """
        Persist a validated receipt file and confirm it is readable.

        Raises:
            StorageError: If the object could not be written or confirmed
        """
        filename = generate_secure_filename(original_filename, validated.extension, submitter_id)
        key = f"{RECEIPTS_PREFIX}/{filename}"

        object_metadata = {
            'user_id': submitter_id,
            'fingerprint': validated.fingerprint,
            'uploaded_at': datetime.utcnow().isoformat(),
        }
        if metadata:
            object_metadata.update(metadata)

        try:
            self.s3_client.upload_file(
                file_content=content,
                key=key,
                content_type=validated.mime_type,
                metadata=object_metadata
            )
        except StorageError:
            raise
        except Exception as e:
            logger.error(f"Failed to upload receipt to S3: {str(e)}")
            raise StorageError(f"Failed to upload receipt: {str(e)}")

        if not self.exists(key):
            logger.error(f"Receipt object {key} missing after upload")
            self.discard(key)
            raise StorageError("Receipt upload could not be confirmed")

        logger.info(f"Receipt stored at {key}")
        return StoredObject(key=key, url=self.s3_client.object_url(key, self.public_base_url))

    def exists(self, key: str) -> bool:
        return self.s3_client.file_exists(key)

    def discard(self, key: str) -> None:
        """Remove an object that never got a receipt row."""
        try:
            self.s3_client.delete_file(key)
        except StorageError as e:
            logger.warning(f"Could not remove orphaned receipt object {key}: {e}")
