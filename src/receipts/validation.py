"""
Upload validation for receipt files.

The true content type is sniffed from the file's leading bytes; neither the
declared MIME type nor the filename extension is trusted. The declared type
must agree with the sniffed one, which defeats extension and MIME spoofing.
"""

import hashlib
import logging
from typing import Optional, Tuple

from shared.exceptions import (
    PayloadTooLargeError,
    TypeMismatchError,
    ValidationError,
)
from .models import ValidatedFile

logger = logging.getLogger(__name__)

# Maximum file size (10MB)
MAX_RECEIPT_FILE_SIZE = 10 * 1024 * 1024

PNG_SIGNATURE = b'\x89PNG\r\n\x1a\n'
JPEG_SIGNATURE = b'\xff\xd8\xff'
PDF_SIGNATURE = b'%PDF-'

# Allowed types and their canonical extensions
ALLOWED_MIME_TYPES = {
    'image/jpeg': 'jpg',
    'image/png': 'png',
    'application/pdf': 'pdf',
}

MIME_ALIASES = {
    'image/jpg': 'image/jpeg',
    'image/pjpeg': 'image/jpeg',
    'image/x-png': 'image/png',
    'application/x-pdf': 'application/pdf',
}

EXECUTABLE_SIGNATURES = [
    b'MZ',            # DOS/Windows executable
    b'\x7fELF',       # ELF
    b'\xcf\xfa\xed\xfe',  # Mach-O
]

# PDF trailers may be followed by a little whitespace or junk
PDF_EOF_SEARCH_WINDOW = 1024


def detect_mime_type(content: bytes) -> Optional[str]:
    """
    Detect the MIME type of a receipt from its magic bytes.

    Args:
        content: Raw file bytes

    Returns:
        Detected MIME type, or None when the signature is not recognised
    """
    if content.startswith(PNG_SIGNATURE):
        return 'image/png'
    if content.startswith(JPEG_SIGNATURE):
        return 'image/jpeg'
    if content.startswith(PDF_SIGNATURE):
        return 'application/pdf'
    return None


def normalize_mime_type(mime_type: Optional[str]) -> str:
    """Lower-case a MIME type, drop parameters and resolve known aliases."""
    if not mime_type:
        return ''

    normalized = mime_type.split(';', 1)[0].strip().lower()
    return MIME_ALIASES.get(normalized, normalized)


def calculate_fingerprint(content: bytes) -> str:
    """Calculate the SHA-256 hex digest used for duplicate detection."""
    return hashlib.sha256(content).hexdigest()


def _check_structure(content: bytes, mime_type: str) -> Tuple[bool, str]:
    """Minimal structural checks beyond the leading signature."""
    if mime_type == 'image/png':
        # The first chunk after the signature must be IHDR
        if len(content) < 16 or content[12:16] != b'IHDR':
            return False, "PNG file is missing its header chunk"

    elif mime_type == 'image/jpeg':
        if len(content) <= len(JPEG_SIGNATURE):
            return False, "JPEG file is truncated"

    elif mime_type == 'application/pdf':
        if b'%%EOF' not in content[-PDF_EOF_SEARCH_WINDOW:]:
            return False, "PDF file is truncated or malformed"

    return True, ''


def validate_receipt_file(
    content: bytes,
    declared_mime_type: str,
    declared_filename: str,
    declared_size: Optional[int] = None,
    max_size: int = MAX_RECEIPT_FILE_SIZE
) -> ValidatedFile:
    """
    Validate an uploaded receipt file.

    Args:
        content: Raw file bytes
        declared_mime_type: MIME type claimed by the caller
        declared_filename: Original filename (only checked for presence)
        declared_size: Size claimed by the caller, if any
        max_size: Size ceiling in bytes

    Returns:
        ValidatedFile with detected type, extension, size and fingerprint

    Raises:
        ValidationError: Empty, unrecognised, malformed or executable payload
        PayloadTooLargeError: Payload over the size ceiling
        TypeMismatchError: Declared type disagrees with the file's bytes
    """
    if not declared_filename or not declared_filename.strip():
        raise ValidationError("Filename is required")

    size = len(content or b'')

    if size == 0:
        raise ValidationError("File is empty")

    if declared_size is not None and declared_size > max_size:
        raise PayloadTooLargeError(declared_size, max_size)

    if size > max_size:
        raise PayloadTooLargeError(size, max_size)

    if declared_size is not None and declared_size != size:
        raise ValidationError(
            "Declared file size does not match the uploaded content",
            details={'declared_size': declared_size, 'size': size}
        )

    for signature in EXECUTABLE_SIGNATURES:
        if content.startswith(signature):
            logger.warning("Rejected upload with executable signature")
            raise ValidationError("File failed security scan")

    detected = detect_mime_type(content)
    if detected is None:
        raise ValidationError("Invalid file type. Only JPEG, PNG, and PDF files are allowed.")

    structurally_valid, problem = _check_structure(content, detected)
    if not structurally_valid:
        raise ValidationError(problem)

    declared = normalize_mime_type(declared_mime_type)
    if declared != detected:
        logger.warning(f"MIME type mismatch: declared={declared or 'none'}, detected={detected}")
        raise TypeMismatchError(declared or 'none', detected)

    return ValidatedFile(
        mime_type=detected,
        extension=ALLOWED_MIME_TYPES[detected],
        size=size,
        fingerprint=calculate_fingerprint(content)
    )
