"""Validation utilities for submission and review requests."""

import base64
import binascii
import re
from typing import Any, Dict, List, Optional
from datetime import date, datetime

from .exceptions import ValidationError


# Purchase formats accepted for the bonus
VALID_FORMATS = ["hardcover", "ebook", "audiobook"]

# Reviewer actions
VALID_REVIEW_ACTIONS = ["approve", "reject"]


def validate_email(email: str) -> str:
    """
    Validate email format.

    Args:
        email: Email address to validate

    Returns:
        Validated email, lower-cased

    Raises:
        ValidationError: If email is invalid
    """
    if not email:
        raise ValidationError("Email is required")

    if not isinstance(email, str):
        raise ValidationError("Invalid email format")

    email = email.strip().lower()
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'

    if not re.match(pattern, email):
        raise ValidationError("Invalid email format")

    return email


def validate_format(purchase_format: Optional[str]) -> Optional[str]:
    """
    Validate the declared purchase format.

    Args:
        purchase_format: Format to validate, may be empty

    Returns:
        Lower-cased format, or None when not provided

    Raises:
        ValidationError: If the format is not recognised
    """
    if not purchase_format:
        return None

    if not isinstance(purchase_format, str):
        raise ValidationError("Book format must be a string")

    purchase_format = purchase_format.strip().lower()

    if purchase_format not in VALID_FORMATS:
        raise ValidationError(
            f"Invalid book format. Must be one of: {', '.join(VALID_FORMATS)}"
        )

    return purchase_format


def validate_purchase_date(date_str: Optional[str], today: Optional[date] = None) -> Optional[date]:
    """
    Validate an optional declared purchase date (ISO 8601: YYYY-MM-DD).

    Args:
        date_str: Date string to validate
        today: Reference date (default: current UTC date)

    Returns:
        Parsed date, or None when not provided

    Raises:
        ValidationError: If date is malformed or in the future
    """
    if not date_str:
        return None

    if not isinstance(date_str, str):
        raise ValidationError("Invalid date format. Use YYYY-MM-DD")

    try:
        parsed = datetime.strptime(date_str, '%Y-%m-%d').date()
    except ValueError:
        raise ValidationError("Invalid date format. Use YYYY-MM-DD")

    today = today or datetime.utcnow().date()
    if parsed > today:
        raise ValidationError("Purchase date cannot be in the future")

    return parsed


def validate_review_action(action: str) -> str:
    """
    Validate a reviewer action.

    Raises:
        ValidationError: If the action is unknown
    """
    action = action.strip().lower() if isinstance(action, str) else ''

    if action not in VALID_REVIEW_ACTIONS:
        raise ValidationError(
            f"Invalid action. Must be one of: {', '.join(VALID_REVIEW_ACTIONS)}"
        )

    return action


def validate_required_fields(data: Dict[str, Any], required_fields: List[str]) -> None:
    """
    Validate that required fields are present in data.

    Args:
        data: Data dictionary to validate
        required_fields: List of required field names

    Raises:
        ValidationError: If any required field is missing
    """
    missing_fields = [field for field in required_fields if field not in data or data[field] in (None, '')]

    if missing_fields:
        raise ValidationError(
            f"Missing required fields: {', '.join(missing_fields)}"
        )


def decode_base64_file(base64_string: str) -> bytes:
    """
    Decode a base64-encoded upload.

    A data URI prefix is stripped but otherwise ignored: the declared type
    in it is never trusted.

    Args:
        base64_string: Base64-encoded string

    Returns:
        Decoded bytes

    Raises:
        ValidationError: If base64 string is invalid
    """
    if not base64_string:
        raise ValidationError("File data is required")

    if not isinstance(base64_string, str):
        raise ValidationError("File data must be a base64 string")

    # Remove data URI prefix if present
    if base64_string.startswith('data:') and ',' in base64_string:
        base64_string = base64_string.split(',', 1)[1]

    try:
        return base64.b64decode(base64_string, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Invalid base64 encoding")


def sanitize_string(value: str, max_length: Optional[int] = None) -> str:
    """
    Sanitize string input by removing control characters.

    Args:
        value: String to sanitize
        max_length: Optional maximum length

    Returns:
        Sanitized string

    Raises:
        ValidationError: If string is invalid
    """
    if not isinstance(value, str):
        raise ValidationError("Value must be a string")

    # Remove control characters and leading/trailing whitespace
    value = re.sub(r'[\x00-\x1f\x7f]', '', value).strip()

    if max_length and len(value) > max_length:
        raise ValidationError(f"Value exceeds maximum length of {max_length}")

    return value
