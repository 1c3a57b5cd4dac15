"""Custom exceptions for the receipt verification pipeline."""

from typing import Any, Dict, Optional


class ReceiptPipelineException(Exception):
    """Base exception for all receipt pipeline errors."""

    error_code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.status_code = status_code
        if error_code:
            self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(ReceiptPipelineException):
    """Raised when input validation fails."""

    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, status_code=400, details=details)


class TypeMismatchError(ReceiptPipelineException):
    """Raised when the declared content type does not match the file's bytes."""

    error_code = "TYPE_MISMATCH"

    def __init__(self, declared: str, detected: str):
        super().__init__(
            "File content does not match the declared file type",
            status_code=415,
            details={'declared_type': declared, 'detected_type': detected}
        )


class PayloadTooLargeError(ReceiptPipelineException):
    """Raised when an upload exceeds the configured size ceiling."""

    error_code = "TOO_LARGE"

    def __init__(self, size: int, max_size: int):
        super().__init__(
            f"File size exceeds {max_size // (1024 * 1024)}MB limit",
            status_code=413,
            details={'size': size, 'max_size': max_size}
        )


class DuplicateReceiptError(ReceiptPipelineException):
    """Raised when a receipt with the same fingerprint was already accepted."""

    error_code = "DUPLICATE"

    def __init__(
        self,
        existing_receipt_id: Optional[str],
        owner_reference: Optional[str] = None,
        same_submitter: bool = False
    ):
        self.existing_receipt_id = existing_receipt_id
        self.owner_reference = owner_reference
        self.same_submitter = same_submitter

        if same_submitter:
            message = "You have already uploaded this receipt"
        else:
            message = "This receipt has already been used"

        super().__init__(
            message,
            status_code=409,
            details={
                'existing_receipt_id': existing_receipt_id,
                'owner_reference': owner_reference,
                'same_submitter': same_submitter
            }
        )


class RateLimitedError(ReceiptPipelineException):
    """Raised when a submitter exceeded the upload rate limit."""

    error_code = "RATE_LIMITED"

    def __init__(self, reset_seconds: int):
        self.reset_seconds = reset_seconds
        minutes = max(1, -(-reset_seconds // 60))
        super().__init__(
            f"Too many uploads. Please try again in {minutes} minutes.",
            status_code=429,
            details={'reset_seconds': reset_seconds}
        )


class StorageError(ReceiptPipelineException):
    """Raised when storage operations fail."""

    error_code = "STORAGE_ERROR"

    def __init__(self, message: str = "Storage operation failed"):
        super().__init__(message, status_code=502)


class AuthenticationError(ReceiptPipelineException):
    """Raised when authentication fails."""

    error_code = "UNAUTHORIZED"

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, status_code=401)


class AuthorizationError(ReceiptPipelineException):
    """Raised when user is not authorized."""

    error_code = "FORBIDDEN"

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message, status_code=403)


class NotFoundError(ReceiptPipelineException):
    """Raised when a resource is not found."""

    error_code = "NOT_FOUND"

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)


class InvalidTransitionError(ReceiptPipelineException):
    """Raised when a receipt state change is not permitted."""

    error_code = "INVALID_TRANSITION"

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(
            f"Receipt cannot move from {current} to {target}",
            status_code=409,
            details={'current_status': current, 'requested_status': target}
        )


class EntitlementGatingError(ReceiptPipelineException):
    """Raised when a bonus claim is approved for an unverified receipt."""

    error_code = "ENTITLEMENT_GATED"

    def __init__(self, message: str = "Bonus claim requires a verified receipt"):
        super().__init__(message, status_code=409)


class DatabaseError(ReceiptPipelineException):
    """Raised when database operations fail."""

    error_code = "DATABASE_ERROR"

    def __init__(self, message: str = "Database operation failed"):
        super().__init__(message, status_code=500)


class ConditionFailedError(DatabaseError):
    """Raised when a conditional write is rejected by DynamoDB."""

    def __init__(self, message: str = "Conditional write rejected"):
        super().__init__(message)


class ConfigurationError(ReceiptPipelineException):
    """Raised when required configuration is missing or inconsistent."""

    error_code = "CONFIGURATION_ERROR"

    def __init__(self, message: str = "Invalid configuration"):
        super().__init__(message, status_code=500)
