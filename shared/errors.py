"""
Shared error handling for the Specialist Access Layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessLayerException(Exception):
    """Base exception for Access Layer services."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id,
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(AccessLayerException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class StorageError(AccessLayerException):
    """Persistent key-value store errors."""

    def __init__(self, message: str = "Storage error", details: Optional[Dict[str, Any]] = None,
                 code: str = "STORAGE_ERROR"):
        super().__init__(code, message, details)


class StorageReadError(StorageError):
    """A get against the store failed."""

    def __init__(self, key: str, message: str = "Storage read failed"):
        super().__init__(message, {"key": key}, code="STORAGE_READ_FAILURE")
        self.key = key


class StorageWriteError(StorageError):
    """A set/remove against the store failed."""

    def __init__(self, key: str, message: str = "Storage write failed"):
        super().__init__(message, {"key": key}, code="STORAGE_WRITE_FAILURE")
        self.key = key


class VerificationMismatchError(StorageError):
    """A write reported success but reading the key back disagrees."""

    def __init__(self, key: str, expected: str, actual: Optional[str]):
        super().__init__(
            "Storage verification failed",
            {"key": key, "expected": expected, "actual": actual},
            code="VERIFICATION_MISMATCH"
        )
        self.key = key
        self.expected = expected
        self.actual = actual


class EntitlementExhaustedError(AccessLayerException):
    """No free actions remain and the user has no unlimited access."""

    def __init__(self, message: str = "No free messages remaining", details: Optional[Dict[str, Any]] = None):
        super().__init__("ENTITLEMENT_EXHAUSTED", message, details)
