"""
Error responses of the HTTP API.

Every failure leaves the service as ``{"error": {"code", "message",
"details"?, "request_id"?}}`` with the status carried by the APIError.
"""

from enum import Enum
from typing import Any

from healthsync.exceptions import (
    AdapterError,
    ConflictError,
    HealthSyncError,
    JobNotFoundError,
    StateStoreError,
)


class ErrorCode(str, Enum):
    INVALID_REQUEST = "INVALID_REQUEST"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    UNAUTHORIZED = "UNAUTHORIZED"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"
    CONFLICT = "CONFLICT"
    UNKNOWN_PARTNER = "UNKNOWN_PARTNER"
    DATABASE_ERROR = "DATABASE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class APIError(Exception):
    """An error with a code, an HTTP status and optional structured details."""

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        status: int = 400,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.status = status
        self.details = details or {}

    def to_dict(self, request_id: str | None = None) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.details:
            body["details"] = self.details
        if request_id:
            body["request_id"] = request_id
        return {"error": body}


class NotFoundError(APIError):
    def __init__(self, resource_type: str, resource_id: str, code: ErrorCode = ErrorCode.JOB_NOT_FOUND):
        key = f"{resource_type.lower()}_id"
        super().__init__(code, f"{resource_type} '{resource_id}' not found", 404, {key: resource_id})


class ValidationError(APIError):
    """Malformed body or query parameter (400)."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(ErrorCode.VALIDATION_ERROR, message, 400, details)


# Checked in order; first isinstance match wins
_DOMAIN_STATUS: list[tuple[type[HealthSyncError], ErrorCode, int]] = [
    (ConflictError, ErrorCode.CONFLICT, 409),
    (AdapterError, ErrorCode.UNKNOWN_PARTNER, 422),
]


def from_domain_error(error: HealthSyncError) -> APIError:
    """Translate an exception raised below the API layer into an APIError."""
    if isinstance(error, JobNotFoundError):
        return NotFoundError("Job", error.job_id)
    if isinstance(error, StateStoreError):
        # Store internals stay out of responses
        return APIError(ErrorCode.DATABASE_ERROR, "State store unavailable", 503)
    details = {key: value for key, value in error.details.items() if value is not None}
    for error_type, code, status in _DOMAIN_STATUS:
        if isinstance(error, error_type):
            return APIError(code, error.message, status, details)
    return APIError(ErrorCode.INTERNAL_ERROR, "An internal error occurred", 500)
