"""
Custom exception classes and error handling.

API exceptions give consistent HTTP error responses. Domain exceptions
cover the failure modes the engine and the set sync client must surface
instead of swallowing.
"""
from fastapi import HTTPException, status
from typing import Optional, Dict, Any


class APIException(HTTPException):
    """Base API exception with consistent structure."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: Optional[str] = None,
        headers: Optional[Dict[str, Any]] = None
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code


class NotFoundError(APIException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found: {identifier}",
            error_code="NOT_FOUND"
        )


class ValidationError(APIException):
    """Validation error."""

    def __init__(self, detail: str, field: Optional[str] = None):
        error_code = f"VALIDATION_ERROR_{field.upper()}" if field else "VALIDATION_ERROR"
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
            error_code=error_code
        )


class ConflictError(APIException):
    """Resource conflict (e.g., idempotency key reused with a different payload)."""

    def __init__(self, detail: str):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail,
            error_code="CONFLICT"
        )


# =========================================================================
# Domain errors
# =========================================================================

class DecisionInvariantError(RuntimeError):
    """
    An adjustment rule matched although a signal it depends on has no data.

    Programming error: raised in development, converted to NO_ADJUSTMENT in
    production.
    """


class PendingSetCaptureError(RuntimeError):
    """A logged set could not be captured: it is invalid, or durable local storage refused the write."""


class SetUploadError(RuntimeError):
    """Uploading a pending set to the remote set-logging endpoint failed."""

    def __init__(self, message: str, status_code: Optional[int] = None, retryable: bool = True):
        super().__init__(message)
        self.status_code = status_code
        self.retryable = retryable
