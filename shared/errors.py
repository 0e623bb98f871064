"""
Shared error handling for the Optics Orders service.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    trace_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class OrdersException(Exception):
    """Base exception for the orders service."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            trace_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(OrdersException):
    """Malformed selector, missing write field or invalid enum value."""

    status_code = 400

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ForbiddenError(OrdersException):
    """Caller scope does not cover the target branch."""

    status_code = 403

    def __init__(self, message: str = "Branch is outside the caller scope", details: Optional[Dict[str, Any]] = None):
        super().__init__("FORBIDDEN", message, details)


class NotFoundError(OrdersException):
    """No matching record inside the caller scope."""

    status_code = 404

    def __init__(self, message: str = "Order not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class StoreConflictError(OrdersException):
    """Unique constraint violation in the record store."""

    status_code = 409

    def __init__(self, message: str = "Duplicate bill number", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_CONFLICT", message, details)


class StoreUnavailableError(OrdersException):
    """The record store could not be reached."""

    status_code = 503

    def __init__(self, message: str = "Record store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_UNAVAILABLE", message, details)


class CacheUnavailableError(OrdersException):
    """Cache backend failure. Never surfaced to callers."""

    status_code = 503

    def __init__(self, message: str = "Cache backend unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_UNAVAILABLE", message, details)
