"""
Shared error handling for the project-management API.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class ApiException(Exception):
    """Base exception for API services."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class NotFoundError(ApiException):
    """Unknown route or resource."""

    status_code = 404

    def __init__(self, message: str = "API not found", details: Optional[Dict[str, Any]] = None):
        super().__init__("NOT_FOUND", message, details)


class CacheError(ApiException):
    """Response cache errors."""

    status_code = 503

    def __init__(self, code: str = "CACHE_ERROR", message: str = "Cache error", details: Optional[Dict[str, Any]] = None):
        super().__init__(code, message, details)


class CacheUnavailableError(CacheError):
    """The key-value store could not be reached."""

    def __init__(self, message: str = "Cache store unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_UNAVAILABLE", message, details)


class CacheSerializationError(CacheError):
    """A cached value could not be encoded or decoded."""

    def __init__(self, message: str = "Cache serialization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("CACHE_SERIALIZATION_ERROR", message, details)
