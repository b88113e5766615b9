"""
Shared error handling for the Salesforce Access Layer.

Every failure a caller can observe is an ``AccessLayerException``. Failures
reported by an upstream dependency are ``ExternalServiceError`` subclasses,
one per failure kind, and carry the classification they were built from.
"""

from typing import Any, Dict, Optional
from pydantic import BaseModel, Field

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class AccessLayerException(Exception):
    """Base exception for the Access Layer."""

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class ExternalServiceError(AccessLayerException):
    """Failure reported by (or while talking to) an external service."""

    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(
        self,
        service: str,
        message: str = "External service error",
        details: Optional[Dict[str, Any]] = None,
        *,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        body: Optional[str] = None,
        classification: Any = None,
    ):
        self.service = service
        self.status_code = status_code
        self.error_code = error_code
        self.body = body
        self.classification = classification
        details = dict(details or {})
        if status_code is not None:
            details.setdefault("status_code", status_code)
        if error_code:
            details.setdefault("error_code", error_code)
        super().__init__(type(self).code, f"{service}: {message}", details)


class AuthenticationError(ExternalServiceError):
    """Credentials were rejected or could not be obtained."""

    code = "AUTHENTICATION_ERROR"

    def __init__(self, message: str = "Authentication failed", details: Optional[Dict[str, Any]] = None,
                 *, service: str = "salesforce", **kwargs):
        kwargs.setdefault("status_code", 401)
        super().__init__(service, message, details, **kwargs)


class RateLimitError(ExternalServiceError):
    """Rate limiting errors."""

    code = "RATE_LIMIT_ERROR"

    def __init__(self, message: str = "Rate limit exceeded", retry_after_seconds: int = 60,
                 details: Optional[Dict[str, Any]] = None, *, service: str = "salesforce", **kwargs):
        self.retry_after_seconds = retry_after_seconds
        kwargs.setdefault("status_code", 429)
        details = dict(details or {})
        details.setdefault("retry_after_seconds", retry_after_seconds)
        super().__init__(service, message, details, **kwargs)


class TransientServiceError(ExternalServiceError):
    """Server-side or network failure that may succeed when retried."""

    code = "TRANSIENT_SERVICE_ERROR"

    def __init__(self, message: str = "Service temporarily unavailable", details: Optional[Dict[str, Any]] = None,
                 *, service: str = "salesforce", **kwargs):
        super().__init__(service, message, details, **kwargs)


class InvalidRequestError(ExternalServiceError):
    """Request rejected by the upstream service; retrying will not help."""

    code = "INVALID_REQUEST"

    def __init__(self, message: str = "Request rejected", details: Optional[Dict[str, Any]] = None,
                 *, service: str = "salesforce", **kwargs):
        super().__init__(service, message, details, **kwargs)


class MalformedResponseError(ExternalServiceError):
    """Upstream answered with a body that could not be understood."""

    code = "MALFORMED_RESPONSE"

    def __init__(self, message: str = "Malformed response", details: Optional[Dict[str, Any]] = None,
                 *, service: str = "salesforce", **kwargs):
        super().__init__(service, message, details, **kwargs)
