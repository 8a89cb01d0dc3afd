"""
Shared error handling for the FRED web proxy.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class ProxyException(Exception):
    """Base exception for proxy services."""

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


class ValidationError(ProxyException):
    """Malformed or contradictory client request."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class UpstreamError(ProxyException):
    """Non-success answer, network failure or timeout from the upstream API."""

    def __init__(
        self,
        message: str = "Upstream request failed",
        *,
        status_code: Optional[int] = None,
        timeout: bool = False,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.status_code = status_code
        self.timeout = timeout
        merged = {"upstream_status": status_code} if status_code is not None else {}
        merged.update(details or {})
        super().__init__("UPSTREAM_ERROR", f"fred: {message}", merged)

    @property
    def transient(self) -> bool:
        """Whether a later attempt could plausibly succeed."""
        if self.status_code is None or self.timeout:
            return True
        return self.status_code == 429 or self.status_code >= 500


class StoreError(ProxyException):
    """Local persistence failure."""

    def __init__(self, message: str = "Cache store error", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORE_ERROR", message, details)
