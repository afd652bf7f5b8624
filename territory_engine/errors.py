"""Error taxonomy for territory resolution.

Every failure that leaves the engine is a ``ResolutionError`` subclass carrying
a stable ``code``, whether the caller may retry, and a message safe to show an
end user. Municipal (non-deregulated) ZIPs are not errors; they resolve to a
``NonDeregulatedOutcome``.
"""

from enum import Enum
from typing import Optional


class ErrorCode(str, Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    NON_DEREGULATED = "NON_DEREGULATED"
    AMBIGUOUS = "AMBIGUOUS"
    RATE_LIMITED = "RATE_LIMITED"
    UPSTREAM_FAILURE = "UPSTREAM_FAILURE"


class ResolutionError(Exception):
    """Base class for resolution failures."""

    code: ErrorCode = ErrorCode.UPSTREAM_FAILURE
    error_type: str = "error"
    http_status: int = 500
    retryable: bool = False
    default_message = "Something went wrong while finding your utility."

    def __init__(self, message: str = "", context: Optional[dict] = None):
        super().__init__(message or self.default_message)
        self.message = message or self.default_message
        self.context = context or {}

    @property
    def user_message(self) -> str:
        return self.message

    def to_dict(self) -> dict:
        body = {
            "success": False,
            "errorType": self.error_type,
            "errorCode": self.code.value,
            "error": self.user_message,
            "retryable": self.retryable,
        }
        return body


class ValidationError(ResolutionError):
    code = ErrorCode.VALIDATION_ERROR
    error_type = "validation"
    http_status = 400
    default_message = "Please enter a valid 5-digit Texas ZIP code."


class NotFoundError(ResolutionError):
    code = ErrorCode.NOT_FOUND
    error_type = "not_found"
    http_status = 404
    default_message = "We don't have electricity service information for this ZIP code yet."


class AmbiguousAddressError(ResolutionError):
    code = ErrorCode.AMBIGUOUS
    error_type = "ambiguous"
    http_status = 409
    default_message = "This address matches more than one utility. Please confirm your exact service address."

    def __init__(self, message: str = "", candidates: Optional[list] = None, context: Optional[dict] = None):
        super().__init__(message, context)
        self.candidates = candidates or []

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["candidateTerritories"] = self.candidates
        return body


class RateLimitedError(ResolutionError):
    code = ErrorCode.RATE_LIMITED
    error_type = "rate_limited"
    http_status = 429
    retryable = True
    default_message = "Too many requests. Please wait a moment and try again."

    def __init__(self, retry_after: int, message: str = "", context: Optional[dict] = None):
        super().__init__(message, context)
        self.retry_after = max(1, int(retry_after))

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["retryAfter"] = self.retry_after
        return body


class UpstreamFailureError(ResolutionError):
    code = ErrorCode.UPSTREAM_FAILURE
    error_type = "upstream_failure"
    http_status = 503
    retryable = True
    default_message = "Address lookup is temporarily unavailable. Please try again shortly."


class RegistryError(Exception):
    """Service-point registry call failed (timeout, transport, bad payload)."""


class CatalogError(Exception):
    """Territory catalog is missing, unreadable, or internally inconsistent."""
