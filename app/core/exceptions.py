"""
Storefront Exception Hierarchy

Structured exception classes for the dropship provider integration.
All exceptions include code, message, and details for audit trail and debugging.

Exception Hierarchy:
    StorefrontError
    ├── ConfigError              credentials missing / integration disabled
    └── UpstreamError            provider returned an unrecoverable failure
        ├── AuthError            token rejected after refresh + login recovery
        └── RateLimitError       still throttled after the single backoff retry

"Not shippable" is a business outcome, not an error; see
app.services.shipping_validation.NotShippable.
"""
import logging
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class StorefrontError(Exception):
    """
    Base exception for all storefront custom errors.

    Attributes:
        message: Human-readable error description
        code: Machine-readable error code for programmatic handling
        details: Additional context for debugging/audit
        severity: P0-P3 severity level
    """

    default_code: str = "STOREFRONT_ERROR"
    default_severity: str = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        severity: Optional[str] = None,
    ):
        self.message = message
        self.code = code or self.default_code
        self.details = details or {}
        self.severity = severity or self.default_severity
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "severity": self.severity,
            "details": self.details,
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


# =============================================================================
# CJ DROPSHIPPING ERRORS
# =============================================================================

class ConfigError(StorefrontError):
    """Provider credentials missing or integration disabled. Never retried."""
    default_code = "CJ_CONFIG_MISSING"
    default_severity = "P1"


class UpstreamError(StorefrontError):
    """
    Provider call failed and will not be retried.

    The provider's own code, message and requestId are preserved so support
    tickets can reference the exact upstream request.
    """
    default_code = "CJ_UPSTREAM_ERROR"
    default_severity = "P2"

    def __init__(
        self,
        message: str,
        code: Optional[Any] = None,
        request_id: Optional[str] = None,
        status_code: Optional[int] = None,
        endpoint: Optional[str] = None,
        **kwargs
    ):
        details = kwargs.pop("details", {})
        details.update({
            "request_id": request_id,
            "status_code": status_code,
            "endpoint": endpoint,
        })
        super().__init__(
            message,
            code=str(code) if code is not None else None,
            details=details,
            **kwargs
        )
        self.request_id = request_id
        self.status_code = status_code
        self.endpoint = endpoint


class AuthError(UpstreamError):
    """Authentication failed even after refresh-then-login recovery."""
    default_code = "CJ_AUTH_FAILED"
    default_severity = "P0"  # Every provider call is blocked until fixed


class RateLimitError(UpstreamError):
    """Provider still throttling after the single backoff retry."""
    default_code = "CJ_RATE_LIMITED"
    default_severity = "P2"
