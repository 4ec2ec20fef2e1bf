"""
Custom Exceptions for ContractEar

Hierarchical exception classes for proper error handling across layers.
Each class carries the HTTP status the API layer maps it to.
"""

import re
from typing import Optional, Dict, Any


class ContractEarError(Exception):
    """Base exception for all ContractEar errors."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None
    ):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details
        }


class ValidationError(ContractEarError):
    """Raised when input validation fails."""
    status_code = 400


class UnauthorizedError(ContractEarError):
    """Missing or invalid identity."""
    status_code = 401

    def __init__(self, message: str = "Please sign in to continue"):
        super().__init__(message)


class ForbiddenError(ContractEarError):
    """Valid identity, but the caller does not own the resource."""
    status_code = 403

    def __init__(self, message: str = "You do not have access to this analysis"):
        super().__init__(message)


class NotFoundError(ContractEarError):
    """Raised when a requested resource is not found."""
    status_code = 404

    def __init__(
        self,
        message: str,
        resource: Optional[str] = None,
        resource_id: Optional[str] = None,
    ):
        details = {}
        if resource:
            details["resource"] = resource
        if resource_id:
            details["id"] = resource_id
        super().__init__(message, details)


class PaymentRequiredError(ContractEarError):
    """Payment has not been verified with the gateway yet."""
    status_code = 402

    def __init__(self, message: str = "Payment required before processing"):
        super().__init__(message)


class QuotaExceededError(ContractEarError):
    """The caller's plan does not allow another analysis."""
    status_code = 403

    def __init__(self, plan: str, used: int = 0, limit: int = 0):
        if plan == "none":
            message = "Please choose a plan before uploading."
        else:
            message = (
                f"You've reached your monthly limit of {limit} analyses. "
                "Upgrade your plan for more."
            )
        super().__init__(message, {"plan": plan, "used": used, "limit": limit})


class GatewayUnavailableError(ContractEarError):
    """Transient payment gateway failure; the caller should retry later."""
    status_code = 502

    def __init__(
        self,
        message: str = "Payment provider unavailable",
        status: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        details = {"gateway_status": status} if status else {}
        super().__init__(message, details, original_error)


class InvalidSignatureError(ContractEarError):
    """Webhook signature missing, malformed or not matching."""
    status_code = 401

    def __init__(self, message: str = "Invalid signature"):
        super().__init__(message)


class DatabaseError(ContractEarError):
    """Raised when database operations fail."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        table: Optional[str] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if table:
            details["table"] = table
        super().__init__(message, details, original_error)


class StorageError(ContractEarError):
    """Raised when audio object storage operations fail."""


class ConfigurationError(ContractEarError):
    """Raised when configuration is missing or invalid."""

    def __init__(
        self,
        message: str,
        missing_keys: Optional[list] = None,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if missing_keys:
            details["missing_keys"] = missing_keys
        super().__init__(message, details, original_error)


# =============================================================================
# Worker failures (never returned synchronously, only persisted)
# =============================================================================

class ProcessingError(ContractEarError):
    """Base for failures that move an analysis to the error state."""

    def __init__(
        self,
        message: str,
        model: Optional[str] = None,
        attempts: int = 0,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {"attempts": attempts}
        if model:
            details["model"] = model
        super().__init__(message, details, original_error)


class TranscriptionFailed(ProcessingError):
    """Speech-to-text call failed after exhausting retries."""


class AnalysisProviderError(ProcessingError):
    """Structured analysis call failed after exhausting retries."""


class AnalysisMalformedResponse(ProcessingError):
    """The AI response was not a parseable structured document."""


# =============================================================================
# Message sanitization
# =============================================================================

GENERIC_CONFIG_MESSAGE = "Service configuration error. Please contact support."
PROCESSING_FAILED_MESSAGE = "Processing failed. Please try again or contact support."

_SECRET_PATTERNS = [
    re.compile(r"sk-[A-Za-z0-9_\-]+"),
    re.compile(r"pdl_[A-Za-z0-9_\-]+"),
    re.compile(r"(?i)bearer\s+[A-Za-z0-9._\-]+"),
    re.compile(r"(?i)((?:api[_-]?key|token|secret)=)[^\s&\"']+"),
    re.compile(r"eyJ[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+\.[A-Za-z0-9_\-]+"),
]


def redact_secrets(message: Optional[str]) -> str:
    """
    Produce a client-safe error message.

    Messages that mention an API key are replaced wholesale; anything
    credential-shaped in other messages is masked. Never returns empty.
    """
    if not message or not message.strip():
        return PROCESSING_FAILED_MESSAGE

    if "api key" in message.lower():
        return GENERIC_CONFIG_MESSAGE

    cleaned = message
    for pattern in _SECRET_PATTERNS:
        if pattern.groups:
            cleaned = pattern.sub(lambda m: f"{m.group(1)}***", cleaned)
        else:
            cleaned = pattern.sub("***", cleaned)
    return cleaned[:500]
