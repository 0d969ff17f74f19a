"""
Error taxonomy for the AI service.

Callers branch on the exception class (and ``ProviderError.code``) to tell
an exhausted quota apart from a vendor failure.
"""

from datetime import datetime
from enum import Enum
from typing import Optional


class ProviderErrorCode(str, Enum):
    API_ERROR = "API_ERROR"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    MAX_TOKENS_EXCEEDED = "MAX_TOKENS_EXCEEDED"
    MISSING_API_KEY = "MISSING_API_KEY"
    NO_FUNCTION_CALL = "NO_FUNCTION_CALL"
    UNSUPPORTED_FEATURE = "UNSUPPORTED_FEATURE"
    STREAM_ERROR = "STREAM_ERROR"


class AIServiceError(Exception):
    """Base class for every error raised by the AI service."""


class ProviderError(AIServiceError):
    """Transport or vendor failure from a provider adapter."""

    def __init__(
        self,
        message: str,
        code: ProviderErrorCode,
        provider: Optional[str] = None,
        model: Optional[str] = None,
        http_status: Optional[int] = None,
    ):
        super().__init__(message)
        self.code = code
        self.provider = provider
        self.model = model
        self.http_status = http_status

    def __repr__(self) -> str:
        return (
            f"ProviderError(code={self.code.value}, provider={self.provider}, "
            f"model={self.model}, http_status={self.http_status})"
        )


class QuotaExceededError(AIServiceError):
    """Raised when the caller has no remaining budget for a feature."""

    def __init__(self, message: str, reset_at: Optional[datetime] = None):
        super().__init__(message)
        self.reset_at = reset_at


class CacheError(AIServiceError):
    """Persistence failure on a cache read or write."""


class AccountingError(AIServiceError, ValueError):
    """Model missing from the pricing table."""


class ConfigurationError(AIServiceError, ValueError):
    """Invalid AI service configuration."""
