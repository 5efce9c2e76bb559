"""Custom exception classes."""

from typing import Any, Dict, Optional


class ChatPipelineException(Exception):
    """Base exception for the chat pipeline application."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(ChatPipelineException):
    """Malformed input exception."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, status_code=400, details=details)


class ForbiddenError(ChatPipelineException):
    """Resource belongs to another operator."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, status_code=403, details=details)


class NotFoundError(ChatPipelineException):
    """Resource not found exception."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, status_code=404, details=details)


class SessionStateError(ChatPipelineException):
    """Session has no answerable turn or is already being answered."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, status_code=409, details=details)


class ModelError(ChatPipelineException):
    """LLM model error."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, status_code=500, details=details)


class ConfigurationError(ModelError):
    """Provider credentials or settings are missing."""


class ProviderError(ModelError):
    """Upstream completion provider failure."""


class ProviderAuthError(ProviderError):
    """Upstream rejected our credentials or permissions. Never retried."""


class ProviderRateLimitError(ProviderError):
    """Upstream asked us to slow down. Retried with backoff."""


class ProviderProtocolError(ProviderError):
    """Network, timeout or malformed stream. Triggers the legacy fallback."""
