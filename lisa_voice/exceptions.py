"""
Error taxonomy for the voice engine.

Provider errors are caught by the provider chain, action errors by the
action executor, and SessionNotFound becomes a 404 on the REST API.
"""

from typing import Any, Dict, Optional


class LisaError(Exception):
    """Base exception for voice engine operations."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code or "LISA_ERROR"
        self.details = details or {}


class ProviderUnavailable(LisaError):
    """Provider has no credentials or its client library is missing."""

    def __init__(self, provider: str, message: Optional[str] = None, **kwargs):
        super().__init__(
            message or f"{provider} is not configured",
            code="PROVIDER_UNAVAILABLE",
            **kwargs,
        )
        self.provider = provider


class ProviderTimeout(LisaError):
    """Provider call exceeded its time box."""

    def __init__(self, provider: str, timeout: float, **kwargs):
        super().__init__(
            f"{provider} did not respond within {timeout:.1f}s",
            code="PROVIDER_TIMEOUT",
            **kwargs,
        )
        self.provider = provider
        self.timeout = timeout


class ProviderError(LisaError):
    """Provider answered with an error or a malformed payload."""

    def __init__(self, provider: str, message: str, **kwargs):
        super().__init__(message, code="PROVIDER_ERROR", **kwargs)
        self.provider = provider


class AllProvidersFailed(LisaError):
    """Every provider in a chain without a guaranteed fallback failed."""

    def __init__(self, operation: str, errors: Dict[str, str]):
        super().__init__(
            f"All providers failed for {operation}",
            code="ALL_PROVIDERS_FAILED",
            details={"errors": errors},
        )
        self.operation = operation
        self.errors = errors


class ActionFailed(LisaError):
    """Downstream store or action error."""

    def __init__(self, action: str, message: str, **kwargs):
        super().__init__(message, code="ACTION_FAILED", **kwargs)
        self.action = action


class SessionNotFound(LisaError):
    """No conversation state exists for the session."""

    def __init__(self, session_id: str):
        super().__init__(
            f"No active conversation for session {session_id}",
            code="SESSION_NOT_FOUND",
        )
        self.session_id = session_id
