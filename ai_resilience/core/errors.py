"""
Exception hierarchy for the orchestration layer.

Only defects are raised to callers. Ordinary unavailability (rate limits,
open circuits, provider outages) travels on AIResponse.failure_reason instead.
"""

from typing import Optional


class AIResilienceError(Exception):
    """Base class for all errors raised by ai_resilience."""


class ConfigurationError(AIResilienceError):
    """Raised when the layer is wired incorrectly (e.g. no providers)."""


class PromptNotFoundError(AIResilienceError):
    """Raised when a named (or versioned) prompt template does not exist."""

    def __init__(self, name: str, version: Optional[str] = None):
        version_text = f" {version}" if version else ""
        super().__init__(f"Prompt not found: {name}{version_text}")
        self.name = name
        self.version = version


class ResponseParseError(AIResilienceError):
    """Raised when a successful provider response violates its JSON contract."""

    def __init__(self, message: str, correlation_id: str):
        super().__init__(message)
        self.correlation_id = correlation_id


class RequestCancelled(AIResilienceError):
    """Raised when the caller cancels an in-flight request."""

    def __init__(self, correlation_id: str):
        super().__init__(f"Request {correlation_id} was cancelled")
        self.correlation_id = correlation_id


class ProviderError(AIResilienceError):
    """Transport, HTTP status, or payload failure inside a provider adapter.

    Never escapes the request manager; it is normalized into a failed AIResponse.
    """

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{provider} API error: {message}")
        self.provider = provider
        self.status_code = status_code
