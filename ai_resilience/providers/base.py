"""
Provider adapter contract.

An adapter performs exactly one network call per ``complete`` invocation and
either returns a successful AIResponse or raises ProviderError. Retrying,
failover and circuit breaking belong to the request manager.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List

from ai_resilience.core.models import AIRequest, AIResponse


@dataclass(frozen=True)
class ProviderConfig:
    """Connection settings for one provider."""
    name: str
    api_key: str
    base_url: str
    models: List[str] = field(default_factory=list)
    priority: int = 1  # Lower number = tried first
    enabled: bool = True


DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 1000


class AIProvider(ABC):
    """Base class for provider adapters."""

    def __init__(self, config: ProviderConfig):
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    @property
    def priority(self) -> int:
        return self.config.priority

    def supports_model(self, model: str) -> bool:
        """Exact match, or a configured id contained in the requested one."""
        return any(
            supported == model or supported in model
            for supported in self.config.models
        )

    @abstractmethod
    def complete(self, request: AIRequest, timeout_s: float) -> AIResponse:
        """Send ``request`` and return a successful response.

        Raises:
            ProviderError: On transport failure, non-2xx status, timeout,
                or a payload that cannot be interpreted
        """

    def close(self) -> None:
        """Release any network resources held by the adapter."""
