"""
Request and response types shared by the orchestration layer.

AIResponse is the uniform result of every provider call attempt, whether it
came from a provider, failed admission control, or failed in transport.
"""

import time
import uuid
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Optional


class FailureReason(Enum):
    """Why a request produced no usable content."""
    RATE_LIMITED = "rate_limited"
    COST_LIMIT_EXCEEDED = "cost_limit_exceeded"
    CIRCUIT_OPEN = "circuit_open"
    PROVIDER_ERROR = "provider_error"
    NO_PROVIDER_FOR_MODEL = "no_provider_for_model"


def generate_correlation_id() -> str:
    """Create an opaque id of the form ``ai-<epoch ms>-<9 hex chars>``."""
    return f"ai-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True)
class TokenUsage:
    """Token counts reported by a provider for a single call."""
    prompt_tokens: int
    completion_tokens: int

    @property
    def total_tokens(self) -> int:
        """Total tokens used (prompt + completion)."""
        return self.prompt_tokens + self.completion_tokens


@dataclass(frozen=True)
class AIRequest:
    """One provider call attempt. Immutable; use ``with_model`` to retarget."""
    correlation_id: str
    model: str
    prompt: str
    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    output_schema: Optional[Dict[str, Any]] = None

    def with_model(self, model: str) -> "AIRequest":
        return replace(self, model=model)


@dataclass(frozen=True)
class AIResponse:
    """Uniform result shape regardless of provider or failure path.

    A failed response always carries an error and empty content; a successful
    one always carries non-empty content.
    """
    correlation_id: str
    content: str
    model: str
    processing_time_ms: int
    success: bool
    tokens_used: Optional[int] = None
    cost: Optional[float] = None
    error: Optional[str] = None
    failure_reason: Optional[FailureReason] = None
    provider: Optional[str] = None
    finish_reason: Optional[str] = None

    def __post_init__(self):
        if self.success and not self.content:
            raise ValueError("successful AIResponse requires non-empty content")
        if not self.success:
            if not self.error:
                raise ValueError("failed AIResponse requires an error message")
            if self.content:
                raise ValueError("failed AIResponse must have empty content")

    @classmethod
    def failure(
        cls,
        request: AIRequest,
        error: str,
        reason: FailureReason,
        processing_time_ms: int = 0,
        provider: Optional[str] = None
    ) -> "AIResponse":
        """Build a failed response for ``request``."""
        return cls(
            correlation_id=request.correlation_id,
            content="",
            model=request.model,
            processing_time_ms=processing_time_ms,
            success=False,
            error=error,
            failure_reason=reason,
            provider=provider
        )
