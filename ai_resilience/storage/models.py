"""
Records persisted by the storage layer.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class AIRequestLog:
    """Immutable audit record of one AI operation invocation.

    Written for successful, degraded and failed invocations alike.
    """
    timestamp: datetime
    correlation_id: str
    operation: str
    model: str
    success: bool
    processing_time_ms: int
    tokens_used: Optional[int] = None
    cost: Optional[float] = None
    error: Optional[str] = None
    user_id: Optional[str] = None
    incident_id: Optional[str] = None


@dataclass(frozen=True)
class PromptUsageStats:
    """Running usage statistics for one prompt version."""
    usage_count: int
    success_count: int
    average_response_time: float

    @property
    def success_rate(self) -> float:
        if self.usage_count == 0:
            return 1.0
        return self.success_count / self.usage_count
