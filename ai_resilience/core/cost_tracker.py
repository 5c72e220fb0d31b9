"""
Monetary budget accounting for one tracking period.

The tracker has no notion of calendar days; the owning process calls
``reset`` when a new period starts.
"""

import threading
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class CostMetrics:
    total_cost: float
    request_count: int
    remaining_budget: float


class CostTracker:
    """Running cost ledger checked against a daily limit.

    Negative costs are accepted as-is and reduce the running total.
    """

    def __init__(self, daily_limit: float = 50.0):
        self.daily_limit = daily_limit
        self._total_cost = 0.0
        self._request_count = 0
        self._lock = threading.Lock()

    def track_request(self, cost: Optional[float] = None) -> None:
        """Count one request and add its cost (missing cost counts as 0)."""
        with self._lock:
            self._request_count += 1
            if cost is not None:
                self._total_cost += cost

    def is_within_daily_limit(self) -> bool:
        # A non-positive limit means no budget at all.
        if self.daily_limit <= 0:
            return False
        with self._lock:
            return self._total_cost <= self.daily_limit

    def get_metrics(self) -> CostMetrics:
        with self._lock:
            return CostMetrics(
                total_cost=self._total_cost,
                request_count=self._request_count,
                remaining_budget=self.daily_limit - self._total_cost
            )

    def reset(self) -> None:
        """Start a new tracking period."""
        with self._lock:
            self._total_cost = 0.0
            self._request_count = 0
