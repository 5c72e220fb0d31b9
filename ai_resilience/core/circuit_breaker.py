"""
Per-provider circuit breaker.

States:
1. CLOSED - normal operation; consecutive failures are counted
2. OPEN - calls rejected until ``reset_timeout_ms`` has passed since the last failure
3. HALF_OPEN - probing; enough successes close the circuit, any failure reopens it

The OPEN -> HALF_OPEN transition is lazy: it happens inside ``can_execute``
when the timeout has elapsed. There is no background timer.
"""

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import structlog

logger = structlog.get_logger(__name__)


class CircuitState(str, Enum):
    """Circuit breaker states."""
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass(frozen=True)
class CircuitBreakerMetrics:
    state: CircuitState
    failure_count: int
    success_count: int
    last_failure_time: float


class CircuitBreaker:
    """Failure-state machine guarding a single provider."""

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        success_threshold: int = 3,
        reset_timeout_ms: int = 60000,
        clock: Optional[Callable[[], float]] = None
    ):
        """
        Args:
            name: Provider name, used in logs
            failure_threshold: Consecutive failures that open the circuit
            success_threshold: HALF_OPEN successes that close it again
            reset_timeout_ms: Time OPEN before a trial request is allowed
            clock: Millisecond clock, injectable for tests

        Raises:
            ValueError: If any threshold or timeout is invalid
        """
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be > 0")
        if success_threshold <= 0:
            raise ValueError("success_threshold must be > 0")
        if reset_timeout_ms < 0:
            raise ValueError("reset_timeout_ms must be >= 0")

        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.reset_timeout_ms = reset_timeout_ms
        self._clock = clock or (lambda: time.time() * 1000)
        self._lock = threading.Lock()

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time = 0.0

    @property
    def state(self) -> CircuitState:
        return self._state

    def _transition_to(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        logger.info(
            "circuit_state_changed",
            circuit=self.name,
            old_state=old_state.value,
            new_state=new_state.value,
            failure_count=self._failure_count,
        )

    def can_execute(self) -> bool:
        """Whether a call may go through right now.

        May move OPEN to HALF_OPEN when the reset timeout has elapsed.
        """
        with self._lock:
            if self._state == CircuitState.CLOSED:
                return True

            if self._state == CircuitState.OPEN:
                elapsed = self._clock() - self._last_failure_time
                if elapsed >= self.reset_timeout_ms:
                    self._success_count = 0
                    self._transition_to(CircuitState.HALF_OPEN)
                    return True
                return False

            return True

    def record_success(self) -> None:
        with self._lock:
            self._failure_count = 0

            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self.success_threshold:
                    self._success_count = 0
                    self._transition_to(CircuitState.CLOSED)

    def record_failure(self) -> None:
        with self._lock:
            self._failure_count += 1
            self._last_failure_time = self._clock()

            if self._state == CircuitState.HALF_OPEN:
                self._success_count = 0
                self._transition_to(CircuitState.OPEN)
            elif (self._state == CircuitState.CLOSED and
                    self._failure_count >= self.failure_threshold):
                self._transition_to(CircuitState.OPEN)

    def get_metrics(self) -> CircuitBreakerMetrics:
        """Snapshot of the breaker. Read-only; never triggers a transition."""
        with self._lock:
            return CircuitBreakerMetrics(
                state=self._state,
                failure_count=self._failure_count,
                success_count=self._success_count,
                last_failure_time=self._last_failure_time
            )

    def reset(self) -> None:
        """Force the breaker back to CLOSED with cleared counters."""
        with self._lock:
            if self._state != CircuitState.CLOSED:
                self._transition_to(CircuitState.CLOSED)
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_time = 0.0
