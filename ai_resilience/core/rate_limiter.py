"""
Per-key admission control.

Fixed-window counting: the first request for a key opens a window of
``window_ms``; up to ``max_requests`` are admitted inside it, and the window
restarts on the first request after it has elapsed. Concurrent callers may
race at a window boundary, so this is a soft limit rather than a hard quota.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import structlog

logger = structlog.get_logger(__name__)


def _now_ms() -> float:
    return time.time() * 1000


@dataclass
class RateLimiterWindow:
    window_start_ms: float
    count: int


class RateLimiter:
    """Fixed-window rate limiter keyed by caller id (typically a user id)."""

    def __init__(
        self,
        window_ms: int = 60000,
        max_requests: int = 10,
        clock: Optional[Callable[[], float]] = None
    ):
        """
        Args:
            window_ms: Window length in milliseconds
            max_requests: Requests admitted per key per window
            clock: Millisecond clock, injectable for tests

        Raises:
            ValueError: If either limit is not positive
        """
        if window_ms <= 0:
            raise ValueError("window_ms must be > 0")
        if max_requests <= 0:
            raise ValueError("max_requests must be > 0")

        self.window_ms = window_ms
        self.max_requests = max_requests
        self._clock = clock or _now_ms
        self._windows: Dict[str, RateLimiterWindow] = {}
        self._lock = threading.Lock()

    def _expired(self, window: RateLimiterWindow, now: float) -> bool:
        return now - window.window_start_ms > self.window_ms

    def is_allowed(self, key: str) -> bool:
        """Admit or deny one request for ``key``.

        A denied request does not consume anything from the window.
        """
        with self._lock:
            now = self._clock()
            window = self._windows.get(key)

            if window is None or self._expired(window, now):
                self._windows[key] = RateLimiterWindow(window_start_ms=now, count=1)
                return True

            if window.count < self.max_requests:
                window.count += 1
                return True

        logger.warning("rate_limit_exceeded", key=key, max_requests=self.max_requests)
        return False

    def remaining(self, key: str) -> int:
        """Requests still admissible for ``key`` in its current window."""
        with self._lock:
            window = self._windows.get(key)
            if window is None or self._expired(window, self._clock()):
                return self.max_requests
            return max(0, self.max_requests - window.count)

    def reset(self, key: Optional[str] = None) -> None:
        """Drop the window for ``key``, or every window when no key is given."""
        with self._lock:
            if key is None:
                self._windows.clear()
            else:
                self._windows.pop(key, None)
