"""Fixed-window rate limiting for authorization initiation.

The limiter is keyed by a caller-supplied identity (IP address, account id)
and admits at most ``max_requests`` per window. The admit decision and the
counter increment happen as one atomic step so two concurrent requests can
never both be admitted as the last request of a window.
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable

from dpop_oauth.models.security import RateLimitOptions

logger = logging.getLogger(__name__)


class RateLimiter(ABC):
    """Atomic increment-or-reset capability behind the rate limit gate.

    Implementations may keep counters in process memory (single instance) or
    in an external atomic counter service (multiple instances).
    """

    @abstractmethod
    async def check_rate_limit(self, key: str, options: RateLimitOptions) -> bool:
        """Record a request for ``key`` and report whether it is admitted."""
        ...


class _Window:
    __slots__ = ("count", "window_start")

    def __init__(self, window_start: float):
        self.count = 1
        self.window_start = window_start


class InMemoryRateLimiter(RateLimiter):
    """Process-local fixed-window limiter.

    Windows older than the current window length are swept from the map
    every ``sweep_interval`` calls, so callers that never return do not
    accumulate.

    Args:
        clock: Monotonic time source in seconds; injectable for tests
        sweep_interval: Number of calls between stale-window sweeps
    """

    def __init__(
        self, clock: Callable[[], float] = time.monotonic, sweep_interval: int = 256
    ):
        self._clock = clock
        self._windows: dict[str, _Window] = {}
        self._lock = threading.Lock()
        self.sweep_interval = sweep_interval
        self._calls_since_sweep = 0

    async def check_rate_limit(self, key: str, options: RateLimitOptions) -> bool:
        return self.hit(key, options)

    def hit(self, key: str, options: RateLimitOptions) -> bool:
        """Synchronous form of check_rate_limit."""
        with self._lock:
            now = self._clock()

            self._calls_since_sweep += 1
            if self._calls_since_sweep >= self.sweep_interval:
                self._calls_since_sweep = 0
                self._drop_stale(now, options.window_seconds)

            window = self._windows.get(key)

            if window is None or now - window.window_start >= options.window_seconds:
                self._windows[key] = _Window(now)
                return True

            if window.count < options.max_requests:
                window.count += 1
                return True

        logger.debug(f"Rate limit exceeded for key {key!r}")
        return False

    def purge_expired(self, max_age_seconds: float) -> int:
        """Drop windows older than max_age_seconds. Returns count removed."""
        with self._lock:
            return self._drop_stale(self._clock(), max_age_seconds)

    def _drop_stale(self, now: float, max_age_seconds: float) -> int:
        # Caller holds the lock
        stale = [
            key
            for key, window in self._windows.items()
            if now - window.window_start >= max_age_seconds
        ]
        for key in stale:
            del self._windows[key]
        if stale:
            logger.debug(f"Dropped {len(stale)} stale rate limit windows")
        return len(stale)

    def __len__(self) -> int:
        return len(self._windows)
