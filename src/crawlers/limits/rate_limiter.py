"""Outbound request budget (fixed time windows on shared atomic counters).

Discipline: atomic check-and-increment. `can_proceed()` consumes a slot as
part of the check, so concurrent workers can never both take the last slot.
A denied check gives its slot back.
"""

from __future__ import annotations

import time
from typing import Callable

from src.core.exceptions import RateLimitExceeded
from src.core.logging import logger


class RateLimiter:
    """Fixed-window rate limiter with failure damping.

    - Window counters live in the KV store under `rate_limit:<key>:<bucket>`
      and expire on their own (TTL = window)
    - More than `failure_threshold` tracked failures in a window cut the
      effective limit by `failure_penalty` for the rest of that window
    """

    CACHE_KEY_PREFIX = "rate_limit"
    DEFAULT_KEY = "google"

    def __init__(
        self,
        cache,
        max_requests: int = 60,
        window_seconds: int = 60,
        failure_threshold: int = 5,
        failure_penalty: float = 0.2,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialise.

        Args:
            cache: KV store (CacheService or compatible)
            max_requests: requests allowed per window
            window_seconds: window size in seconds
            failure_threshold: failures tolerated per window before damping
            failure_penalty: fraction removed from the limit when damped
            clock: time source (seconds)
        """
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")

        self.cache = cache
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.failure_threshold = failure_threshold
        self.failure_penalty = failure_penalty
        self._clock = clock

    def _bucket(self) -> int:
        return int(self._clock() // self.window_seconds)

    def _window_key(self, key: str) -> str:
        return f"{self.CACHE_KEY_PREFIX}:{key}:{self._bucket()}"

    def _failure_key(self, key: str) -> str:
        return f"{self.CACHE_KEY_PREFIX}:failures:{key}:{self._bucket()}"

    def effective_limit(self, key: str = DEFAULT_KEY) -> int:
        failures = int(self.cache.get(self._failure_key(key)) or 0)
        if failures > self.failure_threshold:
            return max(1, int(self.max_requests * (1 - self.failure_penalty)))
        return self.max_requests

    def can_proceed(self, key: str = DEFAULT_KEY) -> bool:
        """Take one slot from the current window if one is left."""
        window_key = self._window_key(key)
        count = self.cache.increment(window_key, ttl=self.window_seconds)
        limit = self.effective_limit(key)

        if count > limit:
            self.cache.increment(window_key, -1, ttl=self.window_seconds)
            logger.info(f"[RATE_LIMIT] Budget exhausted: key={key}, limit={limit}/{self.window_seconds}s")
            return False
        return True

    def throttle(self, key: str = DEFAULT_KEY) -> None:
        """Take one slot or raise RateLimitExceeded (recoverable: back off)."""
        if not self.can_proceed(key):
            raise RateLimitExceeded(self.effective_limit(key), self.window_seconds)

    def track_failure(self, key: str = DEFAULT_KEY) -> int:
        """Count an upstream failure against this window.

        Returns:
            failures recorded in the current window
        """
        failures = self.cache.increment(self._failure_key(key), ttl=self.window_seconds)
        if failures == self.failure_threshold + 1:
            logger.warning(
                f"[RATE_LIMIT] Damping enabled: key={key}, failures={failures}, "
                f"limit {self.max_requests} -> {self.effective_limit(key)}"
            )
        return failures

    def get_current_count(self, key: str = DEFAULT_KEY) -> int:
        return max(0, int(self.cache.get(self._window_key(key)) or 0))

    def get_remaining_requests(self, key: str = DEFAULT_KEY) -> int:
        return max(0, self.effective_limit(key) - self.get_current_count(key))

    def reset(self, key: str = DEFAULT_KEY) -> None:
        self.cache.delete(self._window_key(key))
        self.cache.delete(self._failure_key(key))
