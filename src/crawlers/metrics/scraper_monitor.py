"""Circuit breaker + metrics for outbound scraping.

State lives in the shared KV store so every worker process sees the same
circuit. Counters are atomic increments; state changes are compare-and-swap.
"""

from __future__ import annotations

import json
import math
import time
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from src.core.logging import logger


class CircuitStatus(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitState:
    """Persisted circuit state."""

    status: CircuitStatus = CircuitStatus.CLOSED
    opened_at: Optional[float] = None
    trial_at: Optional[float] = None

    def to_json(self) -> str:
        data = asdict(self)
        data["status"] = self.status.value
        return json.dumps(data, sort_keys=True)

    @classmethod
    def from_json(cls, raw: Optional[str]) -> "CircuitState":
        if not raw:
            return cls()
        try:
            data = json.loads(raw)
            return cls(
                status=CircuitStatus(data.get("status", CircuitStatus.CLOSED.value)),
                opened_at=data.get("opened_at"),
                trial_at=data.get("trial_at"),
            )
        except (ValueError, TypeError):
            logger.warning(f"[CIRCUIT] Unreadable state {raw!r}, treating as closed")
            return cls()


class ScraperMonitor:
    """Circuit breaker (closed -> open -> half_open -> closed) and metrics.

    - `failure_threshold` consecutive failures open the circuit
    - after `cooldown_seconds` one trial request is let through (half_open)
    - the trial's success closes the circuit, its failure reopens it
    - success/failure counts are kept in time buckets for a rolling success rate
    """

    METRICS_PREFIX = "scraper_metrics"
    CIRCUIT_PREFIX = "scraper_circuit"

    def __init__(
        self,
        cache,
        failure_threshold: int = 5,
        cooldown_seconds: int = 300,
        tracking_window_seconds: int = 300,
        recovery_success_rate: float = 80.0,
        metrics_window_seconds: int = 300,
        metrics_bucket_seconds: int = 60,
        top_reasons: int = 5,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialise.

        Args:
            cache: KV store (CacheService or compatible)
            failure_threshold: consecutive failures that open the circuit
            cooldown_seconds: time the circuit stays open before a trial
            tracking_window_seconds: lifetime of the consecutive-failure counter
            recovery_success_rate: rolling success rate (%) that closes an open circuit
            metrics_window_seconds: rolling window for success rate / reasons
            metrics_bucket_seconds: bucket granularity inside that window
            top_reasons: size of the ranked failure-reason list
            clock: time source (seconds)
        """
        if failure_threshold <= 0:
            raise ValueError("failure_threshold must be positive")
        if metrics_bucket_seconds <= 0:
            raise ValueError("metrics_bucket_seconds must be positive")

        self.cache = cache
        self.failure_threshold = failure_threshold
        self.cooldown_seconds = cooldown_seconds
        self.tracking_window_seconds = tracking_window_seconds
        self.recovery_success_rate = recovery_success_rate
        self.metrics_window_seconds = metrics_window_seconds
        self.metrics_bucket_seconds = metrics_bucket_seconds
        self.top_reasons = top_reasons
        self._clock = clock

    # ------------------------------------------------------------------
    # keys
    # ------------------------------------------------------------------

    @property
    def _state_key(self) -> str:
        return f"{self.CIRCUIT_PREFIX}:state"

    @property
    def _consecutive_key(self) -> str:
        return f"{self.CIRCUIT_PREFIX}:consecutive_failures"

    def _bucket(self) -> int:
        return int(self._clock() // self.metrics_bucket_seconds)

    def _window_buckets(self) -> range:
        current = self._bucket()
        count = max(1, math.ceil(self.metrics_window_seconds / self.metrics_bucket_seconds))
        return range(current - count + 1, current + 1)

    def _counter_key(self, kind: str, bucket: int) -> str:
        return f"{self.METRICS_PREFIX}:{kind}:{bucket}"

    @property
    def _bucket_ttl(self) -> int:
        return self.metrics_window_seconds + self.metrics_bucket_seconds

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------

    def _load_state(self) -> Tuple[CircuitState, Optional[str]]:
        raw = self.cache.get(self._state_key)
        return CircuitState.from_json(raw), raw

    def _transition(self, raw: Optional[str], new_state: CircuitState) -> bool:
        """Swap state only if nobody changed it since `raw` was read."""
        return self.cache.compare_and_swap(self._state_key, raw, new_state.to_json())

    def get_circuit_status(self) -> CircuitStatus:
        state, _ = self._load_state()
        return state.status

    def is_circuit_open(self) -> bool:
        """True while outbound requests must not be attempted.

        An expired open circuit turns half_open and exactly one caller (the
        compare-and-swap winner) gets False to run the trial request.
        """
        allowed, _ = self.try_pass()
        return not allowed

    def try_pass(self) -> Tuple[bool, Optional[float]]:
        """Whether a request may go out now.

        Returns:
            (allowed, trial_at). trial_at is set only for the caller that won
            the half_open trial; pass it to `release_trial()` if the trial
            request is not sent after all.
        """
        state, raw = self._load_state()
        now = self._clock()

        if state.status == CircuitStatus.CLOSED:
            return True, None

        if state.status == CircuitStatus.OPEN:
            if now - (state.opened_at or 0.0) < self.cooldown_seconds:
                return False, None
            trial = CircuitState(CircuitStatus.HALF_OPEN, opened_at=state.opened_at, trial_at=now)
            if self._transition(raw, trial):
                logger.info(f"[CIRCUIT] HALF_OPEN after {now - (state.opened_at or now):.0f}s, allowing one trial")
                return True, now
            return False, None

        # half_open: a trial is in flight; re-issue it only if it never reported
        # or was handed back (trial_at cleared)
        if state.trial_at is None or now - state.trial_at >= self.cooldown_seconds:
            retrial = CircuitState(CircuitStatus.HALF_OPEN, opened_at=state.opened_at, trial_at=now)
            if self._transition(raw, retrial):
                logger.info("[CIRCUIT] Allowing another trial")
                return True, now
        return False, None

    def release_trial(self, trial_at: float) -> bool:
        """Hand back a half_open trial that was granted but never sent.

        Returns:
            True if the next caller can take the trial immediately
        """
        state, raw = self._load_state()
        if state.status != CircuitStatus.HALF_OPEN or state.trial_at != trial_at:
            return False
        released = CircuitState(CircuitStatus.HALF_OPEN, opened_at=state.opened_at, trial_at=None)
        if self._transition(raw, released):
            logger.info("[CIRCUIT] Trial handed back unused")
            return True
        return False

    def can_proceed(self) -> bool:
        return not self.is_circuit_open()

    def remaining_open_seconds(self) -> float:
        state, _ = self._load_state()
        if state.status != CircuitStatus.OPEN or state.opened_at is None:
            return 0.0
        return max(0.0, self.cooldown_seconds - (self._clock() - state.opened_at))

    # ------------------------------------------------------------------
    # recording
    # ------------------------------------------------------------------

    def record_success(self) -> None:
        self.cache.increment(self._counter_key("success", self._bucket()), ttl=self._bucket_ttl)
        self.cache.delete(self._consecutive_key)

        state, raw = self._load_state()
        if state.status == CircuitStatus.HALF_OPEN:
            if self._transition(raw, CircuitState()):
                logger.info("[CIRCUIT] CLOSED (trial request succeeded)")
        elif state.status == CircuitStatus.OPEN:
            now = self._clock()
            if self.get_success_rate() >= self.recovery_success_rate:
                if self._transition(raw, CircuitState()):
                    logger.info("[CIRCUIT] CLOSED (success rate recovered)")
            elif now - (state.opened_at or 0.0) >= self.cooldown_seconds:
                half_open = CircuitState(CircuitStatus.HALF_OPEN, opened_at=state.opened_at, trial_at=now)
                if self._transition(raw, half_open):
                    logger.info("[CIRCUIT] HALF_OPEN (success after cooldown)")

    def record_failure(self, reason: str) -> int:
        """Tally a classified failure.

        Returns:
            consecutive failures after this one
        """
        bucket = self._bucket()
        self.cache.increment(self._counter_key("failure", bucket), ttl=self._bucket_ttl)
        self.cache.hash_increment(self._counter_key("reasons", bucket), reason or "unknown", ttl=self._bucket_ttl)
        consecutive = self.cache.increment(self._consecutive_key, ttl=self.tracking_window_seconds)

        state, raw = self._load_state()
        now = self._clock()
        if state.status == CircuitStatus.HALF_OPEN:
            if self._transition(raw, CircuitState(CircuitStatus.OPEN, opened_at=now)):
                logger.warning(f"[CIRCUIT] OPEN again (trial failed: {reason})")
        elif state.status == CircuitStatus.CLOSED and consecutive >= self.failure_threshold:
            if self._transition(raw, CircuitState(CircuitStatus.OPEN, opened_at=now)):
                logger.error(
                    f"[CIRCUIT] OPEN (consecutive_failures={consecutive} >= {self.failure_threshold}, "
                    f"last_reason={reason}). Scraping paused for {self.cooldown_seconds}s"
                )
        return consecutive

    # ------------------------------------------------------------------
    # metrics
    # ------------------------------------------------------------------

    def _sum_counters(self, kind: str) -> int:
        total = 0
        for bucket in self._window_buckets():
            total += int(self.cache.get(self._counter_key(kind, bucket)) or 0)
        return total

    def get_success_rate(self) -> float:
        """Rolling success rate in percent (100.0 with no traffic)."""
        successes = self._sum_counters("success")
        failures = self._sum_counters("failure")
        total = successes + failures
        if total == 0:
            return 100.0
        return round(successes / total * 100, 2)

    def get_failure_reasons(self) -> List[Dict[str, Any]]:
        tally: Dict[str, int] = {}
        for bucket in self._window_buckets():
            for reason, count in self.cache.hash_get_all(self._counter_key("reasons", bucket)).items():
                tally[reason] = tally.get(reason, 0) + int(count)
        ranked = sorted(tally.items(), key=lambda item: (-item[1], item[0]))
        return [{"reason": reason, "count": count} for reason, count in ranked[: self.top_reasons]]

    def get_consecutive_failures(self) -> int:
        return int(self.cache.get(self._consecutive_key) or 0)

    def get_metrics(self) -> Dict[str, Any]:
        state, _ = self._load_state()
        successes = self._sum_counters("success")
        failures = self._sum_counters("failure")
        total = successes + failures
        return {
            "success_count": successes,
            "failure_count": failures,
            "success_rate": round(successes / total * 100, 2) if total else 100.0,
            "circuit_status": state.status.value,
            "opened_at": state.opened_at,
            "consecutive_failures": self.get_consecutive_failures(),
            "failure_reasons": self.get_failure_reasons(),
            "window_seconds": self.metrics_window_seconds,
        }

    def get_stats(self) -> Dict[str, Any]:
        return self.get_metrics()

    def reset(self) -> None:
        for bucket in self._window_buckets():
            for kind in ("success", "failure", "reasons"):
                self.cache.delete(self._counter_key(kind, bucket))
        self.cache.delete(self._consecutive_key)
        self.cache.delete(self._state_key)
        logger.info("[CIRCUIT] Monitor reset")

    def __repr__(self) -> str:
        return (
            f"ScraperMonitor({self.get_circuit_status().value}, "
            f"consecutive={self.get_consecutive_failures()}/{self.failure_threshold})"
        )
