"""Retry Strategy - bounded retry / backoff decisions

Decides what happens after an attempt without touching any I/O, so the
policy can be tested on its own.
"""

import random
from typing import Optional, Sequence

from src.engine.result import AttemptOutcome, NextAction


class RetryStrategy:
    """Retry decision with backoff and jitter

    Usage:
        strategy = RetryStrategy(backoff_schedule=[30, 60, 120])
        action = strategy.decide_next_action(outcome, attempts_so_far=1, max_attempts=3)
    """

    def __init__(
        self,
        backoff_schedule: Optional[Sequence[int]] = None,
        base_delay_s: float = 30.0,
        max_delay_s: float = 600.0,
        jitter: float = 0.1,
        rng: Optional[random.Random] = None,
    ) -> None:
        """
        Args:
            backoff_schedule: delay per consumed attempt (last entry repeats);
                empty/None -> exponential base_delay_s * 2**(n-1)
            base_delay_s: base for exponential backoff
            max_delay_s: cap before jitter
            jitter: extra random delay as a fraction of the base delay
            rng: random source (seeded in tests)
        """
        if jitter < 0:
            raise ValueError("jitter must be >= 0")
        self.backoff_schedule = list(backoff_schedule or [])
        self.base_delay_s = base_delay_s
        self.max_delay_s = max_delay_s
        self.jitter = jitter
        self._rng = rng or random.Random()

    def backoff_delay(self, attempts_so_far: int) -> float:
        """Delay before the attempt that follows `attempts_so_far` failures

        Args:
            attempts_so_far: attempts already consumed (>= 1)

        Returns:
            float: seconds to wait
        """
        n = max(1, attempts_so_far)
        if self.backoff_schedule:
            base = float(self.backoff_schedule[min(n, len(self.backoff_schedule)) - 1])
        else:
            base = self.base_delay_s * (2 ** (n - 1))
        base = min(base, self.max_delay_s)
        if self.jitter:
            base += self._rng.uniform(0, base * self.jitter)
        return base

    def decide_next_action(
        self,
        outcome: AttemptOutcome,
        attempts_so_far: int,
        max_attempts: int,
    ) -> NextAction:
        """success -> completed, budget left -> retry_after(backoff), else terminal_fail"""
        if outcome.succeeded:
            return NextAction.completed()

        if attempts_so_far < max_attempts:
            return NextAction.retry_after(
                self.backoff_delay(attempts_so_far),
                reason=outcome.reason,
                error_message=outcome.error_message,
            )

        return NextAction.terminal_fail(outcome.reason, outcome.error_message)
