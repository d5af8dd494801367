"""Retry decision unit tests"""
import random

import pytest

from src.crawlers.google.parsing import ParseResult
from src.engine.result import ActionKind, AttemptOutcome, NextAction, ScrapeJob
from src.engine.strategy import RetryStrategy


@pytest.fixture
def strategy() -> RetryStrategy:
    return RetryStrategy(backoff_schedule=[30, 60, 120], jitter=0.0)


class TestBackoff:

    @pytest.mark.parametrize("attempts, expected", [(1, 30), (2, 60), (3, 120), (4, 120), (0, 30)])
    def test_schedule(self, strategy, attempts, expected):
        assert strategy.backoff_delay(attempts) == expected

    def test_exponential_without_schedule(self):
        strategy = RetryStrategy(base_delay_s=10, max_delay_s=50, jitter=0.0)
        assert [strategy.backoff_delay(n) for n in (1, 2, 3, 4)] == [10, 20, 40, 50]

    def test_jitter_bounded(self):
        strategy = RetryStrategy(backoff_schedule=[30], jitter=0.1, rng=random.Random(1))
        for _ in range(50):
            assert 30 <= strategy.backoff_delay(1) <= 33

    def test_negative_jitter_rejected(self):
        with pytest.raises(ValueError):
            RetryStrategy(jitter=-0.1)


class TestDecideNextAction:

    def test_success_completes(self, strategy):
        action = strategy.decide_next_action(AttemptOutcome.success(ParseResult()), 1, 3)
        assert action.kind == ActionKind.COMPLETED
        assert action.is_terminal

    def test_failure_with_budget_retries(self, strategy):
        outcome = AttemptOutcome.failure("HTTP 503", "Search request failed with HTTP 503")

        action = strategy.decide_next_action(outcome, attempts_so_far=1, max_attempts=3)

        assert action.kind == ActionKind.RETRY
        assert action.delay_s == 30
        assert action.reason == "HTTP 503"
        assert action.consumes_attempt

    def test_second_failure_waits_longer(self, strategy):
        outcome = AttemptOutcome.failure("timeout", "timed out")
        assert strategy.decide_next_action(outcome, 2, 3).delay_s == 60

    def test_exhausted_budget_fails(self, strategy):
        outcome = AttemptOutcome.failure("timeout", "timed out")

        action = strategy.decide_next_action(outcome, attempts_so_far=3, max_attempts=3)

        assert action.kind == ActionKind.FAILED
        assert action.error_message == "timed out"
        assert action.is_terminal


class TestJobState:

    def test_fresh_job(self):
        job = ScrapeJob(keyword_id=7)
        assert job.attempt == 0
        assert job.attempt_number == 1
        assert job.claimed is False
        assert len(job.token) == 32

    def test_tokens_unique(self):
        assert ScrapeJob(keyword_id=1).token != ScrapeJob(keyword_id=1).token

    def test_release_is_not_terminal_and_free(self):
        action = NextAction.release(60, "circuit_open")
        assert not action.is_terminal
        assert not action.consumes_attempt
