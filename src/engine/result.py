"""Scrape job state, attempt outcomes and next-action decisions."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional
from uuid import uuid4

from src.crawlers.google.parsing import ParseResult


class ActionKind(str, Enum):
    """What the dispatcher does after an attempt"""

    COMPLETED = "completed"  # keyword completed
    RETRY = "retry"  # attempt consumed, re-run after delay
    RELEASE = "release"  # flow control, re-run after delay without consuming an attempt
    FAILED = "failed"  # retry budget exhausted
    ABANDONED = "abandoned"  # another job owns the keyword


@dataclass
class ScrapeJob:
    """Unit of work carried through the queue.

    Attributes:
        keyword_id: keyword to scrape
        token: identifies this job as the owner of the processing run
        attempt: attempts consumed so far
        max_attempts: retry budget
        claimed: pending -> processing already done by this job
        releases: flow-control deferrals so far
    """

    keyword_id: int
    max_attempts: int = 3
    token: str = field(default_factory=lambda: uuid4().hex)
    attempt: int = 0
    claimed: bool = False
    releases: int = 0

    @property
    def attempt_number(self) -> int:
        """1-based number of the attempt about to run"""
        return self.attempt + 1


@dataclass
class AttemptOutcome:
    """Result of one fetch+parse attempt"""

    succeeded: bool
    reason: Optional[str] = None  # classification key fed to the monitor
    error_message: Optional[str] = None
    parse_result: Optional[ParseResult] = None
    proxy: Optional[str] = None

    @classmethod
    def success(cls, parse_result: ParseResult, proxy: Optional[str] = None) -> "AttemptOutcome":
        return cls(succeeded=True, parse_result=parse_result, proxy=proxy)

    @classmethod
    def failure(cls, reason: str, error_message: str, proxy: Optional[str] = None) -> "AttemptOutcome":
        return cls(succeeded=False, reason=reason, error_message=error_message, proxy=proxy)


@dataclass
class NextAction:
    kind: ActionKind
    delay_s: float = 0.0
    reason: Optional[str] = None
    error_message: Optional[str] = None

    @property
    def consumes_attempt(self) -> bool:
        return self.kind == ActionKind.RETRY

    @property
    def is_terminal(self) -> bool:
        return self.kind in (ActionKind.COMPLETED, ActionKind.FAILED, ActionKind.ABANDONED)

    @classmethod
    def completed(cls) -> "NextAction":
        return cls(kind=ActionKind.COMPLETED)

    @classmethod
    def retry_after(cls, delay_s: float, reason: Optional[str] = None, error_message: Optional[str] = None) -> "NextAction":
        return cls(kind=ActionKind.RETRY, delay_s=delay_s, reason=reason, error_message=error_message)

    @classmethod
    def release(cls, delay_s: float, reason: str) -> "NextAction":
        return cls(kind=ActionKind.RELEASE, delay_s=delay_s, reason=reason)

    @classmethod
    def terminal_fail(cls, reason: Optional[str], error_message: Optional[str]) -> "NextAction":
        return cls(kind=ActionKind.FAILED, reason=reason, error_message=error_message)

    @classmethod
    def abandon(cls, reason: str) -> "NextAction":
        return cls(kind=ActionKind.ABANDONED, reason=reason)
