"""Engine Layer - per-keyword scrape job orchestration

- ScrapeOrchestrator: one attempt of a keyword's job
- RetryStrategy: retry / backoff decision
- ScrapeJob, AttemptOutcome, NextAction: job state and outcomes
"""

from .orchestrator import ScrapeOrchestrator, classify_failure
from .result import ActionKind, AttemptOutcome, NextAction, ScrapeJob
from .strategy import RetryStrategy

__all__ = [
    "ScrapeOrchestrator",
    "classify_failure",
    "RetryStrategy",
    "ScrapeJob",
    "AttemptOutcome",
    "NextAction",
    "ActionKind",
]
