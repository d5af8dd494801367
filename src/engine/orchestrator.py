"""Scrape Orchestrator - per-keyword job logic

Runs one attempt of a keyword's scrape job:
1. Claim the keyword (atomic pending -> processing)
2. Circuit breaker check (flow control)
3. Rate budget check (flow control)
4. Proxy + fetch + parse
5. Persist the outcome and decide the next action

The returned NextAction tells the dispatcher whether to re-enqueue
(release / retry) or stop.
"""

import asyncio
from contextlib import AbstractContextManager
from dataclasses import dataclass
from typing import Callable, Optional

from src.core.database import get_db_context
from src.core.exceptions import FetchException, ScraperException
from src.core.logging import logger, mask_proxy, sanitize_for_log
from src.repositories.impl.keyword_repository import KeywordRepository
from src.repositories.impl.search_result_repository import SearchResultRepository
from src.repositories.models import SearchResultStatus

from .result import ActionKind, AttemptOutcome, NextAction, ScrapeJob
from .strategy import RetryStrategy

SessionFactory = Callable[[], AbstractContextManager]


@dataclass
class _AttemptContext:
    """Per-attempt state visible to the timeout handler"""

    keyword_id: int
    attempt: int
    proxy: Optional[str] = None


class ScrapeOrchestrator:
    """Keyword scrape job

    Composes the circuit breaker, rate limiter, proxy pool, fetcher and
    parser. Attempt-level failures are converted into classified reasons;
    database and KV store errors escape `run()`; the attempt row they
    interrupt is marked failed first.
    """

    def __init__(
        self,
        fetcher,
        parser,
        proxy_manager,
        rate_limiter,
        monitor,
        retry_strategy: Optional[RetryStrategy] = None,
        session_factory: SessionFactory = get_db_context,
        job_timeout_s: float = 120.0,
        rate_limit_release_delay_s: float = 30.0,
        circuit_release_delay_s: float = 60.0,
        rate_limit_key: str = "google",
    ):
        """
        Args:
            fetcher: GoogleSearchFetcher (fetch(query, proxy) -> html)
            parser: GoogleResultParser (parse(html) -> ParseResult)
            proxy_manager: ProxyManager
            rate_limiter: RateLimiter
            monitor: ScraperMonitor
            retry_strategy: retry/backoff decision (default: 30/60/120s)
            session_factory: returns a context manager yielding a DB session
            job_timeout_s: ceiling for one attempt's proxy+fetch+parse
            rate_limit_release_delay_s: deferral when the rate budget is spent
            circuit_release_delay_s: deferral while the circuit is open
            rate_limit_key: limiter key shared by all keywords
        """
        if fetcher is None:
            raise ValueError("fetcher must not be None")
        if parser is None:
            raise ValueError("parser must not be None")
        if job_timeout_s <= 0:
            raise ValueError("job_timeout_s must be positive")

        self.fetcher = fetcher
        self.parser = parser
        self.proxy_manager = proxy_manager
        self.rate_limiter = rate_limiter
        self.monitor = monitor
        self.strategy = retry_strategy or RetryStrategy(backoff_schedule=[30, 60, 120])
        self.session_factory = session_factory
        self.job_timeout_s = job_timeout_s
        self.rate_limit_release_delay_s = rate_limit_release_delay_s
        self.circuit_release_delay_s = circuit_release_delay_s
        self.rate_limit_key = rate_limit_key

    async def run(self, job: ScrapeJob) -> NextAction:
        """Run one attempt of `job`

        Args:
            job: queued job (attempt = attempts consumed so far)

        Returns:
            NextAction: completed / retry / release / failed / abandoned
        """
        log_ctx = f"keyword_id={job.keyword_id}, attempt={job.attempt_number}/{job.max_attempts}"

        with self.session_factory() as db:
            keywords = KeywordRepository(db)
            results = SearchResultRepository(db)

            # 1. Claim
            if not self._claim(job, keywords):
                logger.warning(f"[SCRAPE] Keyword not owned by this job, dropping: {log_ctx}")
                return NextAction.abandon("not_owner")

            # 2. Circuit (flow control, no attempt/budget/proxy consumed)
            allowed, trial_at = self.monitor.try_pass()
            if not allowed:
                delay = max(self.circuit_release_delay_s, self.monitor.remaining_open_seconds())
                logger.info(f"[SCRAPE] Deferred: {log_ctx}, reason=circuit_open, delay={delay:.0f}s")
                return NextAction.release(delay, "circuit_open")

            # 3. Rate budget (flow control)
            if not self.rate_limiter.can_proceed(self.rate_limit_key):
                self._hand_back_trial(trial_at)
                logger.info(
                    f"[SCRAPE] Deferred: {log_ctx}, reason=rate_limited, "
                    f"delay={self.rate_limit_release_delay_s:.0f}s"
                )
                return NextAction.release(self.rate_limit_release_delay_s, "rate_limited")

            keyword = keywords.get_by_id(job.keyword_id)
            if keyword is None:
                self._hand_back_trial(trial_at)
                return NextAction.abandon("keyword_deleted")

            search_result = results.create_pending(keyword.id, attempt=job.attempt_number)
            ctx = _AttemptContext(keyword_id=job.keyword_id, attempt=job.attempt_number)
            logger.info(f"[SCRAPE] Attempt started: {log_ctx}, query='{sanitize_for_log(keyword.text, 50)}'")

            try:
                outcome = await self._run_attempt(keyword.text, ctx)
                return self._settle(job, outcome, keywords, results, search_result, log_ctx)
            except Exception as e:
                self._fail_stale_row(results, search_result, f"{type(e).__name__}: {e}")
                raise

    def fail_job(self, job: ScrapeJob, error_message: str) -> bool:
        """Move a crashed job's keyword processing -> failed (token-guarded)

        Uses a fresh session; the job's own session may be the one that broke.

        Returns:
            True if the keyword was still owned by the job and is now failed
        """
        try:
            with self.session_factory() as db:
                failed = KeywordRepository(db).fail(job.keyword_id, job.token, error_message)
        except Exception as e:
            logger.error(f"[SCRAPE] Could not mark keyword failed: keyword_id={job.keyword_id}: {e}")
            return False
        if failed:
            logger.error(f"[SCRAPE] Failed permanently after crash: keyword_id={job.keyword_id}, error={error_message}")
        return failed

    def _hand_back_trial(self, trial_at: Optional[float]) -> None:
        if trial_at is not None:
            self.monitor.release_trial(trial_at)

    @staticmethod
    def _fail_stale_row(results: SearchResultRepository, search_result, error_message: str) -> None:
        """Attempt row still pending after a crash -> failed (best effort, the crash propagates)"""
        try:
            results.db.refresh(search_result)
            if search_result.status == SearchResultStatus.PENDING.value:
                results.mark_failed(search_result, error_message)
        except Exception as e:
            logger.error(f"[SCRAPE] Could not mark attempt row failed: {e}")

    def _claim(self, job: ScrapeJob, keywords: KeywordRepository) -> bool:
        if job.claimed:
            return keywords.is_claimed_by(job.keyword_id, job.token)
        if keywords.claim(job.keyword_id, job.token):
            job.claimed = True
            return True
        return False

    async def _run_attempt(self, query: str, ctx: _AttemptContext) -> AttemptOutcome:
        """Proxy + fetch + parse under the job timeout; never raises"""
        try:
            return await asyncio.wait_for(self._fetch_and_parse(query, ctx), timeout=self.job_timeout_s)
        except asyncio.TimeoutError:
            message = f"Scrape attempt timed out after {self.job_timeout_s:.0f}s"
            self._record_fetch_failure(ctx, "timeout")
            return AttemptOutcome.failure("timeout", message, proxy=ctx.proxy)
        except Exception as e:
            reason = classify_failure(e)
            logger.error(
                f"[SCRAPE] Unexpected error: keyword_id={ctx.keyword_id}, attempt={ctx.attempt}, "
                f"reason={reason}: {e}",
                exc_info=True,
            )
            self.monitor.record_failure(reason)
            return AttemptOutcome.failure(reason, str(e) or reason, proxy=ctx.proxy)

    async def _fetch_and_parse(self, query: str, ctx: _AttemptContext) -> AttemptOutcome:
        # 4. Proxy (None -> direct connection)
        ctx.proxy = await self.proxy_manager.get_next_proxy()

        # 5. Fetch
        try:
            html = await self.fetcher.fetch(query, proxy=ctx.proxy)
        except FetchException as e:
            # 6. Fetch failure
            self._record_fetch_failure(ctx, e.reason)
            return AttemptOutcome.failure(e.reason, e.message, proxy=ctx.proxy)

        # 7. Parse (never raises); empty is a soft failure
        parsed = self.parser.parse(html)
        if parsed.is_empty:
            logger.warning(
                f"[SCRAPE] Empty parse: keyword_id={ctx.keyword_id}, attempt={ctx.attempt}, "
                f"reason=empty_results, bytes={len(html)}"
            )
            self.monitor.record_failure("empty_results")
            return AttemptOutcome.failure(
                "empty_results",
                f"No results parsed from {len(html)} bytes of HTML (markup may have changed)",
                proxy=ctx.proxy,
            )

        return AttemptOutcome.success(parsed, proxy=ctx.proxy)

    def _record_fetch_failure(self, ctx: _AttemptContext, reason: str) -> None:
        logger.warning(
            f"[SCRAPE] Fetch failed: keyword_id={ctx.keyword_id}, attempt={ctx.attempt}, "
            f"reason={reason}, proxy={mask_proxy(ctx.proxy)}"
        )
        if ctx.proxy:
            self.proxy_manager.mark_proxy_unhealthy(ctx.proxy)
        self.rate_limiter.track_failure(self.rate_limit_key)
        self.monitor.record_failure(reason)

    def _settle(
        self,
        job: ScrapeJob,
        outcome: AttemptOutcome,
        keywords: KeywordRepository,
        results: SearchResultRepository,
        search_result,
        log_ctx: str,
    ) -> NextAction:
        proxy_label = mask_proxy(outcome.proxy) if outcome.proxy else None

        # 8. Success
        if outcome.succeeded and outcome.parse_result is not None:
            parsed = outcome.parse_result
            results.mark_success(search_result, parsed, proxy=proxy_label)
            if not keywords.complete(job.keyword_id, job.token, [r.to_dict() for r in parsed.organic_results]):
                logger.warning(f"[SCRAPE] Completion lost ownership race: {log_ctx}")
                return NextAction.abandon("not_owner")
            self.monitor.record_success()
            logger.info(
                f"[SCRAPE] Completed: {log_ctx}, organic={len(parsed.organic_results)}, "
                f"featured={parsed.featured_snippet is not None}, ads={parsed.total_ads}"
            )
            return NextAction.completed()

        # 9. Failure: this attempt's row fails, then retry or give up
        results.mark_failed(search_result, outcome.error_message or outcome.reason or "unknown error", proxy=proxy_label)
        action = self.strategy.decide_next_action(outcome, job.attempt_number, job.max_attempts)

        if action.kind == ActionKind.RETRY:
            logger.info(f"[SCRAPE] Retry scheduled: {log_ctx}, reason={outcome.reason}, delay={action.delay_s:.1f}s")
            return action

        keywords.fail(job.keyword_id, job.token, outcome.error_message or outcome.reason or "unknown error")
        logger.error(f"[SCRAPE] Failed permanently: {log_ctx}, reason={outcome.reason}, error={outcome.error_message}")
        return action


def classify_failure(error: Exception) -> str:
    """Reason key for an exception (ScraperException subclasses may carry their own)"""
    if isinstance(error, ScraperException) and getattr(error, "reason", None):
        return error.reason
    return type(error).__name__
