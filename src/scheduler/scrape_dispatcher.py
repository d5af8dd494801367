"""Scrape job dispatcher (APScheduler one-shot jobs + bounded worker pool)"""

import asyncio
import random
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from src.core.logging import logger
from src.engine.result import ActionKind, NextAction, ScrapeJob


class ScrapeDispatcher:
    """Queues keyword scrape jobs and applies each attempt's NextAction

    - release(delay): re-enqueue the same attempt (flow control)
    - retry_after(delay): consume an attempt, re-enqueue
    - completed / failed / abandoned: job ends

    Attempts of one keyword never overlap: the next run is scheduled only
    after the current one returned.
    """

    JOB_ID_PREFIX = "scrape"

    def __init__(
        self,
        orchestrator,
        scheduler: Optional[AsyncIOScheduler] = None,
        worker_concurrency: int = 4,
        max_attempts: int = 3,
        dispatch_delay_min_s: float = 1.0,
        dispatch_delay_max_s: float = 10.0,
        rng: Optional[random.Random] = None,
    ):
        if worker_concurrency <= 0:
            raise ValueError("worker_concurrency must be positive")
        if dispatch_delay_min_s > dispatch_delay_max_s:
            raise ValueError("dispatch_delay_min_s must be <= dispatch_delay_max_s")

        self.orchestrator = orchestrator
        self._scheduler = scheduler
        self.worker_concurrency = worker_concurrency
        self.max_attempts = max_attempts
        self.dispatch_delay_min_s = dispatch_delay_min_s
        self.dispatch_delay_max_s = dispatch_delay_max_s
        self._rng = rng or random.Random()
        self._semaphore: Optional[asyncio.Semaphore] = None

    @property
    def scheduler(self) -> AsyncIOScheduler:
        if self._scheduler is None:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                loop = None
            self._scheduler = AsyncIOScheduler(event_loop=loop) if loop else AsyncIOScheduler()
        return self._scheduler

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info(f"[DISPATCH] Scheduler started (workers={self.worker_concurrency})")

    def shutdown(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("[DISPATCH] Scheduler stopped")

    def pending_jobs(self) -> int:
        return len(self.scheduler.get_jobs())

    def dispatch(self, keyword_id: int, delay_s: float = 0.0) -> ScrapeJob:
        """Enqueue a fresh job (new token, full retry budget)"""
        job = ScrapeJob(keyword_id=keyword_id, max_attempts=self.max_attempts)
        self._schedule(job, delay_s)
        logger.info(f"[DISPATCH] Queued: keyword_id={keyword_id}, delay={delay_s:.1f}s")
        return job

    def dispatch_many(self, keyword_ids: Iterable[int]) -> List[ScrapeJob]:
        """Enqueue jobs spread over a random per-job delay to avoid bursts"""
        return [
            self.dispatch(keyword_id, self._rng.uniform(self.dispatch_delay_min_s, self.dispatch_delay_max_s))
            for keyword_id in keyword_ids
        ]

    def _schedule(self, job: ScrapeJob, delay_s: float) -> None:
        run_date = datetime.now() + timedelta(seconds=max(0.0, delay_s))
        self.scheduler.add_job(
            self.run_job,
            trigger=DateTrigger(run_date=run_date),
            args=[job],
            id=f"{self.JOB_ID_PREFIX}:{job.keyword_id}:{job.token}:{job.attempt}:{job.releases}",
            name=f"scrape keyword {job.keyword_id}",
            misfire_grace_time=None,
            replace_existing=True,
        )

    def _get_semaphore(self) -> asyncio.Semaphore:
        if self._semaphore is None:
            self._semaphore = asyncio.Semaphore(self.worker_concurrency)
        return self._semaphore

    async def run_job(self, job: ScrapeJob) -> NextAction:
        """Execute one attempt and re-enqueue according to the outcome"""
        async with self._get_semaphore():
            try:
                action = await self.orchestrator.run(job)
            except Exception as e:
                # At-least-once: infrastructure errors consume an attempt
                logger.error(
                    f"[DISPATCH] Job crashed: keyword_id={job.keyword_id}, attempt={job.attempt_number}, "
                    f"reason={type(e).__name__}: {e}",
                    exc_info=True,
                )
                if job.attempt_number < job.max_attempts:
                    action = NextAction.retry_after(self.orchestrator.strategy.backoff_delay(job.attempt_number),
                                                    reason=type(e).__name__, error_message=str(e))
                else:
                    action = NextAction.terminal_fail(type(e).__name__, str(e))
                    self.orchestrator.fail_job(job, f"{type(e).__name__}: {e}")

        self.apply(job, action)
        return action

    def apply(self, job: ScrapeJob, action: NextAction) -> None:
        """Re-enqueue or finish `job` per `action`"""
        if action.kind == ActionKind.RELEASE:
            job.releases += 1
            self._schedule(job, action.delay_s)
            logger.debug(
                f"[DISPATCH] Released: keyword_id={job.keyword_id}, reason={action.reason}, "
                f"delay={action.delay_s:.1f}s, releases={job.releases}"
            )
        elif action.kind == ActionKind.RETRY:
            job.attempt += 1
            self._schedule(job, action.delay_s)
            logger.info(
                f"[DISPATCH] Retry queued: keyword_id={job.keyword_id}, "
                f"next_attempt={job.attempt_number}/{job.max_attempts}, delay={action.delay_s:.1f}s"
            )
        else:
            logger.info(f"[DISPATCH] Job finished: keyword_id={job.keyword_id}, outcome={action.kind.value}")
