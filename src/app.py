"""Application factory: wires the scrape pipeline from settings"""
import asyncio
import signal
from dataclasses import dataclass
from typing import Optional

from src.core.config import settings
from src.core.database import SessionLocal, init_db
from src.core.logging import logger
from src.crawlers.google.parsing import GoogleResultParser
from src.crawlers.google.search_fetcher import GoogleSearchFetcher
from src.crawlers.http_client import shutdown_shared_http_client
from src.crawlers.limits.proxy_manager import ProxyManager
from src.crawlers.limits.rate_limiter import RateLimiter
from src.crawlers.metrics.scraper_monitor import ScraperMonitor
from src.engine.orchestrator import ScrapeOrchestrator
from src.engine.strategy import RetryStrategy
from src.repositories.impl.keyword_repository import KeywordRepository
from src.scheduler.scrape_dispatcher import ScrapeDispatcher
from src.services.impl.cache_service import CacheService


@dataclass
class ScraperApp:
    """Assembled pipeline components"""

    cache: CacheService
    rate_limiter: RateLimiter
    proxy_manager: ProxyManager
    monitor: ScraperMonitor
    orchestrator: ScrapeOrchestrator
    dispatcher: ScrapeDispatcher

    async def start(self) -> int:
        """
        Initialise storage, start the worker scheduler and re-queue pending keywords

        Returns:
            number of keywords re-queued
        """
        logger.info("Starting scraper...")
        init_db()
        self.dispatcher.start()

        db = SessionLocal()
        try:
            pending = KeywordRepository(db).list_pending_ids()
        finally:
            db.close()

        self.dispatcher.dispatch_many(pending)
        logger.info(f"Scraper started: pending_requeued={len(pending)}, {self.monitor!r}")
        return len(pending)

    async def shutdown(self) -> None:
        logger.info("Shutting down scraper...")
        self.dispatcher.shutdown()
        await shutdown_shared_http_client()
        logger.info("Scraper stopped")


def create_app(cache: Optional[CacheService] = None) -> ScraperApp:
    """
    Build the scrape pipeline (Factory Pattern)

    Args:
        cache: KV store override (defaults to Redis at settings.redis_url)

    Returns:
        ScraperApp
    """
    cache = cache or CacheService()

    rate_limiter = RateLimiter(
        cache,
        max_requests=settings.rate_limit_max_requests,
        window_seconds=settings.rate_limit_window_seconds,
        failure_threshold=settings.rate_limit_failure_threshold,
        failure_penalty=settings.rate_limit_failure_penalty,
    )
    proxy_manager = ProxyManager(
        cache,
        settings.proxies,
        health_ttl=settings.proxy_health_ttl,
        probe_url=settings.proxy_probe_url,
        probe_timeout_s=settings.proxy_probe_timeout_s,
    )
    monitor = ScraperMonitor(
        cache,
        failure_threshold=settings.circuit_failure_threshold,
        cooldown_seconds=settings.circuit_cooldown_seconds,
        tracking_window_seconds=settings.circuit_tracking_window_seconds,
        recovery_success_rate=settings.circuit_recovery_success_rate,
        metrics_window_seconds=settings.metrics_window_seconds,
        metrics_bucket_seconds=settings.metrics_bucket_seconds,
    )
    orchestrator = ScrapeOrchestrator(
        fetcher=GoogleSearchFetcher(),
        parser=GoogleResultParser(),
        proxy_manager=proxy_manager,
        rate_limiter=rate_limiter,
        monitor=monitor,
        retry_strategy=RetryStrategy(
            backoff_schedule=settings.backoff_schedule,
            jitter=settings.scraper_backoff_jitter,
        ),
        job_timeout_s=settings.scraper_job_timeout_s,
        rate_limit_release_delay_s=settings.rate_limit_release_delay_s,
        circuit_release_delay_s=settings.circuit_release_delay_s,
    )
    dispatcher = ScrapeDispatcher(
        orchestrator,
        worker_concurrency=settings.scraper_worker_concurrency,
        max_attempts=settings.scraper_max_attempts,
        dispatch_delay_min_s=settings.dispatch_delay_min_s,
        dispatch_delay_max_s=settings.dispatch_delay_max_s,
    )

    return ScraperApp(
        cache=cache,
        rate_limiter=rate_limiter,
        proxy_manager=proxy_manager,
        monitor=monitor,
        orchestrator=orchestrator,
        dispatcher=dispatcher,
    )


async def _serve() -> None:
    app = create_app()
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass  # Windows

    await app.start()
    try:
        await stop.wait()
    finally:
        await app.shutdown()


def run() -> None:
    """Run the worker process until SIGINT/SIGTERM"""
    asyncio.run(_serve())


if __name__ == "__main__":
    run()
