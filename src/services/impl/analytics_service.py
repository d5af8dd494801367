"""Analytics Service - read-only scrape statistics"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from src.core.logging import logger
from src.repositories.impl.keyword_repository import KeywordRepository
from src.repositories.impl.search_result_repository import SearchResultRepository
from src.repositories.models import SearchResultStatus
from src.schemas.scrape_schema import FailureReasonCount, ScraperStatsResponse


class AnalyticsService:
    """Scrape pipeline statistics (monitor metrics + persisted attempts)"""

    def __init__(self, db: Session, monitor, proxy_manager=None):
        self.db = db
        self.monitor = monitor
        self.proxy_manager = proxy_manager
        self.keywords = KeywordRepository(db)
        self.results = SearchResultRepository(db)

    def get_stats(self) -> ScraperStatsResponse:
        """Current circuit/metrics snapshot plus DB status counts

        Returns:
            ScraperStatsResponse
        """
        try:
            metrics = self.monitor.get_metrics()
            results_by_status = self.results.count_by_status()
            finished = (
                results_by_status.get(SearchResultStatus.SUCCESS.value, 0)
                + results_by_status.get(SearchResultStatus.FAILED.value, 0)
            )
            result_success_rate = (
                round(results_by_status.get(SearchResultStatus.SUCCESS.value, 0) / finished * 100, 2)
                if finished else 100.0
            )

            stats = ScraperStatsResponse(
                success_rate=metrics["success_rate"],
                success_count=metrics["success_count"],
                failure_count=metrics["failure_count"],
                circuit_status=metrics["circuit_status"],
                consecutive_failures=metrics["consecutive_failures"],
                failure_reasons=[FailureReasonCount(**r) for r in metrics["failure_reasons"]],
                keywords_by_status=self.keywords.count_by_status(),
                results_by_status=results_by_status,
                result_success_rate=result_success_rate,
                proxies=self.proxy_manager.get_status() if self.proxy_manager else {},
                generated_at=datetime.utcnow(),
            )
            logger.info(
                f"[Analytics] Stats: success_rate={stats.success_rate}%, circuit={stats.circuit_status}"
            )
            return stats

        except Exception as e:
            logger.error(f"[Analytics] Failed to build stats: {e}", exc_info=True)
            raise

    def get_hourly_stats(self, hours: int = 24) -> List[Dict[str, Any]]:
        if hours <= 0:
            raise ValueError("hours must be positive")
        try:
            return self.results.get_hourly_counts(hours)
        except Exception as e:
            logger.error(f"[Analytics] Failed to build hourly stats: {e}", exc_info=True)
            raise

    def get_failure_analysis(self, limit: int = 5, since: Optional[datetime] = None) -> Dict[str, Any]:
        """Failure breakdown

        Rolling monitor reasons (what is failing right now) next to the most
        frequent persisted error messages of the last 24 hours.
        """
        since = since or datetime.utcnow() - timedelta(hours=24)
        try:
            return {
                "timestamp": datetime.utcnow().isoformat(),
                "circuit_status": self.monitor.get_circuit_status().value,
                "consecutive_failures": self.monitor.get_consecutive_failures(),
                "recent_reasons": self.monitor.get_failure_reasons()[:limit],
                "top_errors": [
                    {"error_message": message, "count": count}
                    for message, count in self.results.get_recent_errors(since, limit)
                ],
            }
        except Exception as e:
            logger.error(f"[Analytics] Failed to analyze failures: {e}", exc_info=True)
            raise
