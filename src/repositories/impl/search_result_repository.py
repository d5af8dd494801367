"""Search result repository - one row per scrape attempt"""
import json
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import func, desc
from sqlalchemy.orm import Session

from src.repositories.models import SearchResult, SearchResultStatus
from src.core.logging import logger
from src.core.exceptions import DatabaseException
from src.crawlers.google.parsing import ParseResult


class SearchResultRepository:
    """SearchResult data access layer"""

    def __init__(self, db: Session):
        self.db = db

    def _save(self, result: SearchResult, action: str) -> SearchResult:
        try:
            self.db.add(result)
            self.db.commit()
            self.db.refresh(result)
            return result
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to {action} search result: {e}")
            raise DatabaseException(f"Failed to {action} search result: {e}")

    def create_pending(self, keyword_id: int, attempt: int, proxy: Optional[str] = None) -> SearchResult:
        result = SearchResult(
            keyword_id=keyword_id,
            status=SearchResultStatus.PENDING.value,
            attempt=attempt,
            proxy=proxy,
            scraped_at=datetime.utcnow(),
        )
        return self._save(result, "create")

    def mark_success(self, result: SearchResult, parsed: ParseResult, proxy: Optional[str] = None) -> SearchResult:
        """pending -> success with the full parsed payload"""
        payload = parsed.to_dict()
        result.status = SearchResultStatus.SUCCESS.value
        result.total_ads = parsed.total_ads
        result.total_links = parsed.total_links
        result.organic_results = json.dumps(payload["organic_results"], ensure_ascii=False)
        result.featured_snippet = (
            json.dumps(payload["featured_snippet"], ensure_ascii=False)
            if payload["featured_snippet"] else None
        )
        result.raw_html_snapshot = parsed.html_snapshot
        result.error_message = None
        if proxy is not None:
            result.proxy = proxy
        result.scraped_at = datetime.utcnow()
        return self._save(result, "update")

    def mark_failed(self, result: SearchResult, error_message: str, proxy: Optional[str] = None) -> SearchResult:
        result.status = SearchResultStatus.FAILED.value
        result.error_message = (error_message or "")[:512]
        if proxy is not None:
            result.proxy = proxy
        result.scraped_at = datetime.utcnow()
        return self._save(result, "update")

    def get_by_id(self, result_id: int) -> Optional[SearchResult]:
        return self.db.query(SearchResult).filter(SearchResult.id == result_id).first()

    def list_for_keyword(self, keyword_id: int) -> List[SearchResult]:
        return self.db.query(SearchResult).filter(
            SearchResult.keyword_id == keyword_id
        ).order_by(SearchResult.id).all()

    def count_by_status(self) -> Dict[str, int]:
        rows = self.db.query(
            SearchResult.status, func.count(SearchResult.id)
        ).group_by(SearchResult.status).all()
        counts = {status.value: 0 for status in SearchResultStatus}
        for status, count in rows:
            counts[status] = int(count)
        return counts

    def get_recent_errors(self, since: datetime, limit: int = 5) -> List[tuple[str, int]]:
        """Most frequent error messages since `since` ([(message, count), ...])"""
        rows: List[Any] = self.db.query(
            SearchResult.error_message,
            func.count(SearchResult.id).label("count"),
        ).filter(
            SearchResult.status == SearchResultStatus.FAILED.value,
            SearchResult.scraped_at >= since,
            SearchResult.error_message.isnot(None),
        ).group_by(
            SearchResult.error_message
        ).order_by(
            desc("count")
        ).limit(limit).all()
        return [(row[0], int(row[1])) for row in rows]

    def get_hourly_counts(self, hours: int = 24) -> List[Dict[str, Any]]:
        """Success/failed attempts per hour for the last `hours` hours"""
        now = datetime.utcnow()
        since = (now - timedelta(hours=hours - 1)).replace(minute=0, second=0, microsecond=0)
        rows = self.db.query(SearchResult.status, SearchResult.scraped_at).filter(
            SearchResult.scraped_at >= since
        ).all()

        buckets: Dict[datetime, Dict[str, int]] = {}
        for i in range(hours):
            hour = since + timedelta(hours=i)
            buckets[hour] = {"success": 0, "failed": 0, "pending": 0}

        for status, scraped_at in rows:
            if scraped_at is None:
                continue
            hour = scraped_at.replace(minute=0, second=0, microsecond=0)
            if hour in buckets and status in buckets[hour]:
                buckets[hour][status] += 1

        return [
            {"hour": hour.isoformat(), **counts}
            for hour, counts in sorted(buckets.items())
        ]
