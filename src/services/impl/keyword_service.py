"""Keyword service - upload, lookup and retry of scrape keywords"""
import csv
import io
from typing import List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from src.core.config import settings
from src.core.exceptions import (
    InvalidKeywordUploadException,
    InvalidStatusTransitionException,
    KeywordNotFoundException,
)
from src.core.logging import logger
from src.repositories.impl.keyword_repository import KeywordRepository
from src.repositories.impl.search_result_repository import SearchResultRepository
from src.repositories.models import Keyword, KeywordStatus
from src.schemas.scrape_schema import KeywordResponse, KeywordUploadRequest, SearchResultResponse

_CSV_HEADERS = {"keyword", "keywords", "query", "queries", "term", "search term"}


class KeywordService:
    """Keyword use cases (no scraping logic: jobs go to the dispatcher)"""

    def __init__(self, db: Session, dispatcher, max_keywords: Optional[int] = None):
        self.db = db
        self.dispatcher = dispatcher
        self.max_keywords = max_keywords or settings.upload_max_keywords
        self.keywords = KeywordRepository(db)
        self.results = SearchResultRepository(db)

    @staticmethod
    def keywords_from_csv(content: str) -> List[str]:
        """First column of every row; a header row is skipped"""
        rows = [row for row in csv.reader(io.StringIO(content)) if row and row[0].strip()]
        if rows and rows[0][0].strip().lower() in _CSV_HEADERS:
            rows = rows[1:]
        return [row[0].strip() for row in rows]

    def upload(self, owner_id: int, keywords: List[str]) -> List[Keyword]:
        """
        Create pending keywords and queue their scrape jobs

        Args:
            owner_id: uploading user
            keywords: raw keyword texts

        Returns:
            created Keyword rows

        Raises:
            InvalidKeywordUploadException: empty upload or over the cap
        """
        try:
            request = KeywordUploadRequest(owner_id=owner_id, keywords=keywords)
        except ValidationError as e:
            reason = "; ".join(err.get("msg", "") for err in e.errors()) or str(e)
            raise InvalidKeywordUploadException(reason)

        if len(request.keywords) > self.max_keywords:
            raise InvalidKeywordUploadException(
                f"at most {self.max_keywords} keywords per upload (got {len(request.keywords)})"
            )

        created = self.keywords.create_many(owner_id, request.keywords)
        self.dispatcher.dispatch_many([k.id for k in created])
        logger.info(f"[Keywords] Upload queued: owner_id={owner_id}, count={len(created)}")
        return created

    def list_keywords(self, owner_id: int, status: Optional[str] = None) -> List[KeywordResponse]:
        return [KeywordResponse.model_validate(k) for k in self.keywords.list_for_owner(owner_id, status)]

    def get_keyword(self, owner_id: int, keyword_id: int) -> Keyword:
        keyword = self.keywords.get_for_owner(owner_id, keyword_id)
        if keyword is None:
            raise KeywordNotFoundException(keyword_id)
        return keyword

    def get_results(self, owner_id: int, keyword_id: int) -> List[SearchResultResponse]:
        keyword = self.get_keyword(owner_id, keyword_id)
        return [
            SearchResultResponse(
                id=r.id,
                keyword_id=r.keyword_id,
                status=r.status,
                attempt=r.attempt,
                total_ads=r.total_ads,
                total_links=r.total_links,
                organic_results=r.organic_results_list,
                featured_snippet=r.featured_snippet_dict,
                error_message=r.error_message,
                scraped_at=r.scraped_at,
            )
            for r in self.results.list_for_keyword(keyword.id)
        ]

    def retry(self, owner_id: int, keyword_id: int) -> Keyword:
        """
        failed -> pending and queue a fresh job (full retry budget)

        Raises:
            KeywordNotFoundException: unknown keyword for this owner
            InvalidStatusTransitionException: keyword is not failed
        """
        keyword = self.get_keyword(owner_id, keyword_id)
        if not self.keywords.reset_for_retry(keyword.id):
            raise InvalidStatusTransitionException(
                keyword.id, KeywordStatus.FAILED.value, KeywordStatus.PENDING.value
            )

        self.dispatcher.dispatch(keyword.id)
        logger.info(f"[Keywords] Retry queued: keyword_id={keyword.id}")
        self.db.refresh(keyword)
        return keyword
