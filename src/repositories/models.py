"""Database models"""
import json
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import Column, Integer, String, Index, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from src.core.database import Base


class KeywordStatus(str, Enum):
    """Keyword lifecycle: pending -> processing -> completed | failed (retry: failed -> pending)"""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SearchResultStatus(str, Enum):
    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


def _loads(value: Optional[str]) -> Any:
    if not value:
        return None
    return json.loads(value)


class Keyword(Base):
    """Uploaded keyword and its latest scrape outcome"""

    __tablename__ = "keywords"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=False, index=True)
    text = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=KeywordStatus.PENDING.value, index=True)

    # Token of the job that owns the current processing run
    job_token = Column(String(64), nullable=True)

    results = Column(Text, nullable=True)  # JSON: denormalized organic results of the last success
    error_message = Column(String(512), nullable=True)
    last_scraped_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    search_results = relationship(
        "SearchResult",
        back_populates="keyword",
        cascade="all, delete-orphan",
        order_by="SearchResult.id",
    )

    __table_args__ = (
        Index("idx_keywords_owner_status", "owner_id", "status"),
    )

    @property
    def organic_results(self) -> list:
        return _loads(self.results) or []

    def __repr__(self) -> str:
        return f"<Keyword(id={self.id}, text={self.text[:30]}, status={self.status})>"


class SearchResult(Base):
    """One scrape attempt for a keyword"""

    __tablename__ = "search_results"

    id = Column(Integer, primary_key=True, index=True)
    keyword_id = Column(Integer, ForeignKey("keywords.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=SearchResultStatus.PENDING.value, index=True)
    attempt = Column(Integer, nullable=False, default=1)
    proxy = Column(String(255), nullable=True)  # masked

    total_ads = Column(Integer, nullable=False, default=0)
    total_links = Column(Integer, nullable=False, default=0)
    organic_results = Column(Text, nullable=True)  # JSON list
    featured_snippet = Column(Text, nullable=True)  # JSON object
    raw_html_snapshot = Column(Text, nullable=True)  # sanitized HTML
    error_message = Column(String(512), nullable=True)

    scraped_at = Column(DateTime, default=datetime.utcnow, index=True)

    keyword = relationship("Keyword", back_populates="search_results")

    __table_args__ = (
        Index("idx_search_results_status_scraped", "status", "scraped_at"),
    )

    @property
    def organic_results_list(self) -> list:
        return _loads(self.organic_results) or []

    @property
    def featured_snippet_dict(self) -> Optional[dict]:
        return _loads(self.featured_snippet)

    def __repr__(self) -> str:
        return f"<SearchResult(id={self.id}, keyword_id={self.keyword_id}, status={self.status})>"
