"""Keyword repository - DB access and atomic status transitions"""
import json
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from src.repositories.models import Keyword, KeywordStatus
from src.core.logging import logger
from src.core.exceptions import DatabaseException


class KeywordRepository:
    """Keyword data access layer.

    Every status change is a conditional UPDATE (`WHERE status = :expected`)
    and reports whether it won, so two workers can never both move the same
    keyword out of the same state.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(self, owner_id: int, text: str) -> Keyword:
        try:
            keyword = Keyword(owner_id=owner_id, text=text, status=KeywordStatus.PENDING.value)
            self.db.add(keyword)
            self.db.commit()
            self.db.refresh(keyword)
            return keyword
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to create keyword: {e}")
            raise DatabaseException(f"Failed to create keyword: {e}")

    def create_many(self, owner_id: int, texts: List[str]) -> List[Keyword]:
        try:
            keywords = [Keyword(owner_id=owner_id, text=t, status=KeywordStatus.PENDING.value) for t in texts]
            self.db.add_all(keywords)
            self.db.commit()
            for keyword in keywords:
                self.db.refresh(keyword)
            logger.info(f"Keywords created: owner_id={owner_id}, count={len(keywords)}")
            return keywords
        except Exception as e:
            self.db.rollback()
            logger.error(f"Failed to create keywords: {e}")
            raise DatabaseException(f"Failed to create keywords: {e}")

    def get_by_id(self, keyword_id: int) -> Optional[Keyword]:
        return self.db.query(Keyword).filter(Keyword.id == keyword_id).first()

    def get_for_owner(self, owner_id: int, keyword_id: int) -> Optional[Keyword]:
        return self.db.query(Keyword).filter(
            Keyword.id == keyword_id,
            Keyword.owner_id == owner_id,
        ).first()

    def list_for_owner(self, owner_id: int, status: Optional[str] = None) -> List[Keyword]:
        query = self.db.query(Keyword).filter(Keyword.owner_id == owner_id)
        if status:
            query = query.filter(Keyword.status == status)
        return query.order_by(Keyword.id).all()

    def list_pending_ids(self) -> List[int]:
        rows = self.db.query(Keyword.id).filter(
            Keyword.status == KeywordStatus.PENDING.value
        ).order_by(Keyword.id).all()
        return [row[0] for row in rows]

    def count_by_status(self) -> Dict[str, int]:
        rows = self.db.query(Keyword.status, func.count(Keyword.id)).group_by(Keyword.status).all()
        counts = {status.value: 0 for status in KeywordStatus}
        for status, count in rows:
            counts[status] = int(count)
        return counts

    # ------------------------------------------------------------------
    # conditional transitions
    # ------------------------------------------------------------------

    def _transition(self, keyword_id: int, expected: KeywordStatus, values: dict, token: Optional[str] = None) -> bool:
        try:
            query = self.db.query(Keyword).filter(
                Keyword.id == keyword_id,
                Keyword.status == expected.value,
            )
            if token is not None:
                query = query.filter(Keyword.job_token == token)
            values[Keyword.updated_at] = datetime.utcnow()
            updated = query.update(values, synchronize_session=False)
            self.db.commit()
            return updated == 1
        except Exception as e:
            self.db.rollback()
            logger.error(f"Keyword {keyword_id} transition from '{expected.value}' failed: {e}")
            raise DatabaseException(f"Keyword transition failed: {e}")

    def claim(self, keyword_id: int, token: str) -> bool:
        """pending -> processing, stamping the owning job token"""
        return self._transition(keyword_id, KeywordStatus.PENDING, {
            Keyword.status: KeywordStatus.PROCESSING.value,
            Keyword.job_token: token,
            Keyword.error_message: None,
        })

    def is_claimed_by(self, keyword_id: int, token: str) -> bool:
        owned = self.db.query(Keyword.id).filter(
            Keyword.id == keyword_id,
            Keyword.status == KeywordStatus.PROCESSING.value,
            Keyword.job_token == token,
        ).first()
        return owned is not None

    def complete(self, keyword_id: int, token: str, organic_results: List[dict]) -> bool:
        """processing -> completed with denormalized results"""
        return self._transition(keyword_id, KeywordStatus.PROCESSING, {
            Keyword.status: KeywordStatus.COMPLETED.value,
            Keyword.results: json.dumps(organic_results, ensure_ascii=False),
            Keyword.error_message: None,
            Keyword.last_scraped_at: datetime.utcnow(),
            Keyword.job_token: None,
        }, token=token)

    def fail(self, keyword_id: int, token: str, error_message: str) -> bool:
        """processing -> failed with the last error"""
        return self._transition(keyword_id, KeywordStatus.PROCESSING, {
            Keyword.status: KeywordStatus.FAILED.value,
            Keyword.error_message: (error_message or "")[:512],
            Keyword.last_scraped_at: datetime.utcnow(),
            Keyword.job_token: None,
        }, token=token)

    def reset_for_retry(self, keyword_id: int) -> bool:
        """failed -> pending (explicit user retry)"""
        return self._transition(keyword_id, KeywordStatus.FAILED, {
            Keyword.status: KeywordStatus.PENDING.value,
            Keyword.job_token: None,
        })
