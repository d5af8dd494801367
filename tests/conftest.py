"""Global test setup

Role:
- test environment (sqlite + fake KV store, no network)
- shared fakes: clock, cache, SERP documents
"""

from __future__ import annotations

import os
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import json
import pytest

# Must be set before src.core.config is imported
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("LOG_LEVEL", "INFO")
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["REDIS_URL"] = "redis://localhost:6379/0"

project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from src.core.database import Base  # noqa: E402
import src.repositories.models  # noqa: E402,F401


class FakeClock:
    """Manually advanced time source"""

    def __init__(self, start: float = 1_700_000_040.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeCache:
    """In-memory stand-in for CacheService (same method surface, TTL on a FakeClock)"""

    def __init__(self, clock: Optional[FakeClock] = None):
        self.clock = clock or FakeClock()
        self.store: Dict[str, Tuple[Any, Optional[float]]] = {}
        self.cas_conflicts = 0  # forced compare_and_swap losses

    def _alive(self, key: str) -> bool:
        if key not in self.store:
            return False
        _, expires_at = self.store[key]
        if expires_at is not None and self.clock() >= expires_at:
            del self.store[key]
            return False
        return True

    def _expiry(self, ttl: Optional[int]) -> Optional[float]:
        return self.clock() + ttl if ttl else None

    def get(self, key: str) -> Optional[str]:
        if not self._alive(key):
            return None
        value, _ = self.store[key]
        return None if isinstance(value, dict) else str(value)

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> bool:
        self.store[key] = (value, self._expiry(ttl))
        return True

    def delete(self, key: str) -> bool:
        return self.store.pop(key, None) is not None

    def increment(self, key: str, amount: int = 1, ttl: Optional[int] = None) -> int:
        if self._alive(key):
            value, expires_at = self.store[key]
        else:
            value, expires_at = 0, self._expiry(ttl)
        value = int(value) + amount
        self.store[key] = (value, expires_at)
        return value

    def compare_and_swap(
        self, key: str, expected: Optional[str], new_value: str, ttl: Optional[int] = None, keep_ttl: bool = False,
    ) -> bool:
        if self.cas_conflicts > 0:
            self.cas_conflicts -= 1
            return False
        if self.get(key) != expected:
            return False
        if keep_ttl and key in self.store:
            self.store[key] = (new_value, self.store[key][1])
        else:
            self.set(key, new_value, ttl)
        return True

    def hash_increment(self, key: str, field: str, amount: int = 1, ttl: Optional[int] = None) -> int:
        if self._alive(key):
            data, _ = self.store[key]
        else:
            data = {}
        data[field] = int(data.get(field, 0)) + amount
        self.store[key] = (data, self._expiry(ttl))
        return data[field]

    def hash_get_all(self, key: str) -> Dict[str, str]:
        if not self._alive(key):
            return {}
        data, _ = self.store[key]
        return {k: str(v) for k, v in data.items()}

    def get_json(self, key: str) -> Optional[Any]:
        raw = self.get(key)
        return json.loads(raw) if raw is not None else None

    def set_json(self, key: str, data: Any, ttl: Optional[int] = None) -> bool:
        return self.set(key, json.dumps(data), ttl)

    def health_check(self) -> bool:
        return True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_cache(clock: FakeClock) -> FakeCache:
    return FakeCache(clock)


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def session_factory(db_engine):
    """Orchestrator session factory bound to the test database"""
    make_session = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)

    @contextmanager
    def factory():
        db = make_session()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    return factory


# ============================================================================
# SERP documents
# ============================================================================

def organic_block(title: str, url: str, snippet: str = "", extra: str = "") -> str:
    return (
        f'<div class="g"><div class="yuRUbf"><a href="{url}" ping="/url?sa=t">'
        f"<h3>{title}</h3></a></div>"
        f'<div class="VwiC3b">{snippet}</div>{extra}</div>'
    )


def serp_document(organic_count: int = 3, featured: bool = False, ads: int = 0, extra: str = "") -> str:
    parts = ["<html><head><title>q - Google Search</title>",
             "<script>var x = 1;</script><style>.g{}</style></head><body><div id=\"search\">"]
    if featured:
        parts.append(
            '<div class="xpdopen"><h3>What is Python</h3>'
            '<span class="hgKElc">Python is a programming language.</span>'
            '<a href="https://python.org/about">python.org</a></div>'
        )
    for i in range(ads):
        parts.append(f'<div class="uEierd"><a href="https://ads.example/{i}">Ad {i}</a></div>')
    for i in range(1, organic_count + 1):
        parts.append(organic_block(f"Result {i}", f"https://example.com/{i}", f"Snippet number {i}"))
    parts.append(extra)
    parts.append("</div></body></html>")
    return "".join(parts)


@pytest.fixture
def serp_html() -> str:
    return serp_document(organic_count=3, featured=True, ads=2)
