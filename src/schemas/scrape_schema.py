"""Pydantic schemas (input validation and read models)"""
from typing import Optional, List, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime


MAX_KEYWORDS_PER_UPLOAD = 100


class KeywordUploadRequest(BaseModel):
    """Keyword upload (blank and duplicate entries dropped, order kept)"""
    owner_id: int = Field(..., ge=1, description="Uploading user")
    keywords: List[str] = Field(..., min_length=1, description="Keyword texts")

    @field_validator('keywords')
    @classmethod
    def validate_keywords(cls, v: List[str]) -> List[str]:
        cleaned: List[str] = []
        seen: set[str] = set()
        for raw in v:
            text = " ".join((raw or "").split())
            if not text:
                continue
            if len(text) > 255:
                raise ValueError(f'keyword longer than 255 characters: {text[:30]}...')
            key = text.lower()
            if key in seen:
                continue
            seen.add(key)
            cleaned.append(text)
        if not cleaned:
            raise ValueError('no keywords left after removing blanks')
        if len(cleaned) > MAX_KEYWORDS_PER_UPLOAD:
            raise ValueError(f'at most {MAX_KEYWORDS_PER_UPLOAD} keywords per upload (got {len(cleaned)})')
        return cleaned


class ParsedResultSchema(BaseModel):
    """One SERP entry as stored"""
    position: int = Field(..., ge=0)
    type: str = Field(..., description="organic | featured_snippet")
    title: Optional[str] = None
    url: Optional[str] = None
    snippet: Optional[str] = None
    metadata: dict[str, str] = Field(default_factory=dict)


class SearchResultResponse(BaseModel):
    """One scrape attempt"""
    id: int
    keyword_id: int
    status: str
    attempt: int
    total_ads: int
    total_links: int
    organic_results: List[ParsedResultSchema] = Field(default_factory=list)
    featured_snippet: Optional[ParsedResultSchema] = None
    error_message: Optional[str] = None
    scraped_at: Optional[datetime] = None


class KeywordResponse(BaseModel):
    """Keyword with its latest results"""
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: int
    text: str
    status: str
    error_message: Optional[str] = None
    last_scraped_at: Optional[datetime] = None
    organic_results: List[ParsedResultSchema] = Field(default_factory=list)


class FailureReasonCount(BaseModel):
    reason: str
    count: int = Field(..., ge=0)


class ScraperStatsResponse(BaseModel):
    """Aggregated pipeline statistics"""
    success_rate: float = Field(..., ge=0, le=100, description="Rolling monitor success rate (%)")
    success_count: int = Field(..., ge=0)
    failure_count: int = Field(..., ge=0)
    circuit_status: str
    consecutive_failures: int = Field(..., ge=0)
    failure_reasons: List[FailureReasonCount] = Field(default_factory=list)
    keywords_by_status: dict[str, int] = Field(default_factory=dict)
    results_by_status: dict[str, int] = Field(default_factory=dict)
    result_success_rate: float = Field(..., ge=0, le=100, description="Persisted attempt success rate (%)")
    proxies: dict[str, Any] = Field(default_factory=dict)
    generated_at: datetime
