"""Services implementation package."""

from .analytics_service import AnalyticsService
from .cache_service import CacheService
from .keyword_service import KeywordService

__all__ = ["AnalyticsService", "CacheService", "KeywordService"]
