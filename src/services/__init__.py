"""Business services - export only."""

from .impl import AnalyticsService, CacheService, KeywordService

__all__ = ["AnalyticsService", "CacheService", "KeywordService"]
