"""Google SERP crawling: fetch, parse, and outbound flow control.

Public API is exported from this file only.
"""

from .google.parsing import GoogleResultParser, ParsedResult, ParseResult, ResultType
from .google.search_fetcher import GoogleSearchFetcher
from .limits.proxy_manager import ProxyManager
from .limits.rate_limiter import RateLimiter
from .metrics.scraper_monitor import CircuitStatus, ScraperMonitor

__all__ = [
    "GoogleResultParser",
    "ParsedResult",
    "ParseResult",
    "ResultType",
    "GoogleSearchFetcher",
    "ProxyManager",
    "RateLimiter",
    "ScraperMonitor",
    "CircuitStatus",
]
