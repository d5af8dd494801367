"""Custom exceptions (Structured Exception Hierarchy)"""
from typing import Any, Optional


# Base exception
class ScraperException(Exception):
    """Base class for every custom exception"""
    def __init__(self, message: str, error_code: str = "UNKNOWN_ERROR", details: Optional[dict[str, Any]] = None):
        self.message = message
        self.error_code = error_code
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


# Crawler errors
class CrawlerException(ScraperException):
    """Base class for crawler errors"""
    def __init__(self, message: str, error_code: str = "CRAWLER_ERROR", details: Optional[dict[str, Any]] = None):
        super().__init__(message, error_code or "CRAWLER_ERROR", details)


class FetchException(CrawlerException):
    """Outbound fetch failed.

    `reason` is the classification key fed to the monitor ("HTTP 503", "timeout", ...).
    """
    reason = "fetch_error"

    def __init__(self, message: str, error_code: str = "FETCH_ERROR", details: Optional[dict[str, Any]] = None):
        super().__init__(message, error_code, details)


class HttpStatusException(FetchException):
    """Upstream answered with a non-2xx status"""
    def __init__(self, status_code: int, details: Optional[dict[str, Any]] = None):
        self.status_code = status_code
        self.reason = f"HTTP {status_code}"
        message = f"Search request failed with HTTP {status_code}"
        super().__init__(message, "HTTP_STATUS", details or {"status_code": status_code})


class NetworkTimeoutException(FetchException):
    """Network timeout"""
    reason = "timeout"

    def __init__(self, operation: str, timeout_s: float, details: Optional[dict[str, Any]] = None):
        message = f"Network timeout during '{operation}' after {timeout_s}s"
        super().__init__(message, "NETWORK_TIMEOUT",
                         details or {"operation": operation, "timeout_s": timeout_s})


class TransportException(FetchException):
    """Connection, TLS or proxy error before any response"""
    reason = "transport_error"

    def __init__(self, operation: str, cause: str, details: Optional[dict[str, Any]] = None):
        message = f"Transport error during '{operation}': {cause}"
        super().__init__(message, "TRANSPORT_ERROR",
                         details or {"operation": operation, "cause": cause})


class ParsingException(CrawlerException):
    """HTML parsing error"""
    def __init__(self, reason: str, details: Optional[dict[str, Any]] = None):
        message = f"Failed to parse response: {reason}"
        super().__init__(message, "PARSING_ERROR", details or {"reason": reason})


class EmptyResultsException(CrawlerException):
    """Page parsed but yielded no results (markup may have changed)"""
    reason = "empty_results"

    def __init__(self, query: str, details: Optional[dict[str, Any]] = None):
        message = f"No results parsed for query: {query}"
        super().__init__(message, "EMPTY_RESULTS", details or {"query": query})


# Flow control
class RateLimitExceeded(ScraperException):
    """Request budget for the current window is used up (back off and retry later)"""
    def __init__(self, limit: int, window_seconds: int, details: Optional[dict[str, Any]] = None):
        self.limit = limit
        self.window_seconds = window_seconds
        message = f"Rate limit of {limit} requests per {window_seconds}s exceeded"
        super().__init__(message, "RATE_LIMIT_EXCEEDED",
                         details or {"limit": limit, "window_seconds": window_seconds})


class CircuitOpenException(ScraperException):
    """Circuit breaker is open"""
    def __init__(self, retry_after_s: float, details: Optional[dict[str, Any]] = None):
        self.retry_after_s = retry_after_s
        message = f"Circuit is open, retry after {retry_after_s:.0f}s"
        super().__init__(message, "CIRCUIT_OPEN", details or {"retry_after_s": retry_after_s})


# Cache errors
class CacheException(ScraperException):
    """Cache error"""
    def __init__(self, message: str, error_code: str = "CACHE_ERROR", details: Optional[dict[str, Any]] = None):
        super().__init__(message, error_code or "CACHE_ERROR", details)


class CacheConnectionException(CacheException):
    """Cache unreachable"""
    def __init__(self, reason: str, details: Optional[dict[str, Any]] = None):
        message = f"Failed to connect to cache: {reason}"
        super().__init__(message, "CACHE_CONNECTION_ERROR", details)


class CacheSerializationException(CacheException):
    """Cache (de)serialization error"""
    def __init__(self, operation: str, reason: str, details: Optional[dict[str, Any]] = None):
        message = f"Cache {operation} failed: {reason}"
        super().__init__(message, "CACHE_SERIALIZATION_ERROR",
                         details or {"operation": operation, "reason": reason})


# Database errors
class DatabaseException(ScraperException):
    """Database error"""
    def __init__(self, message: str, error_code: str = "DB_ERROR", details: Optional[dict[str, Any]] = None):
        super().__init__(message, error_code or "DB_ERROR", details)


# Validation errors
class ValidationException(ScraperException):
    """Validation error"""
    def __init__(self, field: str, reason: str, details: Optional[dict[str, Any]] = None):
        message = f"Validation failed for '{field}': {reason}"
        super().__init__(message, "VALIDATION_ERROR",
                         details or {"field": field, "reason": reason})


class InvalidKeywordUploadException(ValidationException):
    """Rejected keyword upload"""
    def __init__(self, reason: str, details: Optional[dict[str, Any]] = None):
        super().__init__("keywords", reason, details)


class KeywordNotFoundException(ScraperException):
    """Keyword does not exist for this owner"""
    def __init__(self, keyword_id: int, details: Optional[dict[str, Any]] = None):
        message = f"Keyword not found: {keyword_id}"
        super().__init__(message, "KEYWORD_NOT_FOUND", details or {"keyword_id": keyword_id})


class InvalidStatusTransitionException(ScraperException):
    """Conditional status transition lost (current status differs from expected)"""
    def __init__(self, keyword_id: int, expected: str, target: str, details: Optional[dict[str, Any]] = None):
        message = f"Keyword {keyword_id} is not '{expected}', cannot move to '{target}'"
        super().__init__(message, "INVALID_STATUS_TRANSITION",
                         details or {"keyword_id": keyword_id, "expected": expected, "target": target})
