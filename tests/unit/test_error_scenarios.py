"""
Error scenarios and how they are classified

Every failure the pipeline can hit, with the code and reason key it carries.
"""

import pytest
from src.core.exceptions import (
    CacheConnectionException,
    CircuitOpenException,
    DatabaseException,
    EmptyResultsException,
    FetchException,
    HttpStatusException,
    InvalidStatusTransitionException,
    KeywordNotFoundException,
    NetworkTimeoutException,
    ParsingException,
    RateLimitExceeded,
    ScraperException,
    TransportException,
)


class TestErrorScenarios:
    """Error scenario tests"""

    # ========== KV store ==========

    def test_cache_connection_error(self):
        """Redis unreachable"""
        with pytest.raises(CacheConnectionException) as exc_info:
            raise CacheConnectionException(reason="Connection refused", details={"host": "localhost", "port": 6379})

        assert exc_info.value.error_code == "CACHE_CONNECTION_ERROR"
        assert "Connection refused" in str(exc_info.value)

    # ========== Fetch ==========

    @pytest.mark.parametrize("status", [403, 429, 503])
    def test_http_status(self, status):
        """Blocked / throttled / unavailable upstream"""
        error = HttpStatusException(status)

        assert isinstance(error, FetchException)
        assert error.reason == f"HTTP {status}"
        assert error.details == {"status_code": status}
        assert str(error) == f"[HTTP_STATUS] Search request failed with HTTP {status}"

    def test_network_timeout(self):
        error = NetworkTimeoutException(operation="GET", timeout_s=30)

        assert error.reason == "timeout"
        assert error.error_code == "NETWORK_TIMEOUT"

    def test_transport_error(self):
        """Proxy refused the tunnel"""
        error = TransportException("GET", "ProxyError: 407")

        assert error.reason == "transport_error"
        assert "407" in error.message

    # ========== Parse ==========

    def test_empty_results(self):
        """Markup changed: page parsed but nothing matched"""
        error = EmptyResultsException("wireless earbuds")

        assert error.reason == "empty_results"
        assert error.error_code == "EMPTY_RESULTS"

    def test_parsing_error(self):
        assert ParsingException("bad markup").error_code == "PARSING_ERROR"

    # ========== Flow control ==========

    def test_rate_limit_exceeded(self):
        error = RateLimitExceeded(limit=10, window_seconds=60)

        assert error.limit == 10
        assert "10 requests per 60s" in error.message

    def test_circuit_open(self):
        error = CircuitOpenException(retry_after_s=120)
        assert error.retry_after_s == 120
        assert error.error_code == "CIRCUIT_OPEN"

    # ========== Keywords / DB ==========

    def test_keyword_not_found(self):
        assert KeywordNotFoundException(9).details == {"keyword_id": 9}

    def test_invalid_transition(self):
        error = InvalidStatusTransitionException(3, "failed", "pending")
        assert error.error_code == "INVALID_STATUS_TRANSITION"
        assert "not 'failed'" in error.message

    def test_database_error(self):
        assert DatabaseException("boom").error_code == "DB_ERROR"

    def test_all_share_base(self):
        for error in (
            HttpStatusException(500),
            RateLimitExceeded(1, 1),
            CacheConnectionException("x"),
            DatabaseException("x"),
        ):
            assert isinstance(error, ScraperException)
