"""Settings management: load and validate environment variables"""
from typing import List, Optional
from pydantic_settings import BaseSettings
from pydantic import field_validator


class Settings(BaseSettings):
    """Application settings"""

    # Database
    database_url: str = ""

    # Redis (rate limit windows, proxy health, circuit state)
    redis_url: str = ""

    # Proxies
    # - proxy_list: comma-separated, e.g. "http://user:pw@10.0.0.1:8080,http://10.0.0.2:8080"
    proxy_list: str = ""
    proxy_health_ttl: int = 300
    proxy_probe_url: str = "https://www.google.com/robots.txt"
    proxy_probe_timeout_s: float = 5.0

    # Rate limiting (fixed windows, atomic check-and-increment)
    rate_limit_max_requests: int = 60
    rate_limit_window_seconds: int = 60
    rate_limit_failure_threshold: int = 5
    rate_limit_failure_penalty: float = 0.2
    rate_limit_release_delay_s: int = 30

    # Circuit breaker / metrics
    circuit_failure_threshold: int = 5
    circuit_cooldown_seconds: int = 300
    circuit_tracking_window_seconds: int = 300
    circuit_recovery_success_rate: float = 80.0
    circuit_release_delay_s: int = 60
    metrics_window_seconds: int = 300
    metrics_bucket_seconds: int = 60

    # Fetching
    scraper_search_url: str = "https://www.google.com/search"
    scraper_request_timeout_s: float = 30.0
    scraper_job_timeout_s: float = 120.0
    scraper_results_per_page: int = 10
    scraper_language: str = "en"
    scraper_country: Optional[str] = None
    scraper_http_impersonate: str = "safari17_2_ios"
    scraper_http_max_clients: int = 20
    scraper_verify_tls_via_proxy: bool = False

    # Retry
    scraper_max_attempts: int = 3
    scraper_backoff_schedule: str = "30,60,120"
    scraper_backoff_jitter: float = 0.1

    # Dispatch
    scraper_worker_concurrency: int = 4
    dispatch_delay_min_s: float = 1.0
    dispatch_delay_max_s: float = 10.0
    upload_max_keywords: int = 100

    # Logging
    log_level: str = "INFO"

    @property
    def proxies(self) -> List[str]:
        """Configured proxy addresses, blanks dropped"""
        return [p.strip() for p in self.proxy_list.split(",") if p.strip()]

    @property
    def backoff_schedule(self) -> List[int]:
        """Backoff delays in seconds per consumed attempt"""
        return [int(p.strip()) for p in self.scraper_backoff_schedule.split(",") if p.strip()]

    @field_validator(
        "proxy_health_ttl",
        "rate_limit_max_requests",
        "rate_limit_window_seconds",
        "circuit_failure_threshold",
        "circuit_cooldown_seconds",
        "circuit_tracking_window_seconds",
        "metrics_window_seconds",
        "metrics_bucket_seconds",
        "scraper_results_per_page",
        "scraper_max_attempts",
        "scraper_worker_concurrency",
        "upload_max_keywords",
    )
    @classmethod
    def validate_positive_int(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("value must be positive")
        return v

    @field_validator("proxy_probe_timeout_s", "scraper_request_timeout_s", "scraper_job_timeout_s")
    @classmethod
    def validate_timeouts(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    @field_validator("rate_limit_failure_penalty")
    @classmethod
    def validate_failure_penalty(cls, v: float) -> float:
        if not 0 <= v < 1:
            raise ValueError("rate_limit_failure_penalty must be in [0, 1)")
        return v

    @field_validator("circuit_recovery_success_rate")
    @classmethod
    def validate_recovery_rate(cls, v: float) -> float:
        if not 0 <= v <= 100:
            raise ValueError("circuit_recovery_success_rate must be a percentage")
        return v

    @field_validator("scraper_backoff_schedule")
    @classmethod
    def validate_backoff_schedule(cls, v: str) -> str:
        parts = [p.strip() for p in v.split(",") if p.strip()]
        if any(not p.isdigit() for p in parts):
            raise ValueError("scraper_backoff_schedule must be comma-separated seconds")
        return v

    @field_validator("database_url", "redis_url")
    @classmethod
    def validate_required_urls(cls, v: str) -> str:
        if not v:
            raise ValueError("database_url and redis_url must not be empty")
        return v

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
