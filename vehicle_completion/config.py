"""
Application Configuration
"""

from pydantic import model_validator
from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Database
    database_url: Optional[str] = None

    # Redis & Job Queue
    redis_url: Optional[str] = None

    # Environment
    environment: str = "development"

    # Vehicle data provider (CheckCarDetails)
    provider_base_url: str = "https://api.checkcardetails.co.uk"
    provider_api_key: Optional[str] = None
    provider_timeout_seconds: float = 10.0  # Per sub-call HTTP timeout
    provider_max_attempts: int = 3
    provider_backoff_base_seconds: float = 1.0
    provider_backoff_max_seconds: float = 10.0
    provider_fetch_deadline_seconds: float = 20.0  # All sub-calls incl. retries; below lock_timeout_seconds
    valuation_mileage: int = 50000  # Estimated mileage sent with valuation calls

    # Cache freshness tiers (days since last check)
    cache_fresh_days: int = 7
    cache_good_days: int = 30
    cache_stale_days: int = 90

    # Deduplication & Locking
    dedup_session_ttl_seconds: int = 300  # 5 minutes
    lock_timeout_seconds: float = 30.0  # Whole completion pipeline
    lock_acquire_timeout_seconds: float = 35.0  # Waiting behind an in-flight completion
    background_refresh_workers: int = 2

    # Completeness
    completeness_threshold: int = 70  # Percent of critical fields

    # Circuit Breaker Configuration
    circuit_breaker_fail_max: int = 5  # Consecutive failures before opening circuit
    circuit_breaker_reset_timeout: int = 60  # Seconds before auto-recovery attempt

    # Cost monitoring alerts
    daily_cost_alert_gbp: float = 50.0
    success_rate_alert_percent: float = 90.0
    slow_response_alert_ms: int = 5000

    # Sentry Error Tracking
    sentry_dsn: Optional[str] = None  # Sentry project DSN
    sentry_environment: Optional[str] = None  # Defaults to environment setting

    @model_validator(mode="after")
    def check_provider_budget(self):
        # A slow sub-call must degrade to fallback data before the lock cancels the pipeline
        if self.provider_fetch_deadline_seconds >= self.lock_timeout_seconds:
            raise ValueError("provider_fetch_deadline_seconds must be below lock_timeout_seconds")
        if self.provider_timeout_seconds > self.provider_fetch_deadline_seconds:
            raise ValueError("provider_timeout_seconds must not exceed provider_fetch_deadline_seconds")
        return self

    class Config:
        env_file = ".env"
        case_sensitive = False


settings = Settings()
