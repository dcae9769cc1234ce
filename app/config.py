from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "Backlink Monitor"
    app_version: str = "0.1.0"
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"

    # Database
    database_url: str | None = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 5
    db_auto_create_schema: bool = False

    # Security
    cors_origins: list[str] = []  # Empty by default for security
    cron_secret: str | None = None

    # Sentry
    sentry_dsn: str | None = None

    # Page fetching
    backlink_fetch_timeout_seconds: float = 15.0
    backlink_fetch_retry_limit: int = 1
    backlink_user_agent: str = (
        "Mozilla/5.0 (compatible; PitchMyPage/1.0; +https://pitchmypage.com)"
    )

    # Monitoring batch
    backlink_batch_limit: int = 50
    backlink_batch_max_seconds: float = 240.0
    backlink_batch_concurrency: int = 1
    backlink_uptime_window_days: int = 30
    backlink_uptime_window_size: int = 100

    # Alerts
    backlink_alert_webhook: str | None = None
    backlink_alert_disable: bool = False

    # Reciprocal links
    reciprocal_urls: list[str] = [
        "https://www.pitchmypage.com",
        "https://www.appideasfinder.com",
    ]

    # Metrics
    metrics_backend: str = "stdout"
    metrics_namespace: str = "backlinks"
    metrics_disable: bool = False
    metrics_sample_rate: float = 1.0
    metrics_statsd_host: str = "127.0.0.1"
    metrics_statsd_port: int = 8125
    metrics_schema_version: str = "backlinks.v1"

    model_config = ConfigDict(env_file=".env", case_sensitive=False)


settings = Settings()
