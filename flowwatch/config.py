"""
FlowWatch Configuration.

Loaded from .env and environment variables.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    # ── Application ──────────────────────────────────────────────────────
    app_name: str = "FlowWatch"
    app_version: str = "1.0.0"
    environment: str = Field(default="development", alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")

    # ── API ───────────────────────────────────────────────────────────────
    api_host: str = Field(default="0.0.0.0", alias="API_HOST")
    api_port: int = Field(default=8080, alias="API_PORT")
    trigger_api_key: str = Field(default="", alias="TRIGGER_API_KEY")

    # ── Database ─────────────────────────────────────────────────────────
    database_url: str = Field(
        default="sqlite+aiosqlite:///./flowwatch.db",
        alias="DATABASE_URL",
    )
    db_pool_size: int = Field(default=5, alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=5, alias="DB_MAX_OVERFLOW")

    # ── Cache ─────────────────────────────────────────────────────────────
    cache_backend: str = Field(default="memory", alias="CACHE_BACKEND")
    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    forecast_cache_ttl_seconds: int = Field(default=30 * 60, alias="FORECAST_CACHE_TTL_SECONDS")
    threshold_cache_ttl_seconds: int = Field(
        default=7 * 24 * 3600, alias="THRESHOLD_CACHE_TTL_SECONDS"
    )
    threshold_max_stale_seconds: Optional[int] = Field(
        default=None,
        alias="THRESHOLD_MAX_STALE_SECONDS",
        description="Upper bound on stale threshold fallback (None = any age)",
    )

    # ── External Services ─────────────────────────────────────────────────
    forecast_base_url: str = Field(
        default="https://api.water.noaa.gov/nwps/v1", alias="FORECAST_BASE_URL"
    )
    return_period_base_url: str = Field(
        default="https://nwm-api-updt-9f6idmxh.uc.gateway.dev",
        alias="RETURN_PERIOD_BASE_URL",
    )
    return_period_api_key: str = Field(default="", alias="RETURN_PERIOD_API_KEY")
    return_period_unit: str = Field(default="cms", alias="RETURN_PERIOD_UNIT")
    external_timeout_seconds: float = Field(default=15.0, alias="EXTERNAL_TIMEOUT_SECONDS")

    # ── Monitoring ─────────────────────────────────────────────────────────
    monitor_interval_minutes: int = Field(default=30, alias="MONITOR_INTERVAL_MINUTES")
    monitor_max_concurrency: int = Field(default=8, alias="MONITOR_MAX_CONCURRENCY")
    run_on_startup: bool = Field(default=True, alias="RUN_ON_STARTUP")
    dedup_window_hours: int = Field(default=24, alias="DEDUP_WINDOW_HOURS")
    quiet_hours_timezone: str = Field(default="UTC", alias="QUIET_HOURS_TIMEZONE")

    # ── Push delivery ──────────────────────────────────────────────────────
    push_backend: str = Field(default="log", alias="PUSH_BACKEND")
    # FCM HTTP v1; credentials fall back to Application Default Credentials
    fcm_project_id: str = Field(default="", alias="FCM_PROJECT_ID")
    fcm_credentials_file: str = Field(default="", alias="FCM_CREDENTIALS_FILE")
    fcm_endpoint: str = Field(
        default="https://fcm.googleapis.com/v1/projects/{project_id}/messages:send",
        alias="FCM_ENDPOINT",
    )

    # ── Operational ────────────────────────────────────────────────────────
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="console", alias="LOG_FORMAT")

    @property
    def async_database_url(self) -> str:
        """Ensure the database URL uses an async driver."""
        url = self.database_url
        if url.startswith("postgresql://"):
            url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
        if url.startswith("sqlite://"):
            url = url.replace("sqlite://", "sqlite+aiosqlite://", 1)
        return url


settings = Settings()
