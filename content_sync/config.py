"""Pydantic settings for application configuration."""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, PositiveInt
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Database connection settings."""

    model_config = SettingsConfigDict(env_prefix="DATABASE_")

    url: str = Field(
        default="sqlite+aiosqlite:///./content_sync.db",
        description="SQLAlchemy async database URL",
    )
    pool_size: int = Field(
        default=5,
        ge=1,
        le=100,
        description="Connection pool size",
    )
    max_overflow: int = Field(
        default=10,
        ge=0,
        le=100,
        description="Max connections beyond pool size",
    )
    echo: bool = Field(
        default=False,
        description="Echo SQL statements",
    )


class YouTubeSettings(BaseSettings):
    """YouTube Data API settings."""

    model_config = SettingsConfigDict(env_prefix="YOUTUBE_")

    api_key: str = Field(
        default="",
        description="YouTube Data API v3 key",
    )
    base_url: str = Field(
        default="https://www.googleapis.com/youtube/v3",
        description="YouTube Data API base URL",
    )
    timeout_seconds: float = Field(
        default=15.0,
        gt=0,
        description="Per-request timeout",
    )
    max_retries: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts for transient transport errors",
    )


class ProviderQuotaSettings(BaseModel):
    """Quota policy for a single provider."""

    daily_limit: int = Field(default=10000, gt=0)
    warning_threshold: float = Field(default=0.8, gt=0, le=1)
    critical_threshold: float = Field(default=0.95, gt=0, le=1)
    operation_costs: dict[str, PositiveInt] = Field(default_factory=dict)


class YouTubeQuotaSettings(ProviderQuotaSettings):
    """YouTube Data API v3 quota: 10000 units per day."""

    daily_limit: int = Field(default=10000, gt=0)
    operation_costs: dict[str, PositiveInt] = Field(
        default_factory=lambda: {
            "channelInfo": 1,
            "playlistItems": 1,
            "videoDetails": 1,
            "channelVideos": 2,
            "search": 100,
        }
    )


class TwitterQuotaSettings(ProviderQuotaSettings):
    """Twitter API v2 quota."""

    daily_limit: int = Field(default=300, gt=0)
    operation_costs: dict[str, PositiveInt] = Field(
        default_factory=lambda: {
            "users/by/username": 1,
            "users/:id/tweets": 1,
        }
    )


class QuotaSettings(BaseSettings):
    """Quota ledger settings."""

    model_config = SettingsConfigDict(env_prefix="QUOTA_", env_nested_delimiter="__")

    youtube: YouTubeQuotaSettings = Field(default_factory=YouTubeQuotaSettings)
    twitter: TwitterQuotaSettings = Field(default_factory=TwitterQuotaSettings)
    retention_days: int = Field(
        default=30,
        ge=1,
        description="Usage records older than this are pruned",
    )


class SyncSettings(BaseSettings):
    """Sync scheduling settings."""

    model_config = SettingsConfigDict(env_prefix="SYNC_")

    page_size: int = Field(
        default=50,
        ge=1,
        le=50,
        description="Items requested per provider page",
    )
    page_cost_units: int = Field(
        default=2,
        ge=1,
        description="Units reserved before a page fetch, and charged when the client reports no requests",
    )
    batch_size: int = Field(
        default=100,
        ge=1,
        description="Maximum sources processed per tick",
    )
    tick_interval_seconds: float = Field(
        default=3600.0,
        gt=0,
        description="Seconds between sync ticks",
    )
    tick_jitter_seconds: float = Field(
        default=30.0,
        ge=0,
        description="Random delay added to each tick interval",
    )
    prune_interval_seconds: float = Field(
        default=86400.0,
        gt=0,
        description="Seconds between quota history pruning runs",
    )
    lock_stale_after_seconds: int = Field(
        default=900,
        ge=1,
        description="Run locks older than this are considered abandoned",
    )
    enabled: bool = Field(
        default=True,
        description="Start the tickers with the application",
    )


class LoggingSettings(BaseSettings):
    """Logging configuration settings."""

    model_config = SettingsConfigDict(env_prefix="LOG_")

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        description="Logging level",
    )
    json_format: bool = Field(
        default=True,
        description="Use JSON format for logs",
    )


class APISettings(BaseSettings):
    """Status API server settings."""

    model_config = SettingsConfigDict(env_prefix="API_")

    host: str = Field(
        default="0.0.0.0",
        description="API server host",
    )
    port: int = Field(
        default=8000,
        ge=1,
        le=65535,
        description="API server port",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_prefix="",
        env_nested_delimiter="__",
    )

    service_name: str = Field(
        default="content-sync",
        description="Service name for logging",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )

    # Nested settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    youtube: YouTubeSettings = Field(default_factory=YouTubeSettings)
    quota: QuotaSettings = Field(default_factory=QuotaSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    api: APISettings = Field(default_factory=APISettings)

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance.

    Returns:
        The application settings.
    """
    return Settings()


def refresh_settings() -> Settings:
    """Clear settings cache and return fresh settings.

    Returns:
        Fresh application settings.
    """
    get_settings.cache_clear()
    return get_settings()
