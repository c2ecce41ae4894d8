"""
Strongly typed configuration using pydantic-settings.

All settings are validated at startup and loaded from:
1. Default values defined here
2. .env file (if present)
3. Environment variables (highest priority)

Environment variable naming:
- ScraperSettings: SCRAPER_SESSION_DIR, SCRAPER_USAGE_URL, etc.
- RetrySettings: RETRY_MAX_ATTEMPTS, RETRY_BASE_DELAY_MS, etc.
- StorageSettings: STORAGE_HISTORY_DIR, STORAGE_MAX_VERSIONS, etc.
- SyncSettings: CLAUDE_SYNC_URL, CLAUDE_SYNC_API_KEY, etc.
- OrchestratorSettings: AUTO_SCRAPER_INTERVAL_S, etc.
- ReceiverSettings: RECEIVER_API_KEY, RECEIVER_PORT, etc.
- ObservabilitySettings: ENVIRONMENT, LOG_LEVEL (no prefix)
"""
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional
from pathlib import Path


def section_config(env_prefix: str) -> SettingsConfigDict:
    """Config shared by every section: own env prefix, same .env file."""
    return SettingsConfigDict(
        env_prefix=env_prefix,
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )


class ScraperSettings(BaseSettings):
    """Browser session and extraction settings."""

    model_config = section_config("SCRAPER_")

    # Persistent browser profile
    session_dir: Path = Field(default=Path(".session"), description="Persistent browser profile directory")
    headless: bool = Field(default=True)
    viewport_width: int = Field(default=1280, ge=320)
    viewport_height: int = Field(default=800, ge=240)

    # Target page
    usage_url: str = Field(default="https://console.anthropic.com/settings/usage")
    auth_marker_text: str = Field(default="Current session", description="Text only visible when authenticated")
    login_url_fragment: str = Field(default="login", description="URL fragment of the login page")

    # Timeouts
    validation_timeout_s: float = Field(default=10.0, gt=0, le=60)
    recovery_timeout_s: float = Field(default=30.0, gt=0, le=120)
    navigation_timeout_s: float = Field(default=30.0, gt=0, le=120)
    section_timeout_s: float = Field(default=5.0, gt=0, le=60)


class RetrySettings(BaseSettings):
    """Scrape-level exponential backoff and circuit breaker."""

    model_config = section_config("RETRY_")

    max_attempts: int = Field(default=5, ge=1, le=20)
    base_delay_ms: int = Field(default=30_000, ge=0)
    max_delay_ms: int = Field(default=300_000, ge=0)
    jitter_factor_s: float = Field(default=10.0, ge=0, description="Max jitter in seconds")

    # Circuit breaker
    failure_threshold: int = Field(default=3, ge=1)
    success_threshold: int = Field(default=2, ge=1)
    open_duration_ms: int = Field(default=60_000, ge=0)

    @field_validator('max_delay_ms')
    @classmethod
    def max_delay_gte_base(cls, v, info):
        if 'base_delay_ms' in info.data and v < info.data['base_delay_ms']:
            raise ValueError('max_delay_ms must be >= base_delay_ms')
        return v


class StorageSettings(BaseSettings):
    """Versioned history storage and retention."""

    model_config = section_config("STORAGE_")

    history_dir: Path = Field(default=Path("data/console-usage-history"))
    latest_file: Path = Field(default=Path("data/console-usage-synced.json"))

    # Retention: keep everything newer than retention_days AND at least max_versions
    max_versions: int = Field(default=100, ge=1)
    retention_days: int = Field(default=7, ge=0)

    # Transient write failures
    write_retry_delays_ms: List[int] = Field(default=[100, 200, 400])

    @field_validator('write_retry_delays_ms')
    @classmethod
    def delays_not_empty(cls, v):
        if not v:
            raise ValueError('write_retry_delays_ms must contain at least one delay')
        return v


class SyncSettings(BaseSettings):
    """Remote sync endpoint."""

    model_config = section_config("CLAUDE_SYNC_")

    url: str = Field(default="http://localhost:4000/api/claude/console-usage")
    api_key: Optional[str] = Field(default=None, description="Sent as X-API-Key; sync is skipped when unset")
    timeout_s: float = Field(default=10.0, gt=0, le=120)
    retry_delays_s: List[float] = Field(default=[10.0, 20.0, 40.0])

    @field_validator('retry_delays_s')
    @classmethod
    def delays_not_empty(cls, v):
        if not v:
            raise ValueError('retry_delays_s must contain at least one delay')
        return v


class OrchestratorSettings(BaseSettings):
    """Auto-scraper loop."""

    model_config = section_config("AUTO_SCRAPER_")

    interval_s: float = Field(default=300.0, gt=0, description="Fixed scrape interval")
    cleanup_every_n_runs: int = Field(default=12, ge=1, description="Cache maintenance run-count modulus")
    cache_threshold_mb: float = Field(default=50.0, gt=0, description="Cache maintenance size trigger")


class ReceiverSettings(BaseSettings):
    """Receiving endpoint for synced snapshots."""

    model_config = section_config("RECEIVER_")

    api_key: Optional[str] = Field(default=None, description="Expected X-API-Key; all posts rejected when unset")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=4000, ge=1, le=65535)


class ObservabilitySettings(BaseSettings):
    """Logging and metrics settings."""

    model_config = section_config("")  # Direct: ENVIRONMENT, LOG_LEVEL

    environment: str = Field(default="development", pattern="^(development|staging|production)$")
    log_level: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    log_format: str = Field(default="console", pattern="^(console|json)$")
    enable_metrics: bool = Field(default=True)


class Settings(BaseSettings):
    """
    Root settings aggregating all subsections.

    Usage:
        from console_usage.config import settings

        settings.scraper.session_dir
        settings.retry.max_attempts
        settings.sync.api_key
        settings.observability.log_level
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    scraper: ScraperSettings = Field(default_factory=ScraperSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    orchestrator: OrchestratorSettings = Field(default_factory=OrchestratorSettings)
    receiver: ReceiverSettings = Field(default_factory=ReceiverSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)
