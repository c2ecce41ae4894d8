"""
Configuration module with strongly typed settings.

Usage:
    from console_usage.config import settings

    print(settings.scraper.usage_url)
    print(settings.retry.max_attempts)
"""
from .settings import (
    Settings,
    ScraperSettings,
    RetrySettings,
    StorageSettings,
    SyncSettings,
    OrchestratorSettings,
    ReceiverSettings,
    ObservabilitySettings,
)

# Singleton instance - validates on import
settings = Settings()

__all__ = [
    "settings",
    "Settings",
    "ScraperSettings",
    "RetrySettings",
    "StorageSettings",
    "SyncSettings",
    "OrchestratorSettings",
    "ReceiverSettings",
    "ObservabilitySettings",
]
