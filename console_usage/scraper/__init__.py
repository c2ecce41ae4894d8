# Scraper module
from .models import UsageSnapshot, ValidationResult, WeeklyLimits, WindowUsage
from .retry_strategy import CircuitState, RetryStrategy
from .session_validator import SessionValidator
from .usage_scraper import UsageScraper

__all__ = [
    "UsageSnapshot",
    "ValidationResult",
    "WeeklyLimits",
    "WindowUsage",
    "CircuitState",
    "RetryStrategy",
    "SessionValidator",
    "UsageScraper",
]
