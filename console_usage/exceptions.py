"""
Custom exceptions for the Console usage scraper.
"""
from typing import Dict, Optional

from console_usage.errors import ErrorCategory, SyncErrorCategory


class ConsoleUsageError(Exception):
    """Base exception for all custom errors."""
    pass


# Scraping Errors
class ScrapeError(ConsoleUsageError):
    """
    Raised when a scrape cannot produce a snapshot.

    The message always starts with the category marker so that
    ``classify_error(str(exc))`` recovers the same category.
    """
    def __init__(self, category: ErrorCategory, detail: str):
        self.category = category
        self.detail = detail
        super().__init__(f"{category.marker}: {detail}")

    @property
    def is_fatal(self) -> bool:
        return self.category.is_fatal


class ExtractionError(ScrapeError):
    """Raised when every usage section failed to extract."""
    def __init__(self, extraction_errors: Dict[str, str]):
        self.extraction_errors = dict(extraction_errors)
        summary = "; ".join(f"{name}: {msg}" for name, msg in self.extraction_errors.items())
        super().__init__(
            ErrorCategory.UNKNOWN,
            f"All sections failed to extract. Extraction errors: {summary}",
        )


class FatalScrapeError(ConsoleUsageError):
    """Raised by the auto-scraper loop when a fatal category requires manual remediation."""
    def __init__(self, category: ErrorCategory, message: str, remediation: str):
        self.category = category
        self.remediation = remediation
        super().__init__(message)


# Browser Errors
class BrowserError(ConsoleUsageError):
    """Raised when the browser automation capability fails."""
    pass


class BrowserTimeoutError(BrowserError):
    """Raised when a navigation or wait exceeds its timeout."""
    pass


# Sync Errors
class SyncError(ConsoleUsageError):
    """Raised when pushing a snapshot to the remote endpoint fails."""
    def __init__(
        self,
        category: SyncErrorCategory,
        message: str,
        status_code: Optional[int] = None,
    ):
        self.category = category
        self.status_code = status_code
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.category.retryable


# Storage Errors
class StorageError(ConsoleUsageError):
    """Raised when a snapshot could not be durably recorded."""
    def __init__(self, message: str, transient: bool = False, errno: Optional[int] = None):
        self.transient = transient
        self.errno = errno
        super().__init__(message)


class StorageHealthError(StorageError):
    """Raised when the pre-write health probe fails."""
