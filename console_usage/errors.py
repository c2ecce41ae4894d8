"""
Error taxonomies for the scrape path and the sync path.

Upstream errors are tagged with a marker string before being raised
(``SESSION_EXPIRED: ...``). ``classify_error`` recovers the category from
that marker. Sync failures have their own vocabulary because they are
classified from HTTP status codes, which never exist on the scrape path.
"""
from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    SESSION_EXPIRED = "SESSION_EXPIRED"
    CONTEXT_CORRUPTED = "CONTEXT_CORRUPTED"
    NETWORK_ERROR = "NETWORK_ERROR"
    UNKNOWN = "UNKNOWN"

    @property
    def marker(self) -> str:
        """Prefix used when tagging error messages."""
        if self is ErrorCategory.UNKNOWN:
            return "UNKNOWN_ERROR"
        return self.value

    @property
    def is_fatal(self) -> bool:
        return self in (ErrorCategory.SESSION_EXPIRED, ErrorCategory.CONTEXT_CORRUPTED)


class SyncErrorCategory(str, Enum):
    NETWORK = "NETWORK"
    AUTH = "AUTH"
    VALIDATION = "VALIDATION"
    SERVER = "SERVER"
    UNKNOWN = "UNKNOWN"

    @property
    def retryable(self) -> bool:
        return self not in (SyncErrorCategory.AUTH, SyncErrorCategory.VALIDATION)


def classify_error(message: str) -> ErrorCategory:
    """Map a tagged error message to its category. Pure substring matching."""
    if not message:
        return ErrorCategory.UNKNOWN
    if ErrorCategory.SESSION_EXPIRED.value in message:
        return ErrorCategory.SESSION_EXPIRED
    if ErrorCategory.NETWORK_ERROR.value in message:
        return ErrorCategory.NETWORK_ERROR
    if ErrorCategory.CONTEXT_CORRUPTED.value in message:
        return ErrorCategory.CONTEXT_CORRUPTED
    return ErrorCategory.UNKNOWN


def classify_sync_error(status_code: Optional[int], message: str = "") -> SyncErrorCategory:
    """
    Classify a sync failure from the HTTP status code plus message text.

    Args:
        status_code: HTTP status, or None when no response was received
        message: Error text (exception message or response reason)

    Returns:
        SyncErrorCategory
    """
    if status_code is not None:
        if status_code == 401:
            return SyncErrorCategory.AUTH
        if status_code == 400:
            return SyncErrorCategory.VALIDATION
        if 500 <= status_code < 600:
            return SyncErrorCategory.SERVER
        return SyncErrorCategory.UNKNOWN

    lowered = (message or "").lower()
    if any(token in lowered for token in ("timeout", "timed out", "abort", "network", "connect")):
        return SyncErrorCategory.NETWORK
    return SyncErrorCategory.UNKNOWN
