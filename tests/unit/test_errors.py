"""
Unit tests for error taxonomies and the exception hierarchy.
"""
import pytest

from console_usage.errors import (
    ErrorCategory,
    SyncErrorCategory,
    classify_error,
    classify_sync_error,
)
from console_usage.exceptions import ExtractionError, ScrapeError, SyncError


class TestClassifyError:
    """Tests for marker-based scrape error classification."""

    @pytest.mark.parametrize("message,expected", [
        ("SESSION_EXPIRED: Auto-recovery failed. Manual login required.", ErrorCategory.SESSION_EXPIRED),
        ("NETWORK_ERROR: Network timeout accessing Console.", ErrorCategory.NETWORK_ERROR),
        ("CONTEXT_CORRUPTED: Browser session corrupted.", ErrorCategory.CONTEXT_CORRUPTED),
        ("UNKNOWN_ERROR: Session validation failed", ErrorCategory.UNKNOWN),
        ("something else entirely", ErrorCategory.UNKNOWN),
        ("", ErrorCategory.UNKNOWN),
    ])
    def test_markers(self, message, expected):
        """Test each marker maps to its category."""
        assert classify_error(message) == expected

    def test_marker_anywhere_in_message(self):
        """Test markers are matched as substrings, not prefixes."""
        assert classify_error("Error: NETWORK_ERROR: boom") == ErrorCategory.NETWORK_ERROR

    def test_roundtrip_through_scrape_error(self):
        """Test str(ScrapeError) classifies back to its own category."""
        for category in ErrorCategory:
            assert classify_error(str(ScrapeError(category, "detail"))) == category

    def test_fatal_categories(self):
        """Test only session-expired and context-corrupted are fatal."""
        assert ErrorCategory.SESSION_EXPIRED.is_fatal
        assert ErrorCategory.CONTEXT_CORRUPTED.is_fatal
        assert not ErrorCategory.NETWORK_ERROR.is_fatal
        assert not ErrorCategory.UNKNOWN.is_fatal


class TestClassifySyncError:
    """Tests for HTTP sync error classification."""

    @pytest.mark.parametrize("status,expected", [
        (401, SyncErrorCategory.AUTH),
        (400, SyncErrorCategory.VALIDATION),
        (500, SyncErrorCategory.SERVER),
        (503, SyncErrorCategory.SERVER),
        (404, SyncErrorCategory.UNKNOWN),
        (429, SyncErrorCategory.UNKNOWN),
    ])
    def test_status_codes(self, status, expected):
        assert classify_sync_error(status) == expected

    def test_no_status_network_messages(self):
        """Test transport failures without a status classify as NETWORK."""
        assert classify_sync_error(None, "Request timeout after 10s") == SyncErrorCategory.NETWORK
        assert classify_sync_error(None, "Connection refused") == SyncErrorCategory.NETWORK
        assert classify_sync_error(None, "The operation was aborted") == SyncErrorCategory.NETWORK

    def test_no_status_unknown(self):
        assert classify_sync_error(None, "weird") == SyncErrorCategory.UNKNOWN

    def test_retryable(self):
        """Test AUTH and VALIDATION are never retryable."""
        assert not SyncErrorCategory.AUTH.retryable
        assert not SyncErrorCategory.VALIDATION.retryable
        assert SyncErrorCategory.NETWORK.retryable
        assert SyncErrorCategory.SERVER.retryable
        assert SyncErrorCategory.UNKNOWN.retryable


class TestExceptions:
    """Tests for tagged exception types."""

    def test_scrape_error_message_prefix(self):
        error = ScrapeError(ErrorCategory.UNKNOWN, "Session validation failed")
        assert str(error) == "UNKNOWN_ERROR: Session validation failed"
        assert error.category == ErrorCategory.UNKNOWN
        assert not error.is_fatal

    def test_extraction_error_lists_sections(self):
        error = ExtractionError({"currentSession": "Data not found in DOM", "allModels": "Timeout"})
        assert str(error).startswith("UNKNOWN_ERROR: All sections failed to extract")
        assert "currentSession: Data not found in DOM" in str(error)
        assert error.extraction_errors["allModels"] == "Timeout"

    def test_sync_error_carries_status(self):
        error = SyncError(SyncErrorCategory.SERVER, "Sync failed with status 502", status_code=502)
        assert error.status_code == 502
        assert error.retryable
