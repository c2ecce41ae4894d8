"""
Console usage scraper.

Validates the persisted session, then extracts the three usage sections
independently so that one missing section yields a partial snapshot
instead of a failed scrape.
"""
import logging
import re
from typing import Callable, Dict, Optional

from console_usage.config import ScraperSettings
from console_usage.errors import ErrorCategory
from console_usage.exceptions import BrowserError, ExtractionError, ScrapeError
from console_usage.scraper.browser import BrowserLauncher, BrowserSession
from console_usage.scraper.models import (
    EMPTY_WINDOW,
    RECOVERY_MANUAL_LOGIN,
    RECOVERY_NETWORK_ERROR,
    SECTION_ALL_MODELS,
    SECTION_CURRENT_SESSION,
    SECTION_SONNET_ONLY,
    TOTAL_SECTIONS,
    UsageSnapshot,
    WeeklyLimits,
    WindowUsage,
    utc_now_iso,
)
from console_usage.scraper.session_validator import SessionValidator

logger = logging.getLogger(__name__)

LOGIN_COMMAND = "python usage_scraper.py login"

_CURRENT_RESETS = re.compile(r"Resets in ([^%]+?)(?=\d+%)")
_WEEKLY_RESETS = re.compile(r"Resets\s+([A-Za-z]+\s+\d+:\d+\s*[AP]M)", re.IGNORECASE)
_PERCENT_USED = re.compile(r"(\d+)%\s*used")

NOT_FOUND = "Data not found in DOM"


def _parse_window(text: str, resets_pattern: re.Pattern) -> Optional[WindowUsage]:
    resets = resets_pattern.search(text)
    if not resets or not resets.group(1).strip():
        return None
    percent = _PERCENT_USED.search(text)
    return WindowUsage(
        resets_in=resets.group(1).strip(),
        percentage_used=int(percent.group(1)) if percent else 0,
    )


def parse_current_session(text: str) -> Optional[WindowUsage]:
    """Parse 'Resets in 2 hr 13 min 45% used' style text."""
    return _parse_window(text, _CURRENT_RESETS)


def parse_weekly_window(text: str) -> Optional[WindowUsage]:
    """Parse 'Resets Thu 9:00 AM 12% used' style text."""
    return _parse_window(text, _WEEKLY_RESETS)


# (section name, marker text on the page, parser, log label)
SECTIONS = (
    (SECTION_CURRENT_SESSION, "Current session", parse_current_session, "Current session"),
    (SECTION_ALL_MODELS, "All models", parse_weekly_window, "Weekly all models"),
    (SECTION_SONNET_ONLY, "Sonnet only", parse_weekly_window, "Weekly Sonnet only"),
)


class UsageScraper:
    """
    Scrapes the Console usage page into a ``UsageSnapshot``.

    Raises ``ScrapeError`` (tagged with its category marker) when the
    session cannot be validated, and ``ExtractionError`` when no section
    could be extracted. Partial data is returned, not raised.
    """

    def __init__(
        self,
        launcher: BrowserLauncher,
        config: Optional[ScraperSettings] = None,
        validator: Optional[SessionValidator] = None,
        clock: Callable[[], str] = utc_now_iso,
    ):
        self.launcher = launcher
        self.config = config or ScraperSettings()
        self.validator = validator or SessionValidator(launcher, self.config)
        self._clock = clock

    def scrape(self) -> UsageSnapshot:
        logger.info("[Scraper] Validating session...")
        self._ensure_valid_session()
        logger.info("[Scraper] Session validated successfully")

        logger.info("[Scraper] Starting headless browser...")
        try:
            browser = self.launcher.launch(
                self.config.session_dir,
                headless=True,
                viewport=(self.config.viewport_width, self.config.viewport_height),
            )
        except BrowserError as e:
            raise ScrapeError(
                ErrorCategory.CONTEXT_CORRUPTED,
                f"Failed to launch browser context: {e}. {self._corrupted_remedy()}",
            ) from e

        try:
            logger.info("[Scraper] Navigating to usage page...")
            try:
                browser.navigate(self.config.usage_url, timeout_s=self.config.navigation_timeout_s)
            except BrowserError as e:
                raise ScrapeError(
                    ErrorCategory.NETWORK_ERROR,
                    f"Network timeout accessing Console: {e}",
                ) from e

            return self._extract_snapshot(browser)
        finally:
            try:
                browser.close()
            except BrowserError as close_error:
                logger.warning(f"[Scraper] Error closing browser: {close_error}")

    def _corrupted_remedy(self) -> str:
        return f"Delete {self.config.session_dir}/ and run: {LOGIN_COMMAND}"

    def _ensure_valid_session(self):
        result = self.validator.validate()
        if result.valid:
            return

        reason = result.reason or "Unknown error"
        category = result.category or ErrorCategory.UNKNOWN

        if category is ErrorCategory.SESSION_EXPIRED:
            logger.info("[Scraper] Session appears expired. Attempting automatic recovery...")
            recovered = self.validator.validate(attempt_recovery=True)
            if recovered.valid:
                logger.info("[Scraper] Session recovered successfully! Continuing with scrape...")
                return

            action = recovered.recovery_result.action if recovered.recovery_result else None
            if action == RECOVERY_MANUAL_LOGIN:
                error = ScrapeError(
                    ErrorCategory.SESSION_EXPIRED,
                    f"Auto-recovery failed. Manual login required. Run: {LOGIN_COMMAND}",
                )
            elif action == RECOVERY_NETWORK_ERROR:
                error = ScrapeError(
                    ErrorCategory.NETWORK_ERROR,
                    "Network timeout during recovery. Check connection and try again.",
                )
            elif recovered.category in (ErrorCategory.NETWORK_ERROR, ErrorCategory.CONTEXT_CORRUPTED):
                # The re-validation itself failed differently; report what it saw.
                error = ScrapeError(recovered.category, recovered.reason or reason)
            else:
                error = ScrapeError(
                    ErrorCategory.SESSION_EXPIRED, f"{reason} Run: {LOGIN_COMMAND}"
                )
        elif category is ErrorCategory.NETWORK_ERROR:
            error = ScrapeError(
                ErrorCategory.NETWORK_ERROR,
                f"Network timeout accessing Console. Check connection and try again. ({reason})",
            )
        elif category is ErrorCategory.CONTEXT_CORRUPTED:
            error = ScrapeError(
                ErrorCategory.CONTEXT_CORRUPTED,
                f"Browser session corrupted ({reason}). {self._corrupted_remedy()}",
            )
        else:
            error = ScrapeError(
                ErrorCategory.UNKNOWN,
                f"Session validation failed: {reason}. Run: {LOGIN_COMMAND}",
            )

        logger.error(f"[Scraper] {error}")
        raise error

    def _extract_snapshot(self, browser: BrowserSession) -> UsageSnapshot:
        logger.info("[Scraper] Extracting usage data...")
        extracted: Dict[str, WindowUsage] = {}
        extraction_errors: Dict[str, str] = {}

        for name, marker, parser, label in SECTIONS:
            try:
                text = browser.extract_section(marker, timeout_s=self.config.section_timeout_s)
                window = parser(text)
            except BrowserError as e:
                extraction_errors[name] = str(e)
                logger.warning(f"[Scraper] {label} extraction failed: {e}")
                continue

            if window is None:
                extraction_errors[name] = NOT_FOUND
                logger.warning(f"[Scraper] {label}: Data not found")
            else:
                extracted[name] = window
                logger.info(f"[Scraper] {label} extracted successfully")

        if not extracted:
            raise ExtractionError(extraction_errors)

        return self._assemble(extracted, extraction_errors)

    def _assemble(self, extracted: Dict[str, WindowUsage], extraction_errors: Dict[str, str]) -> UsageSnapshot:
        all_models = extracted.get(SECTION_ALL_MODELS)
        sonnet_only = extracted.get(SECTION_SONNET_ONLY)

        weekly = None
        if all_models or sonnet_only:
            weekly = WeeklyLimits(
                all_models=all_models or EMPTY_WINDOW,
                sonnet_only=sonnet_only or EMPTY_WINDOW,
            )

        snapshot = UsageSnapshot(
            last_updated=self._clock(),
            is_partial=len(extracted) < TOTAL_SECTIONS,
            current_session=extracted.get(SECTION_CURRENT_SESSION),
            weekly_limits=weekly,
            extraction_errors=extraction_errors or None,
        )

        if snapshot.is_partial:
            missing = ", ".join(extraction_errors)
            logger.info(
                f"[Scraper] Partial data extracted ({len(extracted)}/{TOTAL_SECTIONS} sections). "
                f"Missing: {missing}"
            )
        else:
            logger.info(f"[Scraper] Scrape completed successfully ({len(extracted)}/{TOTAL_SECTIONS} sections)")
        return snapshot
