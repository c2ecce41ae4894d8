"""
Session validation: is the persisted browser profile still logged in?

The validator detects and categorizes; it never repairs the profile. The
one remediation it can perform on request is a recovery pass that reloads
the usage page and waits longer for the session to refresh itself.
"""
import logging
from pathlib import Path
from typing import Optional

from console_usage.config import ScraperSettings
from console_usage.errors import ErrorCategory
from console_usage.exceptions import BrowserError, BrowserTimeoutError
from console_usage.scraper.browser import AuthState, BrowserLauncher, BrowserSession
from console_usage.scraper.models import (
    RECOVERY_AUTO_REFRESHED,
    RECOVERY_MANUAL_LOGIN,
    RECOVERY_NETWORK_ERROR,
    RecoveryResult,
    ValidationResult,
)

logger = logging.getLogger(__name__)

REASON_DIR_MISSING = "Session directory not found. No browser context saved."
REASON_DIR_EMPTY = "Session directory is empty. No browser context data."
REASON_EXPIRED = "Redirected to login page. Session expired."
REASON_UNVERIFIED = "Could not verify authentication state. Page did not load expected content."


class SessionValidator:
    """
    Checks a persistent browser profile against the usage page.

    Example:
        validator = SessionValidator(launcher, settings.scraper)
        result = validator.validate(attempt_recovery=True)
        if not result.valid:
            print(result.category, result.reason)
    """

    def __init__(self, launcher: BrowserLauncher, config: Optional[ScraperSettings] = None):
        self.launcher = launcher
        self.config = config or ScraperSettings()

    @property
    def session_dir(self) -> Path:
        return Path(self.config.session_dir)

    def _viewport(self):
        return (self.config.viewport_width, self.config.viewport_height)

    def _check_directory(self) -> Optional[ValidationResult]:
        if not self.session_dir.exists():
            return ValidationResult(
                valid=False, reason=REASON_DIR_MISSING, category=ErrorCategory.CONTEXT_CORRUPTED
            )
        if not any(self.session_dir.iterdir()):
            return ValidationResult(
                valid=False, reason=REASON_DIR_EMPTY, category=ErrorCategory.CONTEXT_CORRUPTED
            )
        return None

    def validate(self, attempt_recovery: bool = False) -> ValidationResult:
        """
        Validate the persisted session.

        Args:
            attempt_recovery: On a login redirect, run one longer recovery pass
                and report its outcome in ``recovery_result``.

        Returns:
            ValidationResult with ``category`` set whenever ``valid`` is False
        """
        failed = self._check_directory()
        if failed is not None:
            logger.warning(f"[Session Validator] {failed.reason}")
            return failed

        try:
            browser = self.launcher.launch(
                self.session_dir, headless=True, viewport=self._viewport()
            )
        except BrowserError as e:
            return ValidationResult(
                valid=False,
                reason=f"Failed to launch browser context: {e}",
                category=ErrorCategory.CONTEXT_CORRUPTED,
            )

        try:
            result = self._check_authentication(browser)
        finally:
            try:
                browser.close()
            except BrowserError as close_error:
                logger.warning(f"[Session Validator] Error closing browser: {close_error}")

        if result.category is ErrorCategory.SESSION_EXPIRED and attempt_recovery:
            # The profile is released above; recovery relaunches over it.
            logger.info("[Session Validator] Session expired. Attempting recovery...")
            recovery = self.attempt_recovery()
            return ValidationResult(
                valid=recovery.recovered,
                reason=None if recovery.recovered else result.reason,
                category=None if recovery.recovered else result.category,
                recovery_result=recovery,
            )

        return result

    def _check_authentication(self, browser: BrowserSession) -> ValidationResult:
        timeout_s = self.config.validation_timeout_s
        try:
            browser.navigate(self.config.usage_url, timeout_s=timeout_s)
        except BrowserError as e:
            return ValidationResult(
                valid=False,
                reason=f"Navigation timeout or network error: {e}",
                category=ErrorCategory.NETWORK_ERROR,
            )

        try:
            state = browser.wait_for_auth_state(
                self.config.auth_marker_text, self.config.login_url_fragment, timeout_s
            )
        except BrowserError as e:
            return ValidationResult(
                valid=False,
                reason=f"Authentication check failed: {e}",
                category=ErrorCategory.UNKNOWN,
            )

        if state is AuthState.AUTHENTICATED:
            return ValidationResult(valid=True)

        if state is AuthState.LOGIN_REDIRECT or self.config.login_url_fragment in browser.current_url:
            return ValidationResult(
                valid=False, reason=REASON_EXPIRED, category=ErrorCategory.SESSION_EXPIRED
            )

        return ValidationResult(valid=False, reason=REASON_UNVERIFIED, category=ErrorCategory.UNKNOWN)

    def attempt_recovery(self) -> RecoveryResult:
        """Reload the usage page headless and wait for the session to refresh itself."""
        timeout_s = self.config.recovery_timeout_s
        try:
            browser = self.launcher.launch(
                self.session_dir, headless=True, viewport=self._viewport()
            )
        except BrowserError as e:
            logger.error(f"[Session Recovery] Failed to launch browser: {e}")
            return RecoveryResult(recovered=False, action=RECOVERY_NETWORK_ERROR)

        try:
            try:
                browser.navigate(self.config.usage_url, timeout_s=timeout_s)
            except BrowserError:
                logger.error("[Session Recovery] Network error during navigation")
                return RecoveryResult(recovered=False, action=RECOVERY_NETWORK_ERROR)

            try:
                state = browser.wait_for_auth_state(
                    self.config.auth_marker_text, self.config.login_url_fragment, timeout_s
                )
            except BrowserTimeoutError:
                state = AuthState.UNDETERMINED
            except BrowserError as e:
                logger.error(f"[Session Recovery] Error during recovery attempt: {e}")
                return RecoveryResult(recovered=False, action=RECOVERY_NETWORK_ERROR)

            if state is AuthState.AUTHENTICATED:
                logger.info("[Session Recovery] Success! Session auto-refreshed.")
                return RecoveryResult(recovered=True, action=RECOVERY_AUTO_REFRESHED)

            if state is AuthState.LOGIN_REDIRECT or self.config.login_url_fragment in browser.current_url:
                logger.warning("[Session Recovery] Manual login required.")
                return RecoveryResult(recovered=False, action=RECOVERY_MANUAL_LOGIN)

            logger.error("[Session Recovery] Timeout waiting for page state.")
            return RecoveryResult(recovered=False, action=RECOVERY_NETWORK_ERROR)
        finally:
            try:
                browser.close()
            except BrowserError as close_error:
                logger.warning(f"[Session Recovery] Error closing browser: {close_error}")
