"""
Browser automation capability.

The scrape pipeline only talks to ``BrowserLauncher`` / ``BrowserSession``,
so session validation, retry and storage logic can run against a fake
implementation in tests. ``PlaywrightBrowserLauncher`` is the real one,
driving Chromium over a persistent profile directory.
"""
import logging
from enum import Enum
from pathlib import Path
from typing import Optional, Protocol, Tuple

from playwright.sync_api import Error as PWError
from playwright.sync_api import TimeoutError as PWTimeout
from playwright.sync_api import sync_playwright

from console_usage.exceptions import BrowserError, BrowserTimeoutError

logger = logging.getLogger(__name__)


class AuthState(str, Enum):
    AUTHENTICATED = "authenticated"
    LOGIN_REDIRECT = "login-redirect"
    UNDETERMINED = "undetermined"


class BrowserSession(Protocol):
    """One open page inside a persistent browser context."""

    def navigate(self, url: str, timeout_s: float) -> None:
        ...

    def wait_for_auth_state(
        self, marker_text: str, login_url_fragment: str, timeout_s: float
    ) -> AuthState:
        ...

    @property
    def current_url(self) -> str:
        ...

    def extract_section(self, marker_text: str, timeout_s: float) -> str:
        ...

    def page_content(self) -> str:
        ...

    def close(self) -> None:
        ...


class BrowserLauncher(Protocol):
    def launch(
        self, user_data_dir: Path, headless: bool, viewport: Tuple[int, int]
    ) -> BrowserSession:
        ...


# Whichever condition becomes true first wins the race; null keeps polling.
_AUTH_RACE_JS = """
([marker, fragment]) => {
    const body = document.body ? document.body.innerText : "";
    if (body.includes(marker)) return "authenticated";
    if (window.location.href.includes(fragment)) return "login-redirect";
    return null;
}
"""

# Smallest element holding the section title plus its reset/percent text.
_SECTION_TEXT_JS = """
(marker) => {
    let best = null;
    for (const el of document.querySelectorAll("div, section, li")) {
        const text = el.innerText || "";
        if (text.includes(marker) && text.includes("Resets") && text.includes("%")) {
            if (best === null || text.length < best.length) best = text;
        }
    }
    return best;
}
"""


class PlaywrightBrowserSession:
    """``BrowserSession`` backed by a Playwright persistent context."""

    def __init__(self, playwright, context, page):
        self._playwright = playwright
        self._context = context
        self._page = page
        self._closed = False

    def navigate(self, url: str, timeout_s: float) -> None:
        try:
            self._page.goto(url, wait_until="networkidle", timeout=timeout_s * 1000)
        except PWTimeout as e:
            raise BrowserTimeoutError(f"Navigation to {url} timed out after {timeout_s:.0f}s") from e
        except PWError as e:
            raise BrowserError(f"Navigation to {url} failed: {e}") from e

    def wait_for_auth_state(
        self, marker_text: str, login_url_fragment: str, timeout_s: float
    ) -> AuthState:
        try:
            handle = self._page.wait_for_function(
                _AUTH_RACE_JS,
                arg=[marker_text, login_url_fragment],
                timeout=timeout_s * 1000,
            )
            return AuthState(handle.json_value())
        except PWTimeout:
            return AuthState.UNDETERMINED
        except PWError as e:
            # Page navigated mid-evaluation (typically the login redirect)
            logger.debug(f"[Browser] Auth race interrupted: {e}")
            return AuthState.UNDETERMINED

    @property
    def current_url(self) -> str:
        return self._page.url

    def extract_section(self, marker_text: str, timeout_s: float) -> str:
        try:
            self._page.wait_for_selector(f"text={marker_text}", timeout=timeout_s * 1000)
            text = self._page.evaluate(_SECTION_TEXT_JS, marker_text)
        except PWTimeout as e:
            raise BrowserTimeoutError(
                f"Timeout {timeout_s * 1000:.0f}ms exceeded waiting for '{marker_text}'"
            ) from e
        except PWError as e:
            raise BrowserError(f"Failed to read section '{marker_text}': {e}") from e
        return text or ""

    def page_content(self) -> str:
        try:
            return self._page.content()
        except PWError as e:
            raise BrowserError(f"Failed to read page content: {e}") from e

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._context.close()
        except PWError as e:
            logger.warning(f"[Browser] Error closing context: {e}")
        finally:
            self._playwright.stop()


class PlaywrightBrowserLauncher:
    """Launches Chromium with ``launch_persistent_context`` over the session profile."""

    def __init__(self, navigation_timeout_s: Optional[float] = None):
        self.navigation_timeout_s = navigation_timeout_s

    def launch(
        self, user_data_dir: Path, headless: bool, viewport: Tuple[int, int]
    ) -> PlaywrightBrowserSession:
        playwright = sync_playwright().start()
        try:
            context = playwright.chromium.launch_persistent_context(
                user_data_dir=str(user_data_dir),
                headless=headless,
                viewport={"width": viewport[0], "height": viewport[1]},
            )
            if self.navigation_timeout_s:
                context.set_default_navigation_timeout(self.navigation_timeout_s * 1000)
            page = context.pages[0] if context.pages else context.new_page()
        except PWError as e:
            playwright.stop()
            raise BrowserError(f"Failed to launch browser context: {e}") from e

        logger.debug(f"[Browser] Launched persistent context at {user_data_dir} (headless={headless})")
        return PlaywrightBrowserSession(playwright, context, page)
