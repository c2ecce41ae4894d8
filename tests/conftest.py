# tests/conftest.py
import pytest
from pathlib import Path
from typing import Dict, List, Optional, Union

from console_usage.config import (
    OrchestratorSettings,
    ReceiverSettings,
    RetrySettings,
    ScraperSettings,
    StorageSettings,
    SyncSettings,
)
from console_usage.exceptions import BrowserTimeoutError
from console_usage.scraper.browser import AuthState
from console_usage.scraper.models import UsageSnapshot, WeeklyLimits, WindowUsage
from console_usage.utils.observability import CORRELATION_ID

# Configure pytest
pytest_plugins = []

USAGE_URL = "https://console.anthropic.com/settings/usage"
LOGIN_URL = "https://console.anthropic.com/login?returnTo=%2Fsettings%2Fusage"

SECTION_TEXT = {
    "Current session": "Current session Resets in 2 hr 13 min 45% used",
    "All models": "Weekly limits All models Resets Thu 9:00 AM 12% used",
    "Sonnet only": "Sonnet only Resets Thu 9:00 AM 3% used",
}


# Markers for test categorization
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')")
    config.addinivalue_line("markers", "integration: marks tests as integration tests")


@pytest.fixture(autouse=True)
def _isolate_correlation_id():
    """Keep a correlation id set by one test from leaking into the next."""
    token = CORRELATION_ID.set(None)
    yield
    CORRELATION_ID.reset(token)


class FakeBrowserSession:
    """In-process stand-in for one browser page."""

    def __init__(self, launcher: "FakeBrowserLauncher", auth_state: AuthState):
        self.launcher = launcher
        self.auth_state = auth_state
        self.url = "about:blank"
        self.closed = False

    def navigate(self, url: str, timeout_s: float) -> None:
        self.launcher.navigations.append((url, timeout_s))
        if self.launcher.navigate_error is not None:
            raise self.launcher.navigate_error
        self.url = LOGIN_URL if self.auth_state is AuthState.LOGIN_REDIRECT else url

    def wait_for_auth_state(self, marker_text: str, login_url_fragment: str, timeout_s: float) -> AuthState:
        self.launcher.auth_waits.append(timeout_s)
        return self.auth_state

    @property
    def current_url(self) -> str:
        return self.launcher.current_url_override or self.url

    def extract_section(self, marker_text: str, timeout_s: float) -> str:
        outcome = self.launcher.sections.get(marker_text)
        if outcome is None:
            raise BrowserTimeoutError(f"Timeout {timeout_s * 1000:.0f}ms exceeded waiting for '{marker_text}'")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def page_content(self) -> str:
        return self.launcher.content

    def close(self) -> None:
        self.closed = True
        self.launcher.closed_count += 1


class FakeBrowserLauncher:
    """
    Scriptable browser capability.

    ``auth_states`` is consumed one per launch; the last entry repeats.
    ``sections`` maps marker text to page text, an exception to raise, or
    is missing (wait times out).
    """

    def __init__(
        self,
        auth_states: Optional[List[AuthState]] = None,
        sections: Optional[Dict[str, Union[str, Exception]]] = None,
        launch_error: Optional[Exception] = None,
        navigate_error: Optional[Exception] = None,
        current_url_override: Optional[str] = None,
        content: str = "",
    ):
        self.auth_states = list(auth_states or [AuthState.AUTHENTICATED])
        self.sections = dict(SECTION_TEXT if sections is None else sections)
        self.launch_error = launch_error
        self.navigate_error = navigate_error
        self.current_url_override = current_url_override
        self.content = content
        self.launches = []
        self.navigations = []
        self.auth_waits = []
        self.sessions = []
        self.closed_count = 0

    def launch(self, user_data_dir: Path, headless: bool, viewport) -> FakeBrowserSession:
        self.launches.append({"user_data_dir": user_data_dir, "headless": headless, "viewport": viewport})
        if self.launch_error is not None:
            raise self.launch_error
        state = self.auth_states.pop(0) if len(self.auth_states) > 1 else self.auth_states[0]
        session = FakeBrowserSession(self, state)
        self.sessions.append(session)
        return session


@pytest.fixture
def session_dir(tmp_path):
    """Non-empty persistent profile directory."""
    path = tmp_path / ".session"
    (path / "Default").mkdir(parents=True)
    (path / "Default" / "Cookies").write_bytes(b"cookie-db")
    return path


@pytest.fixture
def scraper_settings(session_dir):
    return ScraperSettings(session_dir=session_dir, usage_url=USAGE_URL)


@pytest.fixture
def fake_launcher():
    return FakeBrowserLauncher()


@pytest.fixture
def make_launcher():
    """Factory for scripted launchers."""
    return FakeBrowserLauncher


@pytest.fixture
def storage_settings(tmp_path):
    return StorageSettings(
        history_dir=tmp_path / "history",
        latest_file=tmp_path / "latest.json",
        max_versions=100,
        retention_days=7,
    )


@pytest.fixture
def retry_settings():
    return RetrySettings()


@pytest.fixture
def sync_settings():
    return SyncSettings(
        url="http://receiver.test/api/claude/console-usage",
        api_key="test-key",
        timeout_s=10,
        retry_delays_s=[10, 20, 40],
    )


@pytest.fixture
def orchestrator_settings():
    return OrchestratorSettings(interval_s=300, cleanup_every_n_runs=12, cache_threshold_mb=50)


@pytest.fixture
def receiver_settings():
    return ReceiverSettings(api_key="receiver-key")


@pytest.fixture
def sample_snapshot():
    """Complete snapshot with all three sections."""
    return UsageSnapshot(
        last_updated="2026-01-15T10:30:00.000Z",
        is_partial=False,
        current_session=WindowUsage(resets_in="2 hr 13 min", percentage_used=45),
        weekly_limits=WeeklyLimits(
            all_models=WindowUsage(resets_in="Thu 9:00 AM", percentage_used=12),
            sonnet_only=WindowUsage(resets_in="Thu 9:00 AM", percentage_used=3),
        ),
    )


@pytest.fixture
def partial_snapshot():
    """Snapshot missing the all-models section."""
    return UsageSnapshot(
        last_updated="2026-01-15T10:35:00.000Z",
        is_partial=True,
        current_session=WindowUsage(resets_in="2 hr 8 min", percentage_used=46),
        weekly_limits=WeeklyLimits(
            all_models=WindowUsage(resets_in="", percentage_used=0),
            sonnet_only=WindowUsage(resets_in="Thu 9:00 AM", percentage_used=3),
        ),
        extraction_errors={"allModels": "Timeout 5000ms exceeded waiting for 'All models'"},
    )


class FakeClock:
    """Manually advanced clock for time-dependent logic (seconds)."""

    def __init__(self, start: float = 1_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def sleeps():
    """Recording sleep replacement."""
    recorded = []

    def _sleep(seconds):
        recorded.append(seconds)

    _sleep.calls = recorded
    return _sleep


@pytest.fixture
def section_text():
    """Page text per section marker, as rendered on a healthy usage page."""
    return dict(SECTION_TEXT)
