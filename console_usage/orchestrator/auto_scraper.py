"""
Auto-scraper loop.

Runs one scrape cycle immediately, then on a fixed interval. Each cycle:
maintenance gate, circuit check, scrape, persist, retention cleanup, sync.
Recoverable failures arm a backoff retry; fatal ones stop the loop with a
remediation message.
"""
import threading
import time
import uuid
from dataclasses import dataclass
from typing import Callable, Optional

from console_usage.config import OrchestratorSettings, ScraperSettings
from console_usage.errors import ErrorCategory, classify_error
from console_usage.exceptions import (
    FatalScrapeError,
    ScrapeError,
    StorageError,
    SyncError,
)
from console_usage.scraper.cache_cleanup import cleanup_cache, should_cleanup
from console_usage.scraper.models import UsageSnapshot
from console_usage.scraper.retry_strategy import RetryStrategy
from console_usage.scraper.usage_scraper import LOGIN_COMMAND, UsageScraper
from console_usage.orchestrator.scheduler import CycleScheduler
from console_usage.storage.versioned import VersionedStorage
from console_usage.sync.client import SyncClient
from console_usage.utils.observability import CORRELATION_ID, Logger, MetricsRegistry, get_metrics

logger = Logger(__name__)

OUTCOME_SUCCESS = "success"
OUTCOME_PARTIAL = "partial"
OUTCOME_FAILURE = "failure"
OUTCOME_SKIPPED = "skipped"


@dataclass
class CycleResult:
    """Outcome of one scrape cycle."""
    outcome: str
    snapshot: Optional[UsageSnapshot] = None
    category: Optional[ErrorCategory] = None
    error: Optional[str] = None
    retry_delay_ms: Optional[float] = None
    synced: bool = False


def remediation_for(category: ErrorCategory, session_dir) -> str:
    if category is ErrorCategory.CONTEXT_CORRUPTED:
        return f"Delete {session_dir}/ and run: {LOGIN_COMMAND}"
    return f"Run: {LOGIN_COMMAND}"


class AutoScraper:
    """
    Owns the retry strategy and scheduler for one long-lived scrape loop.

    Example:
        auto = AutoScraper(scraper, storage, sync_client)
        auto.run_forever(stop_event)
    """

    def __init__(
        self,
        scraper: UsageScraper,
        storage: VersionedStorage,
        sync_client: SyncClient,
        retry_strategy: Optional[RetryStrategy] = None,
        config: Optional[OrchestratorSettings] = None,
        scraper_config: Optional[ScraperSettings] = None,
        scheduler: Optional[CycleScheduler] = None,
        metrics: Optional[MetricsRegistry] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.scraper = scraper
        self.storage = storage
        self.sync_client = sync_client
        self.retry_strategy = retry_strategy or RetryStrategy()
        self.config = config or OrchestratorSettings()
        self.session_dir = (scraper_config or scraper.config).session_dir
        self.scheduler = scheduler or CycleScheduler(self.config.interval_s, clock=clock)
        self.metrics = metrics or get_metrics()
        self._clock = clock
        self.run_count = 0

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def maybe_cleanup_cache(self) -> bool:
        """Clean the profile cache every N runs or once it exceeds the size threshold."""
        due_by_count = self.run_count % self.config.cleanup_every_n_runs == 0
        try:
            due_by_size = should_cleanup(self.session_dir, self.config.cache_threshold_mb)
        except OSError as e:
            logger.log_warning("cache_size_check_failed", error=str(e))
            due_by_size = False

        if not (due_by_count or due_by_size):
            return False

        try:
            stats = cleanup_cache(self.session_dir)
        except OSError as e:
            logger.log_warning("cache_cleanup_failed", error=str(e))
            return False

        logger.log_event(
            "cache_cleanup_completed",
            run_count=self.run_count,
            trigger="count" if due_by_count else "size",
            **stats.to_dict(),
        )
        return True

    # ------------------------------------------------------------------
    # One cycle
    # ------------------------------------------------------------------

    def run_cycle(self) -> CycleResult:
        """
        Run a single scrape cycle.

        Raises:
            FatalScrapeError: session expired or profile corrupted; needs a human
        """
        self.run_count += 1
        CORRELATION_ID.set(uuid.uuid4().hex[:12])
        self.maybe_cleanup_cache()

        if self.retry_strategy.is_circuit_open():
            self.metrics.set_circuit_state(self.retry_strategy.circuit_state.value)
            self.metrics.scrape_cycles.labels(outcome=OUTCOME_SKIPPED).inc()
            logger.log_warning("scrape_skipped_circuit_open", run_count=self.run_count)
            return CycleResult(outcome=OUTCOME_SKIPPED)

        start = time.time()
        try:
            snapshot = self.scraper.scrape()
            self._persist(snapshot)
        except ScrapeError as e:
            return self._handle_failure(e.category, str(e))
        except StorageError as e:
            # Data could not be durably recorded: the cycle failed
            return self._handle_failure(ErrorCategory.UNKNOWN, str(e))
        finally:
            self.metrics.scrape_duration.observe(time.time() - start)

        return self._handle_success(snapshot)

    def _persist(self, snapshot: UsageSnapshot):
        try:
            path = self.storage.save_version(snapshot)
        except StorageError as e:
            self.metrics.storage_writes.labels(outcome="transient" if e.transient else "permanent").inc()
            logger.log_error("storage_write_failed", error=str(e), transient=e.transient)
            raise
        self.metrics.storage_writes.labels(outcome="success").inc()
        logger.log_event("snapshot_saved", path=str(path), is_partial=snapshot.is_partial)

    def _handle_success(self, snapshot: UsageSnapshot) -> CycleResult:
        self.retry_strategy.reset()
        self.retry_strategy.record_success()
        self.scheduler.cancel_retry()
        self.metrics.set_circuit_state(self.retry_strategy.circuit_state.value)

        try:
            self.storage.cleanup_old_versions()
        except OSError as e:
            logger.log_warning("retention_cleanup_failed", error=str(e))
        self.metrics.storage_versions.set(len(self.storage.list_versions()))

        synced = self._sync(snapshot)

        outcome = OUTCOME_PARTIAL if snapshot.is_partial else OUTCOME_SUCCESS
        self.metrics.scrape_cycles.labels(outcome=outcome).inc()
        self.metrics.sections_extracted.set(snapshot.sections_extracted)
        self.metrics.last_success_timestamp.set(time.time())
        logger.log_event(
            "scrape_cycle_completed",
            outcome=outcome,
            sections_extracted=snapshot.sections_extracted,
            synced=synced,
        )
        return CycleResult(outcome=outcome, snapshot=snapshot, synced=synced)

    def _sync(self, snapshot: UsageSnapshot) -> bool:
        """Sync failures are logged, never escalated."""
        try:
            response = self.sync_client.sync_with_retry(snapshot)
        except SyncError as e:
            self.metrics.sync_attempts.labels(category=e.category.value).inc()
            logger.log_warning("sync_failed", category=e.category.value, error=str(e))
            return False

        if not response.success:
            self.metrics.sync_attempts.labels(category="skipped").inc()
            logger.log_warning("sync_not_accepted", message=response.message)
            return False

        self.metrics.sync_attempts.labels(category="success").inc()
        logger.log_event("sync_completed", message=response.message)
        return True

    def _handle_failure(self, category: ErrorCategory, message: str) -> CycleResult:
        self.metrics.scrape_cycles.labels(outcome=OUTCOME_FAILURE).inc()

        if category.is_fatal:
            self.retry_strategy.record_failure()
            self.metrics.set_circuit_state(self.retry_strategy.circuit_state.value)
            remediation = remediation_for(category, self.session_dir)
            logger.log_error("scrape_fatal", category=category.value, error=message, remediation=remediation)
            raise FatalScrapeError(category, message, remediation)

        self.retry_strategy.record_attempt()
        self.retry_strategy.record_failure()
        self.metrics.set_circuit_state(self.retry_strategy.circuit_state.value)
        attempt = self.retry_strategy.attempt_count

        if self.retry_strategy.should_retry(category, attempt):
            delay_ms = self.retry_strategy.calculate_delay(attempt)
            self.scheduler.arm_retry(delay_ms / 1000.0)
            logger.log_warning(
                "scrape_failed_retry_scheduled",
                category=category.value,
                attempt=attempt,
                delay_ms=round(delay_ms),
                error=message,
            )
            return CycleResult(
                outcome=OUTCOME_FAILURE, category=category, error=message, retry_delay_ms=delay_ms
            )

        logger.log_warning(
            "scrape_failed_no_retry",
            category=category.value,
            attempt=attempt,
            circuit_state=self.retry_strategy.circuit_state.value,
            error=message,
        )
        return CycleResult(outcome=OUTCOME_FAILURE, category=category, error=message)

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def run_forever(self, stop_event: Optional[threading.Event] = None):
        """
        Run cycles until ``stop_event`` is set.

        Raises:
            FatalScrapeError: propagated from ``run_cycle``
        """
        stop_event = stop_event or threading.Event()
        logger.log_event("auto_scraper_started", interval_s=self.config.interval_s)

        while not stop_event.is_set():
            run = self.scheduler.next_run()
            if stop_event.wait(self.scheduler.seconds_until(run)):
                break
            self.scheduler.consume(run)
            try:
                self.run_cycle()
            except FatalScrapeError:
                raise
            except Exception as e:
                # Unexpected bug in a cycle; count it as recoverable UNKNOWN
                logger.log_error("scrape_cycle_crashed", error=str(e), exc_info=True)
                self._handle_failure(classify_error(str(e)), str(e))

        logger.log_event("auto_scraper_stopped", run_count=self.run_count)
