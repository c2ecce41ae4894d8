"""
Single-worker cycle scheduler.

Tracks two deadlines: the fixed-interval tick and at most one pending
backoff retry. Arming a retry replaces any retry already pending. The
owner loop asks ``next_run`` what is due, sleeps until then, and calls
``consume`` before running the cycle, so cycles never overlap.
"""
import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)

TRIGGER_INTERVAL = "interval"
TRIGGER_RETRY = "retry"


@dataclass
class ScheduledRun:
    due_at: float
    trigger: str  # interval | retry


class CycleScheduler:
    """
    Example:
        scheduler = CycleScheduler(interval_s=300)
        run = scheduler.next_run()
        ...wait until run.due_at...
        scheduler.consume(run)
    """

    def __init__(self, interval_s: float, clock: Callable[[], float] = time.monotonic):
        self.interval_s = interval_s
        self._clock = clock
        # First tick is immediate
        self._next_tick = clock()
        self._pending_retry: Optional[float] = None

    @property
    def has_pending_retry(self) -> bool:
        return self._pending_retry is not None

    @property
    def pending_retry_at(self) -> Optional[float]:
        return self._pending_retry

    def arm_retry(self, delay_s: float):
        """Schedule a retry ``delay_s`` from now, replacing any pending one."""
        if self._pending_retry is not None:
            logger.debug("[Scheduler] Replacing pending retry")
        self._pending_retry = self._clock() + max(delay_s, 0.0)
        logger.info(f"[Scheduler] Retry armed in {delay_s:.1f}s")

    def cancel_retry(self):
        if self._pending_retry is not None:
            logger.debug("[Scheduler] Pending retry cancelled")
        self._pending_retry = None

    def next_run(self) -> ScheduledRun:
        """The earliest due run; a retry wins ties with the interval tick."""
        if self._pending_retry is not None and self._pending_retry <= self._next_tick:
            return ScheduledRun(due_at=self._pending_retry, trigger=TRIGGER_RETRY)
        return ScheduledRun(due_at=self._next_tick, trigger=TRIGGER_INTERVAL)

    def seconds_until(self, run: ScheduledRun) -> float:
        return max(run.due_at - self._clock(), 0.0)

    def consume(self, run: ScheduledRun):
        """Mark ``run`` as started and advance its deadline."""
        if run.trigger == TRIGGER_RETRY:
            self._pending_retry = None
            return

        now = self._clock()
        self._next_tick += self.interval_s
        if self._next_tick <= now:
            # Cycle overran one or more ticks; do not fire a burst to catch up
            self._next_tick = now + self.interval_s
