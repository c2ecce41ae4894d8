"""
Scrape-level retry policy: exponential backoff with jitter plus a circuit breaker.

States:
- CLOSED: Normal operation
- OPEN: Scrapes blocked until the open duration has elapsed
- HALF_OPEN: Probe scrapes allowed; successes close, any failure reopens

The OPEN -> HALF_OPEN transition is lazy: ``is_circuit_open`` performs it
when queried after the cool-down, so no background timer is needed.
"""
import logging
import random
import time
from enum import Enum
from typing import Callable, Optional

from console_usage.config import RetrySettings
from console_usage.errors import ErrorCategory

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


class CircuitBreaker:
    """
    Circuit breaker over consecutive scrape failures.

    Example:
        breaker = CircuitBreaker(failure_threshold=3, open_duration_ms=60_000)
        if not breaker.is_circuit_open():
            ...
            breaker.record_failure()
    """

    def __init__(
        self,
        failure_threshold: int = 3,
        success_threshold: int = 2,
        open_duration_ms: int = 60_000,
        clock: Callable[[], float] = time.time,
    ):
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.open_duration_ms = open_duration_ms
        self._clock = clock

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.circuit_opened_at: Optional[float] = None

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _open(self):
        self.state = CircuitState.OPEN
        self.circuit_opened_at = self._now_ms()

    def is_circuit_open(self) -> bool:
        """Check if circuit is open, moving OPEN -> HALF_OPEN once the cool-down elapsed."""
        if self.state != CircuitState.OPEN:
            return False

        if self.circuit_opened_at is not None:
            elapsed = self._now_ms() - self.circuit_opened_at
            if elapsed >= self.open_duration_ms:
                self.state = CircuitState.HALF_OPEN
                self.success_count = 0
                logger.info("[Circuit Breaker] Cool-down elapsed, entering HALF_OPEN")
                return False

        return True

    def record_success(self):
        if self.state == CircuitState.HALF_OPEN:
            self.success_count += 1
            if self.success_count >= self.success_threshold:
                self.state = CircuitState.CLOSED
                self.failure_count = 0
                self.success_count = 0
                self.circuit_opened_at = None
                logger.info("[Circuit Breaker] Probe succeeded, circuit CLOSED")
        elif self.state == CircuitState.CLOSED:
            self.failure_count = 0
        # A success while OPEN can only come from a caller that skipped the
        # gate; the breaker stays OPEN until queried past its cool-down.

    def record_failure(self):
        if self.state == CircuitState.HALF_OPEN:
            self._open()
            self.success_count = 0
            self.failure_count += 1
            logger.warning("[Circuit Breaker] Failure during HALF_OPEN, circuit re-OPENED")
        elif self.state == CircuitState.CLOSED:
            self.failure_count += 1
            if self.failure_count >= self.failure_threshold:
                self._open()
                logger.warning(
                    f"[Circuit Breaker] OPENED after {self.failure_count} consecutive failures. "
                    f"Blocking scrapes for {self.open_duration_ms / 1000:.0f}s"
                )
        else:
            self.failure_count += 1

    def get_status(self) -> dict:
        return {
            "state": self.state.value,
            "failures": self.failure_count,
            "successes": self.success_count,
            "opened_at_ms": self.circuit_opened_at,
        }


class RetryStrategy:
    """
    Owns the retry state of one long-lived scrape loop.

    There is exactly one instance per loop; it is passed explicitly to
    whatever needs to query or mutate circuit state.

    Example:
        strategy = RetryStrategy()
        category = classify_error(str(exc))
        strategy.record_attempt()
        if strategy.should_retry(category, strategy.attempt_count):
            delay_ms = strategy.calculate_delay(strategy.attempt_count)
    """

    def __init__(
        self,
        config: Optional[RetrySettings] = None,
        clock: Callable[[], float] = time.time,
        rng: Optional[random.Random] = None,
    ):
        self.config = config or RetrySettings()
        self._rng = rng or random.Random()
        self.attempt_count = 0
        self.breaker = CircuitBreaker(
            failure_threshold=self.config.failure_threshold,
            success_threshold=self.config.success_threshold,
            open_duration_ms=self.config.open_duration_ms,
            clock=clock,
        )

    @property
    def max_attempts(self) -> int:
        return self.config.max_attempts

    @property
    def circuit_state(self) -> CircuitState:
        return self.breaker.state

    def calculate_delay(self, attempt_number: int) -> float:
        """
        Exponential backoff with jitter, in milliseconds.

        delay = min(base * 2^(attempt-1) + uniform(0, jitter_s) * 1000, max)
        """
        exponential = self.config.base_delay_ms * (2 ** max(attempt_number - 1, 0))
        jitter_ms = self._rng.uniform(0, self.config.jitter_factor_s) * 1000
        return min(exponential + jitter_ms, self.config.max_delay_ms)

    def should_retry(self, category: ErrorCategory, attempt_number: int) -> bool:
        """Fatal categories never retry; recoverable ones retry until attempts or the circuit run out."""
        if category.is_fatal:
            return False

        if attempt_number >= self.config.max_attempts:
            return False

        if self.breaker.is_circuit_open():
            return False

        return category in (ErrorCategory.NETWORK_ERROR, ErrorCategory.UNKNOWN)

    def is_circuit_open(self) -> bool:
        return self.breaker.is_circuit_open()

    def record_attempt(self):
        self.attempt_count += 1

    def record_success(self):
        self.attempt_count = 0
        self.breaker.record_success()

    def record_failure(self):
        self.breaker.record_failure()

    def reset(self):
        """Reset attempt counter after a successful scrape."""
        self.attempt_count = 0
