# console_usage/utils/observability.py
import logging
from typing import Optional
import structlog
import contextvars
from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry

from console_usage.config import ObservabilitySettings

# Correlation ID for tracing one scrape cycle across components
CORRELATION_ID = contextvars.ContextVar('correlation_id', default=None)

CIRCUIT_STATE_VALUES = {"CLOSED": 0, "HALF_OPEN": 1, "OPEN": 2}


class ObservabilityConfig:
    """Configuration for observability stack."""

    def __init__(self, source: Optional[ObservabilitySettings] = None):
        source = source or ObservabilitySettings()
        self.environment = source.environment
        self.log_level = source.log_level
        self.enable_metrics = source.enable_metrics
        # Production always logs JSON
        self.log_format = 'json' if self.environment == 'production' else source.log_format


class MetricsRegistry:
    """Centralized metrics management."""

    def __init__(self):
        self.registry = CollectorRegistry()
        self._init_metrics()

    def _init_metrics(self):
        """Initialize all metrics with proper naming conventions."""

        # HISTOGRAMS (timing data)
        self.scrape_duration = Histogram(
            'scrape_duration_seconds',
            'Duration of one scrape cycle in seconds',
            buckets=(1, 5, 10, 30, 60, 120, 300),
            registry=self.registry
        )

        # COUNTERS (monotonic increases)
        self.scrape_cycles = Counter(
            'scrape_cycles_total',
            'Scrape cycles by outcome',
            labelnames=['outcome'],  # success, partial, failure, skipped
            registry=self.registry
        )

        self.sync_attempts = Counter(
            'sync_attempts_total',
            'Sync attempts by result category',
            labelnames=['category'],  # success, NETWORK, AUTH, ...
            registry=self.registry
        )

        self.storage_writes = Counter(
            'storage_writes_total',
            'Version writes by outcome',
            labelnames=['outcome'],  # success, transient, permanent
            registry=self.registry
        )

        # GAUGES (point-in-time snapshots)
        self.sections_extracted = Gauge(
            'sections_extracted',
            'Usage sections extracted in the last successful scrape',
            registry=self.registry
        )

        self.circuit_state = Gauge(
            'circuit_state',
            'Circuit breaker state (0=closed, 1=half-open, 2=open)',
            registry=self.registry
        )

        self.storage_versions = Gauge(
            'storage_versions',
            'Version files currently retained',
            registry=self.registry
        )

        self.last_success_timestamp = Gauge(
            'last_scrape_success_timestamp_unix',
            'Unix timestamp of last successful scrape',
            registry=self.registry
        )

    def set_circuit_state(self, state_name: str):
        self.circuit_state.set(CIRCUIT_STATE_VALUES.get(state_name, 0))


class StructlogConfig:
    """Structured logging configuration."""

    @staticmethod
    def configure(log_format: str = 'console', log_level: str = 'INFO'):
        """
        Configure structlog output.

        json: one JSON object per line (machine-readable)
        console: coloured key=value lines (human-readable)
        """

        shared_processors = [
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt='iso'),
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
        ]

        if log_format == 'json':
            processors = shared_processors + [
                structlog.processors.dict_tracebacks,
                structlog.processors.JSONRenderer(),
            ]
        else:
            processors = shared_processors + [
                structlog.dev.ConsoleRenderer(),
            ]

        structlog.configure(
            processors=processors,
            wrapper_class=structlog.make_filtering_bound_logger(
                logging.getLevelName(log_level)
            ),
            context_class=dict,
            logger_factory=structlog.PrintLoggerFactory(),
            cache_logger_on_first_use=True,
        )


class Logger:
    """Wrapper for structured logging with context awareness."""

    def __init__(self, module_name: str):
        self.logger = structlog.get_logger(module_name)
        self.module_name = module_name

    def with_correlation_id(self, correlation_id: str):
        """Bind correlation ID to all subsequent logs."""
        CORRELATION_ID.set(correlation_id)
        return self.logger.bind(correlation_id=correlation_id)

    def log_event(self, event: str, **kwargs):
        """Log structured event with automatic context."""
        corr_id = CORRELATION_ID.get()
        ctx = {'correlation_id': corr_id, 'module': self.module_name}
        ctx.update(kwargs)
        return self.logger.info(event, **ctx)

    def log_warning(self, event: str, **kwargs):
        """Log degraded-but-continuing event."""
        corr_id = CORRELATION_ID.get()
        ctx = {'correlation_id': corr_id, 'module': self.module_name}
        ctx.update(kwargs)
        return self.logger.warning(event, **ctx)

    def log_error(self, event: str, exc_info=None, **kwargs):
        """Log error with exception details."""
        corr_id = CORRELATION_ID.get()
        ctx = {'correlation_id': corr_id, 'module': self.module_name}
        ctx.update(kwargs)
        return self.logger.error(event, exc_info=exc_info, **ctx)


def initialize_observability(config: Optional[ObservabilityConfig] = None):
    """One-stop initialization for all observability components."""
    global METRICS
    config = config or ObservabilityConfig()
    StructlogConfig.configure(log_format=config.log_format, log_level=config.log_level)
    METRICS = MetricsRegistry()

    logger = structlog.get_logger(__name__)
    logger.info(
        'observability_initialized',
        environment=config.environment,
        log_format=config.log_format,
        metrics_enabled=config.enable_metrics,
    )

    return METRICS, config


# Global metrics instance, replaced by initialize_observability
METRICS = None


def get_metrics() -> MetricsRegistry:
    """Lazy-load metrics singleton."""
    global METRICS
    if METRICS is None:
        METRICS = MetricsRegistry()
    return METRICS
