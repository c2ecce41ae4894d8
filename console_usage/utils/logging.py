"""
Stdlib logging for the ``console_usage`` package.

Library modules log through ``logging.getLogger(__name__)`` with ``[Tag]``
prefixed messages; configuring the ``console_usage`` logger routes all of
them. Every record carries the correlation ID of the scrape cycle that
emitted it, so stdlib lines can be matched with structlog events.
"""
import logging
import sys
from pathlib import Path
from typing import Optional

from pythonjsonlogger import jsonlogger

from console_usage.utils.observability import CORRELATION_ID, ObservabilityConfig

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(correlation_id)s | %(message)s"
JSON_FORMAT = "%(asctime)s %(name)s %(levelname)s %(correlation_id)s %(message)s"


class CorrelationIdFilter(logging.Filter):
    """Stamp the current cycle's correlation ID onto each record ('-' outside a cycle)."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = CORRELATION_ID.get() or "-"
        return True


def build_formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return jsonlogger.JsonFormatter(fmt=JSON_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S")
    return logging.Formatter(fmt=CONSOLE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")


def setup_logging(
    name: str = "console_usage",
    level: Optional[str] = None,
    log_format: Optional[str] = None,
    log_file: Optional[Path] = None
) -> logging.Logger:
    """
    Configure the package logger.

    Args:
        name: Logger name
        level: DEBUG, INFO, WARNING, ERROR. Defaults to the observability settings
        log_format: "console" or "json". Defaults to the observability settings
            (always json in production)
        log_file: Optional file path for log output

    Returns:
        Configured logger instance
    """
    if level is None or log_format is None:
        config = ObservabilityConfig()
        level = level or config.log_level
        log_format = log_format or config.log_format

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level.upper()))

    # Remove existing handlers to avoid duplicates
    for handler in logger.handlers:
        handler.close()
    logger.handlers = []

    formatter = build_formatter(log_format)
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    # Handler-level filter: logger filters skip records propagated from child loggers
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(CorrelationIdFilter())
        logger.addHandler(handler)

    return logger
