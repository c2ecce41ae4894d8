import json
import logging

import pytest
from unittest.mock import MagicMock, patch

from console_usage.config import ObservabilitySettings
from console_usage.utils import observability
from console_usage.utils.logging import setup_logging
from console_usage.utils.observability import (
    CORRELATION_ID,
    Logger,
    MetricsRegistry,
    ObservabilityConfig,
    get_metrics,
    initialize_observability,
)


class TestObservability:

    @pytest.fixture
    def mock_logger(self):
        return MagicMock()

    def test_logger_event_structure(self, mock_logger):
        """Log events include module and correlation context."""
        with patch("structlog.get_logger", return_value=mock_logger):
            logger = Logger("test_module")
            token = CORRELATION_ID.set("cycle-123")
            try:
                logger.log_event("snapshot_saved", is_partial=True)
            finally:
                CORRELATION_ID.reset(token)

            mock_logger.info.assert_called_once()
            call_args = mock_logger.info.call_args
            assert call_args[0][0] == "snapshot_saved"

            kwargs = call_args[1]
            assert kwargs["module"] == "test_module"
            assert kwargs["correlation_id"] == "cycle-123"
            assert kwargs["is_partial"] is True

    def test_logger_warning(self, mock_logger):
        with patch("structlog.get_logger", return_value=mock_logger):
            Logger("test_module").log_warning("sync_failed", category="SERVER")
            mock_logger.warning.assert_called_once()
            assert mock_logger.warning.call_args[1]["category"] == "SERVER"

    def test_logger_error_capture(self, mock_logger):
        """Error logs capture exception info."""
        with patch("structlog.get_logger", return_value=mock_logger):
            logger = Logger("test_module")
            try:
                raise ValueError("Oops")
            except ValueError as e:
                logger.log_error("scrape_cycle_crashed", exc_info=e)

            mock_logger.error.assert_called_once()
            kwargs = mock_logger.error.call_args[1]
            assert kwargs["exc_info"] is not None

    def test_metrics_registry_initialization(self):
        """Each registry owns its metrics, so instances never collide."""
        first = MetricsRegistry()
        second = MetricsRegistry()

        first.scrape_cycles.labels(outcome="success").inc()

        assert first.registry.get_sample_value("scrape_cycles_total", {"outcome": "success"}) == 1
        assert second.registry.get_sample_value("scrape_cycles_total", {"outcome": "success"}) is None

    @pytest.mark.parametrize("state,value", [("CLOSED", 0), ("HALF_OPEN", 1), ("OPEN", 2)])
    def test_circuit_state_gauge(self, state, value):
        registry = MetricsRegistry()
        registry.set_circuit_state(state)
        assert registry.registry.get_sample_value("circuit_state") == value

    def test_get_metrics_singleton(self):
        assert get_metrics() is get_metrics()

    def test_observability_config_defaults(self, monkeypatch):
        """Configuration defaults to development mode."""
        monkeypatch.delenv("ENVIRONMENT", raising=False)
        config = ObservabilityConfig()
        assert config.environment == "development"
        assert config.log_format == "console"

    def test_production_uses_json(self, monkeypatch):
        monkeypatch.setenv("ENVIRONMENT", "production")
        assert ObservabilityConfig().log_format == "json"

    def test_config_reads_settings(self):
        config = ObservabilityConfig(ObservabilitySettings(log_format="json", log_level="DEBUG", enable_metrics=False))
        assert config.log_format == "json"
        assert config.log_level == "DEBUG"
        assert config.enable_metrics is False

    def test_production_overrides_console_format(self):
        config = ObservabilityConfig(ObservabilitySettings(environment="production", log_format="console"))
        assert config.log_format == "json"

    def test_initialize_shares_metrics(self, monkeypatch):
        """Test the registry built at startup is the one get_metrics hands out."""
        monkeypatch.setattr(observability, "METRICS", None)
        metrics, config = initialize_observability(ObservabilityConfig(ObservabilitySettings(environment="development")))
        assert get_metrics() is metrics
        assert config.environment == "development"


class TestSetupLogging:

    def test_level_and_single_handler(self):
        logger = setup_logging("console_usage.test_setup", level="DEBUG")
        setup_logging("console_usage.test_setup", level="DEBUG")
        assert logger.level == logging.DEBUG
        assert len(logger.handlers) == 1

    def test_log_file(self, tmp_path):
        log_file = tmp_path / "logs" / "scraper.log"
        logger = setup_logging("console_usage.test_file", level="INFO", log_file=log_file)
        logger.info("[Scraper] hello")
        for handler in logger.handlers:
            handler.flush()
        assert "[Scraper] hello" in log_file.read_text()
        for handler in logger.handlers:
            handler.close()

    def test_json_format_with_correlation_id(self, tmp_path):
        log_file = tmp_path / "scraper.jsonl"
        logger = setup_logging("console_usage.test_json", level="INFO", log_format="json", log_file=log_file)
        token = CORRELATION_ID.set("cycle-42")
        try:
            logging.getLogger("console_usage.test_json.child").info("[Storage] saved")
        finally:
            CORRELATION_ID.reset(token)
        for handler in logger.handlers:
            handler.flush()

        record = json.loads(log_file.read_text().strip())
        assert record["message"] == "[Storage] saved"
        assert record["correlation_id"] == "cycle-42"
        for handler in logger.handlers:
            handler.close()

    def test_console_format_outside_cycle(self, tmp_path):
        log_file = tmp_path / "scraper.log"
        logger = setup_logging("console_usage.test_console", level="INFO", log_format="console", log_file=log_file)
        logger.info("[Scraper] idle")
        for handler in logger.handlers:
            handler.flush()
        assert "| - | [Scraper] idle" in log_file.read_text()
        for handler in logger.handlers:
            handler.close()
