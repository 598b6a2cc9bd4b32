"""Unit tests for pulse.observability.logging module."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any
from unittest.mock import patch

from pydantic import ValidationError
import pytest

from pulse.observability.logging import (
    LoggingConfig,
    LogMode,
    bind_context,
    clear_context,
    configure_logging,
    get_current_config,
    get_logger,
    is_configured,
    reset_logging,
    unbind_context,
)


@pytest.fixture(autouse=True)
def reset_logging_state() -> Any:
    """Reset logging state before and after each test."""
    reset_logging()
    yield
    reset_logging()


def _json_lines(err: str) -> list[dict[str, Any]]:
    return [json.loads(line) for line in err.strip().splitlines() if line.startswith("{")]


class TestLoggingConfig:
    """Test LoggingConfig Pydantic model."""

    def test_default_config(self) -> None:
        """LoggingConfig has sensible defaults."""
        config = LoggingConfig()
        assert config.mode == LogMode.DEV
        assert config.log_level == "INFO"
        assert config.max_log_days == 7
        assert config.enable_file_logging is False
        assert config.log_dir == Path.home() / ".pulse" / "logs"

    def test_config_is_frozen(self) -> None:
        """LoggingConfig is immutable."""
        config = LoggingConfig()
        with pytest.raises(ValidationError):
            config.log_level = "DEBUG"  # type: ignore[misc]

    def test_max_log_days_bounds(self) -> None:
        """max_log_days must be between 1 and 365."""
        with pytest.raises(ValidationError):
            LoggingConfig(max_log_days=0)
        with pytest.raises(ValidationError):
            LoggingConfig(max_log_days=400)


class TestConfigureLogging:
    """Test configure_logging and get_logger."""

    def test_configure_sets_state(self) -> None:
        """configure_logging records the active configuration."""
        config = LoggingConfig(mode=LogMode.PROD)
        configure_logging(config)

        assert is_configured()
        assert get_current_config() == config

    def test_configure_uses_env_mode(self) -> None:
        """Without a config, PULSE_LOG_MODE selects the mode."""
        with patch.dict("os.environ", {"PULSE_LOG_MODE": "prod"}):
            configure_logging()

        current = get_current_config()
        assert current is not None
        assert current.mode == LogMode.PROD

    def test_get_logger_auto_configures(self) -> None:
        """get_logger configures logging on first use."""
        assert not is_configured()
        get_logger(__name__)
        assert is_configured()


class TestProdOutput:
    """Test JSON output in production mode."""

    def test_prod_mode_json_output(self, capsys: Any) -> None:
        """PROD mode renders one JSON object per entry."""
        configure_logging(LoggingConfig(mode=LogMode.PROD))
        get_logger("test").info("bus.event.published", event_id="abc")

        entries = _json_lines(capsys.readouterr().err)
        assert entries[-1]["event"] == "bus.event.published"
        assert entries[-1]["event_id"] == "abc"
        assert entries[-1]["level"] == "info"
        assert "timestamp" in entries[-1]

    def test_level_filtering(self, capsys: Any) -> None:
        """Entries below the configured level are dropped."""
        configure_logging(LoggingConfig(mode=LogMode.PROD, log_level="WARNING"))
        log = get_logger("test")
        log.info("hidden.entry")
        log.warning("shown.entry")

        err = capsys.readouterr().err
        assert "hidden.entry" not in err
        assert "shown.entry" in err

    def test_sensitive_values_masked(self, capsys: Any) -> None:
        """Webhook URLs, tokens and connection passwords never reach the output."""
        configure_logging(LoggingConfig(mode=LogMode.PROD))
        get_logger("test").info(
            "config.loaded",
            target="https://discord.com/api/webhooks/1/supersecret",
            token="abc",
            url="redis://:hunter2@cache:6379/0",
        )

        err = capsys.readouterr().err
        assert "supersecret" not in err
        assert "hunter2" not in err
        entry = _json_lines(err)[-1]
        assert entry["token"] == "<REDACTED>"
        assert entry["event"] == "config.loaded"


class TestContext:
    """Test context binding."""

    def test_bind_and_unbind(self, capsys: Any) -> None:
        """Bound context appears in entries until unbound."""
        configure_logging(LoggingConfig(mode=LogMode.PROD))
        log = get_logger("test")

        bind_context(origin="proc-1", uid=42)
        log.info("first.entry")
        unbind_context("uid")
        log.info("second.entry")
        clear_context()
        log.info("third.entry")

        first, second, third = _json_lines(capsys.readouterr().err)[-3:]
        assert first["origin"] == "proc-1"
        assert first["uid"] == 42
        assert "uid" not in second
        assert second["origin"] == "proc-1"
        assert "origin" not in third


class TestFileLogging:
    """Test rotating file output."""

    def test_log_file_contains_message(self, tmp_path: Path) -> None:
        """Entries are written to pulse.log when file logging is enabled."""
        configure_logging(
            LoggingConfig(mode=LogMode.PROD, log_dir=tmp_path, enable_file_logging=True)
        )
        get_logger("test").info("file.entry.written")

        assert "file.entry.written" in (tmp_path / "pulse.log").read_text()

    def test_no_file_when_disabled(self, tmp_path: Path) -> None:
        """No file is created when file logging is disabled."""
        configure_logging(LoggingConfig(log_dir=tmp_path, enable_file_logging=False))
        get_logger("test").info("no.file")

        assert not (tmp_path / "pulse.log").exists()


class TestStdlibIntegration:
    """Test routing through the root logger."""

    def test_logger_name_included(self, capsys: Any) -> None:
        """Entries carry the name passed to get_logger."""
        configure_logging(LoggingConfig(mode=LogMode.PROD))
        get_logger("pulse.bus.event_bus").info("bus.listener.started")

        assert _json_lines(capsys.readouterr().err)[-1]["logger"] == "pulse.bus.event_bus"

    def test_reconfigure_replaces_handlers(self, tmp_path: Path) -> None:
        """Configuring twice leaves one stderr handler on the root logger."""
        configure_logging(LoggingConfig(log_dir=tmp_path, enable_file_logging=True))
        configure_logging(LoggingConfig())

        assert len(logging.getLogger().handlers) == 1

    def test_http_client_loggers_quieted(self) -> None:
        """httpx request lines, which contain webhook URLs, are not logged at INFO."""
        configure_logging(LoggingConfig(log_level="DEBUG"))

        assert logging.getLogger("httpx").level == logging.WARNING
