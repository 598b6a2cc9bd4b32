"""Structured logging configuration for Pulse.

structlog renders every entry; the rendered line is handed to the stdlib
``logging`` handlers on the root logger (stderr, plus a daily rotating file
when enabled), so third-party libraries that log through stdlib end up in
the same places.

Modes:
- dev: colored console lines (colors only when stderr is a terminal)
- prod: one JSON object per line

Every entry carries an ISO 8601 UTC timestamp, its level, the logger name
and any context bound with bind_context(). Webhook URLs, connection
passwords and token-like keys are masked before rendering.

Standard log keys:
- event_id: Event identifier
- event_type: Event type (dot.notation)
- feature_key: Experiment feature key
- uid: Platform user identifier
- origin: Event bus instance identifier

Event names use dot.notation, domain.entity.verb_past_tense
(e.g. "bus.event.published", "rollout.users.assigned").

Usage:
    from pulse.observability import configure_logging, get_logger, bind_context

    configure_logging(LoggingConfig(mode=LogMode.PROD))
    log = get_logger(__name__)
    bind_context(origin=bus.origin)
    log.info("bus.listener.started", channel="events")
"""

from __future__ import annotations

from enum import StrEnum
import logging
from logging.handlers import TimedRotatingFileHandler
import os
from pathlib import Path
import sys
from typing import Any

from pydantic import BaseModel, Field
import structlog

from pulse.core.security import sanitize_for_logging

LOG_FILE_NAME = "pulse.log"
_RESERVED_KEYS = ("event", "level", "timestamp", "logger")
# Request lines from these include webhook URLs with their tokens.
_QUIET_LOGGERS = ("httpx", "httpcore")


class LogMode(StrEnum):
    """Logging output mode."""

    DEV = "dev"
    PROD = "prod"


class LoggingConfig(BaseModel, frozen=True):
    """Configuration for structured logging.

    Attributes:
        mode: Output mode (dev for human-readable, prod for JSON).
        log_level: Minimum log level to output.
        log_dir: Directory for log files. Defaults to ~/.pulse/logs/.
        max_log_days: Number of days to retain log files.
        enable_file_logging: Whether to write logs to files.
    """

    mode: LogMode = LogMode.DEV
    log_level: str = "INFO"
    log_dir: Path = Field(default_factory=lambda: Path.home() / ".pulse" / "logs")
    max_log_days: int = Field(default=7, ge=1, le=365)
    enable_file_logging: bool = False


_configured: bool = False
_current_config: LoggingConfig | None = None


def _level_number(level: str) -> int:
    return logging.getLevelNamesMapping().get(level.upper(), logging.INFO)


class _StderrHandler(logging.StreamHandler):  # type: ignore[type-arg]
    """StreamHandler bound to whatever sys.stderr is at emit time."""

    @property  # type: ignore[override]
    def stream(self) -> Any:
        return sys.stderr

    @stream.setter
    def stream(self, _value: Any) -> None:
        pass


def _build_handlers(config: LoggingConfig, level: int) -> list[logging.Handler]:
    """stderr handler, plus the rotating file handler when enabled."""
    handlers: list[logging.Handler] = [_StderrHandler()]

    if config.enable_file_logging:
        config.log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(
            TimedRotatingFileHandler(
                filename=str(config.log_dir / LOG_FILE_NAME),
                when="midnight",
                backupCount=config.max_log_days,
                encoding="utf-8",
                utc=True,
            )
        )

    # structlog has already rendered the line
    formatter = logging.Formatter("%(message)s")
    for handler in handlers:
        handler.setFormatter(formatter)
        handler.setLevel(level)
    return handlers


def _mask_sensitive_data(
    _logger: Any,
    _method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Mask secrets in every key except the ones structlog itself adds."""
    reserved = {key: event_dict.pop(key) for key in _RESERVED_KEYS if key in event_dict}
    masked = sanitize_for_logging(event_dict)
    masked.update(reserved)
    return masked


def _renderer(mode: LogMode) -> Any:
    if mode is LogMode.PROD:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())


def configure_logging(config: LoggingConfig | None = None) -> None:
    """Configure structlog and the root logger's handlers.

    Call once at process startup (the CLI does this before wiring the
    runtime). Reconfiguring replaces the previous handlers.

    Args:
        config: Logging configuration. If None, uses defaults with the mode
            taken from PULSE_LOG_MODE.
    """
    global _configured, _current_config

    if config is None:
        env_mode = os.environ.get("PULSE_LOG_MODE", "dev").lower()
        config = LoggingConfig(mode=LogMode.PROD if env_mode == "prod" else LogMode.DEV)

    level = _level_number(config.log_level)

    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()
    for handler in _build_handlers(config, level):
        root_logger.addHandler(handler)
    root_logger.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            _mask_sensitive_data,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(config.mode),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    _current_config = config
    _configured = True


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a bound logger, configuring defaults on first use.

    Example:
        log = get_logger(__name__)
        log.info("rollout.tick.completed", experiments=3)
    """
    if not _configured:
        configure_logging()

    return structlog.get_logger(name)


def bind_context(**kwargs: Any) -> None:
    """Bind context variables for cross-async propagation.

    Never bind webhook URLs or connection strings.
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    structlog.contextvars.clear_contextvars()


def get_current_config() -> LoggingConfig | None:
    return _current_config


def is_configured() -> bool:
    return _configured


def reset_logging() -> None:
    """Forget the active configuration (used by tests)."""
    global _configured, _current_config
    _configured = False
    _current_config = None
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()
