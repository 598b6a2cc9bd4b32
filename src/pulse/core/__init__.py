"""Pulse core module - shared types, errors, and security helpers."""

from pulse.core.errors import (
    BroadcastError,
    ConfigError,
    HandlerError,
    HandlerPanic,
    PersistenceError,
    PulseError,
    SerializationError,
    StoreError,
    ValidationError,
)
from pulse.core.security import mask_secret, mask_url_credentials, sanitize_for_logging
from pulse.core.types import ConfidenceScore, EventPayload, Result, UserId

__all__ = [
    # Types
    "Result",
    "EventPayload",
    "UserId",
    "ConfidenceScore",
    # Errors
    "PulseError",
    "ConfigError",
    "PersistenceError",
    "StoreError",
    "ValidationError",
    "SerializationError",
    "BroadcastError",
    "HandlerError",
    "HandlerPanic",
    # Security utilities
    "mask_secret",
    "mask_url_credentials",
    "sanitize_for_logging",
]
