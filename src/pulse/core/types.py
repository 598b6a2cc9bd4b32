"""Core types for Pulse - Result type and type aliases.

This module provides:
- Result[T, E]: A generic type for handling expected failures without exceptions
- Type aliases for common domain types
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, cast


@dataclass(frozen=True, slots=True)
class Result[T, E]:
    """A type that represents either success (Ok) or failure (Err).

    Result is used for expected failures (store outages, handler failures,
    invalid payloads) crossing service boundaries. Exceptions are reserved
    for infrastructure adapters and programming errors.

    Usage:
        result = await bus.publish(EventType.USER_REGISTERED, {"uid": 42})
        if result.is_ok:
            event = result.value
        else:
            log.warning("publish.failed", error=str(result.error))
    """

    _value: T | None
    _error: E | None
    _is_ok: bool

    @classmethod
    def ok(cls, value: T) -> "Result[T, E]":
        """Create a successful Result containing the given value."""
        return cls(_value=value, _error=None, _is_ok=True)

    @classmethod
    def err(cls, error: E) -> "Result[T, E]":
        """Create a failed Result containing the given error."""
        return cls(_value=None, _error=error, _is_ok=False)

    @property
    def is_ok(self) -> bool:
        """Return True if this Result is Ok (success)."""
        return self._is_ok

    @property
    def is_err(self) -> bool:
        """Return True if this Result is Err (failure)."""
        return not self._is_ok

    def __repr__(self) -> str:
        if self._is_ok:
            return f"Ok({self._value!r})"
        return f"Err({self._error!r})"

    @property
    def value(self) -> T:
        """Return the Ok value.

        Raises:
            ValueError: If this Result is Err.
        """
        if not self._is_ok:
            msg = "Cannot access value on Err result"
            raise ValueError(msg)
        return cast(T, self._value)

    @property
    def error(self) -> E:
        """Return the Err value.

        Raises:
            ValueError: If this Result is Ok.
        """
        if self._is_ok:
            msg = "Cannot access error on Ok result"
            raise ValueError(msg)
        return cast(E, self._error)

    def unwrap(self) -> T:
        """Return the Ok value or raise ValueError if Err."""
        if self._is_ok:
            return cast(T, self._value)
        raise ValueError(str(self._error))

    def unwrap_or(self, default: T) -> T:
        """Return the Ok value or the provided default if Err."""
        if self._is_ok:
            return cast(T, self._value)
        return default

    def map[U](self, fn: Callable[[T], U]) -> "Result[U, E]":
        """Transform the Ok value using the given function.

        Err results are returned unchanged.
        """
        if self._is_ok:
            return Result.ok(fn(cast(T, self._value)))
        return Result.err(cast(E, self._error))


# Type aliases for common domain types
EventPayload = dict[str, Any]
"""Type alias for event payload data - JSON-compatible mapping."""

UserId = int
"""Type alias for platform user identifiers (the users.uid column)."""

ConfidenceScore = float
"""Type alias for identity match confidence - float between 0.0 and 1.0."""
