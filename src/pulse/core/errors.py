"""Error hierarchy for Pulse.

This module defines the exception hierarchy for Pulse. These exceptions
are raised by infrastructure adapters (event store, shared store) and are
carried as error types in Result for expected failures crossing service
boundaries (publish, rollout, detection).

Exception Hierarchy:
    PulseError (base)
    ├── ConfigError         - Configuration loading and validation issues
    ├── PersistenceError    - Durable store (SQL) failures
    ├── StoreError          - Shared key-value store failures
    ├── ValidationError     - Schema and data validation failures
    │   └── SerializationError - Payload not convertible to event data
    ├── BroadcastError      - Shared channel publish failures
    └── HandlerError        - Subscriber business-logic failures
        └── HandlerPanic    - Unexpected exception raised inside a handler
"""

from typing import Any

from pulse.core.security import is_sensitive_field, is_sensitive_value


class PulseError(Exception):
    """Base exception for all Pulse errors.

    Attributes:
        message: Human-readable error description.
        details: Optional dict with additional context.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class ConfigError(PulseError):
    """Error from configuration operations.

    Attributes:
        config_key: The configuration key that caused the error.
        config_file: Path to the config file if applicable.
    """

    def __init__(
        self,
        message: str,
        *,
        config_key: str | None = None,
        config_file: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.config_key = config_key
        self.config_file = config_file


class PersistenceError(PulseError):
    """Error from durable storage operations.

    Raised when the event store or user directory cannot be read or written.
    Fatal to a publish: nothing is broadcast when the event was not stored.

    Attributes:
        operation: The operation that failed (e.g., "insert", "select").
        table: The database table involved if applicable.
    """

    def __init__(
        self,
        message: str,
        *,
        operation: str | None = None,
        table: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.operation = operation
        self.table = table


class StoreError(PulseError):
    """Error from the shared key-value store.

    Attributes:
        command: The store command that failed (e.g., "sadd", "hgetall").
        key: The key involved if applicable.
    """

    def __init__(
        self,
        message: str,
        *,
        command: str | None = None,
        key: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.command = command
        self.key = key

    @classmethod
    def from_exception(
        cls, exc: Exception, *, command: str, key: str | None = None
    ) -> "StoreError":
        """Create StoreError from a client exception.

        Args:
            exc: The original exception from the store client.
            command: The command being executed.
            key: The key involved, if any.

        Returns:
            A StoreError wrapping the original exception with __cause__ set.
        """
        error = cls(
            f"Store command {command} failed: {exc}",
            command=command,
            key=key,
            details={"original_exception": type(exc).__name__},
        )
        error.__cause__ = exc
        return error


class ValidationError(PulseError):
    """Input data failed schema or business-rule validation.

    Attributes:
        field: The field that failed validation.
        value: The offending value. Use safe_value, not value, in logs and
            messages: webhook URLs and tokens are redacted there.
    """

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.field = field
        self.value = value

    @property
    def safe_value(self) -> str:
        """Loggable rendering of value.

        Sensitive fields and secret-looking strings become "<REDACTED>",
        strings over 50 characters are cut to 20, anything else shows only
        its type.
        """
        value = self.value
        if value is None:
            return "<None>"
        if is_sensitive_field(self.field or "") or is_sensitive_value(value):
            return "<REDACTED>"
        if not isinstance(value, str):
            return f"<{type(value).__name__}>"
        return f"{value[:20]}...({len(value)} chars)" if len(value) > 50 else repr(value)

    def __str__(self) -> str:
        text = self.message
        if self.field:
            text += f" (field: {self.field}, value: {self.safe_value})"
        if self.details:
            text += f" (details: {self.details})"
        return text


class SerializationError(ValidationError):
    """Payload is not structurally convertible to canonical event data.

    Raised at publish time before anything is persisted.
    """


class BroadcastError(PulseError):
    """Error publishing an event on the shared channel.

    Never surfaced to the publisher: the event is already durable, so the
    failure is only logged.

    Attributes:
        channel: The channel name.
        event_id: The event that could not be broadcast.
    """

    def __init__(
        self,
        message: str,
        *,
        channel: str | None = None,
        event_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.channel = channel
        self.event_id = event_id


class HandlerError(PulseError):
    """Business-logic failure reported by an event handler.

    Handlers return Result.err(HandlerError(...)). The dispatcher logs it and
    moves on; it never reaches the publisher or sibling handlers.

    Attributes:
        handler: Qualified name of the handler.
        event_id: Identifier of the event being handled.
        event_type: Type of the event being handled.
    """

    def __init__(
        self,
        message: str,
        *,
        handler: str | None = None,
        event_id: str | None = None,
        event_type: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, details)
        self.handler = handler
        self.event_id = event_id
        self.event_type = event_type


class HandlerPanic(HandlerError):
    """An exception escaped a handler and was caught at the dispatch boundary."""

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        *,
        handler: str,
        event_id: str,
        event_type: str,
    ) -> "HandlerPanic":
        """Wrap an escaped exception, preserving its traceback as __cause__."""
        panic = cls(
            f"Handler {handler} raised {type(exc).__name__}: {exc}",
            handler=handler,
            event_id=event_id,
            event_type=event_type,
            details={"original_exception": type(exc).__name__},
        )
        panic.__cause__ = exc
        return panic
