"""Base event definition for the Pulse event bus.

Events are immutable records of something that happened on the platform.
They are persisted in the event store, broadcast on the shared channel and
dispatched to in-process handlers. Event types follow the
dot.notation.past_tense naming convention.
"""

from collections.abc import Mapping
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field, TypeAdapter
from pydantic_core import PydanticSerializationError

from pulse.core.errors import SerializationError
from pulse.core.types import EventPayload


class EventType(StrEnum):
    """Closed set of domain event types."""

    USER_REGISTERED = "user.registered"
    USER_LOGGED_IN = "user.logged_in"
    ALT_ACCOUNT_DETECTED = "user.alt_account_detected"
    USER_DELETED = "user.deleted"
    DISCORD_LINKED = "user.discord_linked"
    REDEEM_CODE_USED = "redeem.code_used"


_PAYLOAD_ADAPTER: TypeAdapter[dict[str, Any]] = TypeAdapter(dict[str, Any])


def to_event_data(payload: Mapping[str, Any] | BaseModel) -> EventPayload:
    """Convert a publisher's payload to the canonical event data mapping.

    Pydantic payload models are dumped in JSON mode with unset optional
    fields dropped; mappings must have string keys and JSON-compatible
    values (datetimes, UUIDs and enums are converted).

    Args:
        payload: A mapping or a payload model.

    Returns:
        A JSON-compatible dict preserving key order.

    Raises:
        SerializationError: If the payload cannot be represented as event data.
    """
    if isinstance(payload, BaseModel):
        try:
            return payload.model_dump(mode="json", exclude_none=True)
        except PydanticSerializationError as e:
            raise SerializationError(
                f"Payload model {type(payload).__name__} is not serializable: {e}",
                field="payload",
            ) from e

    if not isinstance(payload, Mapping):
        raise SerializationError(
            "Event payload must be a mapping or a payload model",
            field="payload",
            value=payload,
        )

    bad_keys = [key for key in payload if not isinstance(key, str)]
    if bad_keys:
        raise SerializationError(
            "Event payload keys must be strings",
            field="payload",
            details={"invalid_keys": [repr(k) for k in bad_keys[:5]]},
        )

    try:
        return _PAYLOAD_ADAPTER.dump_python(dict(payload), mode="json")
    except PydanticSerializationError as e:
        raise SerializationError(
            f"Event payload is not serializable: {e}",
            field="payload",
        ) from e


class Event(BaseModel, frozen=True):
    """A persisted domain event.

    Attributes:
        id: Unique event identifier (UUID), generated at publish time.
        type: Event type from the closed EventType enumeration.
        data: Canonical payload mapping.
        created_at: When the event was published (UTC).
        processed: Whether a consumer acknowledged the event.
        processed_at: When it was acknowledged.

    Only the event store changes processed/processed_at, by writing the row;
    the in-memory instance is never mutated.

    Example:
        event = Event(
            type=EventType.USER_REGISTERED,
            data={"uid": 42, "username": "abc"},
        )
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    type: EventType
    data: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    processed: bool = False
    processed_at: datetime | None = None

    def to_db_dict(self) -> dict[str, Any]:
        """Convert event to a dictionary matching the events table columns."""
        return {
            "id": self.id,
            "event_type": self.type.value,
            "payload": self.data,
            "created_at": self.created_at,
            "processed": self.processed,
            "processed_at": self.processed_at,
        }

    @classmethod
    def from_db_row(cls, row: Mapping[str, Any]) -> "Event":
        """Create an event from an events table row."""
        return cls(
            id=row["id"],
            type=row["event_type"],
            data=row["payload"],
            created_at=_as_utc(row["created_at"]),
            processed=bool(row["processed"]),
            processed_at=_as_utc(row["processed_at"]),
        )


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite drops tzinfo on round trip
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
