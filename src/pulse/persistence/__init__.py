"""Pulse persistence module - durable event store and user directory."""

from pulse.persistence.event_store import EventStore
from pulse.persistence.schema import events_table, metadata, users_table
from pulse.persistence.users import SqlUserDirectory, UserDirectory, UserRecord

__all__ = [
    "EventStore",
    "SqlUserDirectory",
    "UserDirectory",
    "UserRecord",
    "events_table",
    "metadata",
    "users_table",
]
