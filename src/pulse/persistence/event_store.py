"""EventStore implementation for the event bus.

Provides async methods for appending events and for the processed/unprocessed
bookkeeping using SQLAlchemy Core with an async engine (aiosqlite by default).
"""

from datetime import UTC, datetime

from sqlalchemy import false, select, update
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from pulse.core.errors import PersistenceError
from pulse.events.base import Event, EventType
from pulse.persistence.schema import events_table, metadata


class EventStore:
    """Durable store for published events.

    The store is the only ground truth for events: the shared channel is a
    broadcast, so a process that was disconnected can only recover missed
    events by reading unprocessed rows from here.

    Usage:
        store = EventStore("sqlite+aiosqlite:///events.db")
        await store.initialize()

        await store.append(event)
        await store.mark_processed(event.id)
        pending = await store.get_unprocessed(EventType.USER_REGISTERED)

        await store.close()
    """

    def __init__(
        self,
        database_url: str | None = None,
        *,
        engine: AsyncEngine | None = None,
    ) -> None:
        """Initialize EventStore.

        Args:
            database_url: SQLAlchemy async database URL, e.g.
                         "sqlite+aiosqlite:///path/to/pulse.db".
            engine: An existing engine to share with other stores. The store
                    does not dispose an engine it did not create.
        """
        if database_url is None and engine is None:
            msg = "EventStore requires a database_url or an engine"
            raise ValueError(msg)
        self._database_url = database_url
        self._engine: AsyncEngine | None = engine
        self._owns_engine = engine is None

    async def initialize(self) -> None:
        """Create the engine (if needed) and the tables.

        This method is idempotent - calling it multiple times is safe.
        """
        if self._engine is None:
            assert self._database_url is not None
            self._engine = create_async_engine(self._database_url, echo=False)

        async with self._engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    def _require_engine(self, operation: str) -> AsyncEngine:
        if self._engine is None:
            raise PersistenceError(
                "EventStore not initialized. Call initialize() first.",
                operation=operation,
            )
        return self._engine

    async def append(self, event: Event) -> None:
        """Persist an event in its own transaction.

        Args:
            event: The event to append.

        Raises:
            PersistenceError: If the insert fails.
        """
        engine = self._require_engine("append")

        try:
            async with engine.begin() as conn:
                await conn.execute(events_table.insert().values(**event.to_db_dict()))
        except Exception as e:
            raise PersistenceError(
                f"Failed to append event: {e}",
                operation="insert",
                table="events",
                details={"event_id": event.id, "event_type": event.type.value},
            ) from e

    async def get(self, event_id: str) -> Event | None:
        """Fetch a single event by id, or None if unknown."""
        engine = self._require_engine("get")

        try:
            async with engine.begin() as conn:
                result = await conn.execute(
                    select(events_table).where(events_table.c.id == event_id)
                )
                row = result.mappings().first()
        except Exception as e:
            raise PersistenceError(
                f"Failed to get event: {e}",
                operation="select",
                table="events",
                details={"event_id": event_id},
            ) from e

        return Event.from_db_row(row) if row is not None else None

    async def mark_processed(self, event_id: str) -> bool:
        """Mark an event as processed.

        Only processed/processed_at are written; type and payload are never
        updated after insert.

        Args:
            event_id: Identifier of the event to acknowledge.

        Returns:
            True if a row was updated, False if the id is unknown.

        Raises:
            PersistenceError: If the update fails.
        """
        engine = self._require_engine("mark_processed")

        try:
            async with engine.begin() as conn:
                result = await conn.execute(
                    update(events_table)
                    .where(events_table.c.id == event_id)
                    .values(processed=True, processed_at=datetime.now(UTC))
                )
                return bool(result.rowcount)
        except Exception as e:
            raise PersistenceError(
                f"Failed to mark event processed: {e}",
                operation="update",
                table="events",
                details={"event_id": event_id},
            ) from e

    async def get_unprocessed(
        self, *event_types: EventType, limit: int | None = None
    ) -> list[Event]:
        """Get unprocessed events, oldest first, optionally filtered by type.

        Args:
            *event_types: Restrict to these types; all types if empty.
            limit: Maximum number of events to return.

        Raises:
            PersistenceError: If the query fails.
        """
        engine = self._require_engine("get_unprocessed")

        query = (
            select(events_table)
            .where(events_table.c.processed == false())
            .order_by(events_table.c.created_at, events_table.c.id)
        )
        if event_types:
            query = query.where(events_table.c.event_type.in_([t.value for t in event_types]))
        if limit is not None:
            query = query.limit(limit)

        try:
            async with engine.begin() as conn:
                result = await conn.execute(query)
                rows = result.mappings().all()
        except Exception as e:
            raise PersistenceError(
                f"Failed to get unprocessed events: {e}",
                operation="select",
                table="events",
                details={"event_types": [t.value for t in event_types]},
            ) from e

        return [Event.from_db_row(row) for row in rows]

    async def query_events(
        self,
        event_type: EventType | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Event]:
        """Query events newest first with optional type filter and paging.

        Raises:
            PersistenceError: If the query fails.
        """
        engine = self._require_engine("query_events")

        query = select(events_table).order_by(events_table.c.created_at.desc())
        if event_type is not None:
            query = query.where(events_table.c.event_type == event_type.value)
        query = query.limit(limit).offset(offset)

        try:
            async with engine.begin() as conn:
                result = await conn.execute(query)
                rows = result.mappings().all()
        except Exception as e:
            raise PersistenceError(
                f"Failed to query events: {e}",
                operation="select",
                table="events",
                details={
                    "event_type": event_type.value if event_type else None,
                    "limit": limit,
                    "offset": offset,
                },
            ) from e

        return [Event.from_db_row(row) for row in rows]

    async def close(self) -> None:
        """Dispose the engine if this store created it."""
        if self._engine is not None and self._owns_engine:
            await self._engine.dispose()
            self._engine = None
