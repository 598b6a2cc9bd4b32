"""Event bus: durable publish, cross-process broadcast, local dispatch.

publish() appends the event to the event store, broadcasts it on the shared
channel and dispatches it to this process's handlers. Every process runs a
listener on the channel and dispatches events published elsewhere to its own
handlers. Delivery is at-least-once: handlers must be idempotent, because
replay_unprocessed() and a redelivered broadcast can both hand them an event
they have already seen.

Each bus instance carries a random origin id in its broadcasts. The listener
drops envelopes stamped with its own origin, since publish() has already
dispatched those locally; other processes still receive them.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Iterable, Mapping
from types import TracebackType
from typing import Any
from uuid import uuid4

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from pulse.bus.dispatcher import Dispatcher
from pulse.bus.registry import Handler, HandlerRegistry
from pulse.config.models import BusConfig
from pulse.core.errors import (
    BroadcastError,
    PersistenceError,
    PulseError,
    StoreError,
    ValidationError,
)
from pulse.core.types import Result
from pulse.events.base import Event, EventType, to_event_data
from pulse.events.payloads import UserRegistrationData
from pulse.observability.logging import get_logger
from pulse.persistence.event_store import EventStore
from pulse.store.protocol import SharedStore

log = get_logger(__name__)

DEFAULT_CHANNEL = "events"


class Envelope(BaseModel, frozen=True):
    """Wire format of a broadcast event.

    Attributes:
        origin: Id of the bus instance that published the event.
        event: The published event.
    """

    origin: str
    event: Event


class EventBus:
    """Publishes events and routes them to subscribed handlers.

    Usage:
        bus = EventBus(event_store, shared_store, BusConfig())
        bus.subscribe(EventType.USER_REGISTERED, on_registered)

        async with bus:
            result = await bus.publish(
                EventType.USER_REGISTERED, {"uid": 42, "username": "abc"}
            )
    """

    def __init__(
        self,
        event_store: EventStore,
        store: SharedStore,
        config: BusConfig | None = None,
        *,
        channel: str = DEFAULT_CHANNEL,
        registry: HandlerRegistry | None = None,
        origin: str | None = None,
    ) -> None:
        self._event_store = event_store
        self._store = store
        self._config = config or BusConfig()
        self._channel = channel
        self._registry = registry or HandlerRegistry()
        self._dispatcher = Dispatcher(
            worker_count=self._config.worker_count,
            queue_size=self._config.queue_size,
        )
        self.origin = origin or uuid4().hex
        self._listener_task: asyncio.Task[None] | None = None

    @property
    def registry(self) -> HandlerRegistry:
        return self._registry

    @property
    def channel(self) -> str:
        return self._channel

    @property
    def is_listening(self) -> bool:
        return self._listener_task is not None and not self._listener_task.done()

    # -- subscriptions -------------------------------------------------------

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        self._registry.subscribe(event_type, handler)
        log.debug("bus.handler.subscribed", event_type=str(event_type))

    def subscribe_many(self, event_types: Iterable[EventType], handler: Handler) -> None:
        self._registry.subscribe_many(event_types, handler)

    def unsubscribe(self, event_type: EventType, handler: Handler) -> bool:
        return self._registry.unsubscribe(event_type, handler)

    # -- publishing ----------------------------------------------------------

    async def publish(
        self,
        event_type: EventType | str,
        payload: Mapping[str, Any] | BaseModel,
    ) -> Result[Event, PulseError]:
        """Persist, broadcast and locally dispatch a new event.

        The event store append is the commit point. If it fails nothing is
        broadcast or dispatched. A broadcast failure is logged only: the
        event is durable and can be recovered through replay_unprocessed().

        Args:
            event_type: Type of the event.
            payload: Event data as a mapping or a payload model.

        Returns:
            Result containing the persisted Event, or the ValidationError /
            PersistenceError that stopped it.
        """
        try:
            resolved_type = EventType(event_type)
        except ValueError:
            error = ValidationError(
                f"Unknown event type: {event_type}",
                field="event_type",
                value=event_type,
            )
            log.warning("bus.event.rejected", event_type=str(event_type), error=str(error))
            return Result.err(error)

        try:
            data = to_event_data(payload)
        except ValidationError as e:
            log.warning("bus.event.rejected", event_type=resolved_type.value, error=str(e))
            return Result.err(e)

        event = Event(type=resolved_type, data=data)

        try:
            await self._event_store.append(event)
        except PersistenceError as e:
            log.error(
                "bus.event.persist_failed",
                event_id=event.id,
                event_type=event.type.value,
                error=str(e),
            )
            return Result.err(e)

        await self._broadcast(event)
        dispatched = await self._dispatch(event)

        log.info(
            "bus.event.published",
            event_id=event.id,
            event_type=event.type.value,
            handlers=dispatched,
        )
        return Result.ok(event)

    async def publish_user_registration(
        self, uid: int, username: str
    ) -> Result[Event, PulseError]:
        """Publish user.registered for a freshly created account."""
        return await self.publish(
            EventType.USER_REGISTERED, UserRegistrationData(uid=uid, username=username)
        )

    async def _broadcast(self, event: Event) -> None:
        message = Envelope(origin=self.origin, event=event).model_dump_json()
        try:
            receivers = await self._store.publish(self._channel, message)
        except StoreError as e:
            error = BroadcastError(
                f"Failed to broadcast event: {e.message}",
                channel=self._channel,
                event_id=event.id,
            )
            log.warning(
                "bus.event.broadcast_failed",
                event_id=event.id,
                event_type=event.type.value,
                channel=self._channel,
                error=str(error),
            )
            return
        log.debug("bus.event.broadcast", event_id=event.id, receivers=receivers)

    async def _dispatch(self, event: Event) -> int:
        handlers = self._registry.handlers_for(event.type)
        if not handlers:
            return 0
        return await self._dispatcher.submit(event, handlers)

    # -- bookkeeping ---------------------------------------------------------

    async def mark_processed(self, event_id: str) -> Result[bool, PulseError]:
        """Acknowledge an event in the event store.

        Returns:
            Result containing True if the event exists and is now marked.
        """
        try:
            found = await self._event_store.mark_processed(event_id)
        except PersistenceError as e:
            log.error("bus.event.ack_failed", event_id=event_id, error=str(e))
            return Result.err(e)
        if not found:
            log.warning("bus.event.ack_unknown", event_id=event_id)
        return Result.ok(found)

    async def get_unprocessed(self, *event_types: EventType) -> Result[list[Event], PulseError]:
        """Unprocessed events of the given types (all types if none), oldest first."""
        try:
            events = await self._event_store.get_unprocessed(*event_types)
        except PersistenceError as e:
            log.error("bus.events.query_failed", error=str(e))
            return Result.err(e)
        return Result.ok(events)

    async def replay_unprocessed(self, *event_types: EventType) -> Result[int, PulseError]:
        """Dispatch unprocessed events to this process's handlers again.

        Never called automatically. Events are not broadcast again.

        Returns:
            Result containing the number of events dispatched.
        """
        result = await self.get_unprocessed(*event_types)
        if result.is_err:
            return Result.err(result.error)

        for event in result.value:
            await self._dispatch(event)

        log.info("bus.events.replayed", count=len(result.value))
        return Result.ok(len(result.value))

    # -- lifecycle -----------------------------------------------------------

    async def start(self) -> None:
        """Start the dispatch workers and the channel listener. Idempotent."""
        await self._dispatcher.start()
        if not self.is_listening:
            self._listener_task = asyncio.create_task(self._listen(), name="pulse-bus-listener")
            log.info("bus.listener.started", channel=self._channel, origin=self.origin)

    async def stop(self) -> None:
        """Stop listening, then let queued handler work finish."""
        if self._listener_task is not None:
            self._listener_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._listener_task
            self._listener_task = None
            log.info("bus.listener.stopped", channel=self._channel)
        await self._dispatcher.stop(drain=True)

    async def drain(self) -> None:
        """Wait until every dispatched handler has finished."""
        await self._dispatcher.drain()

    async def __aenter__(self) -> EventBus:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.stop()

    async def _listen(self) -> None:
        backoff = self._config.listener_backoff_seconds
        while True:
            try:
                async for raw in self._store.subscribe(self._channel):
                    await self._on_message(raw)
                log.warning("bus.listener.disconnected", channel=self._channel)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                log.warning(
                    "bus.listener.receive_failed",
                    channel=self._channel,
                    error=str(e),
                    backoff_seconds=backoff,
                )
            await asyncio.sleep(backoff)

    async def _on_message(self, raw: str) -> None:
        try:
            envelope = Envelope.model_validate_json(raw)
        except PydanticValidationError as e:
            log.warning(
                "bus.envelope.decode_failed",
                channel=self._channel,
                error=str(e),
                size=len(raw),
            )
            return

        event = envelope.event
        if envelope.origin == self.origin and self._config.skip_own_broadcasts:
            log.debug("bus.envelope.own_skipped", event_id=event.id)
            return

        dispatched = await self._dispatch(event)
        log.debug(
            "bus.envelope.received",
            event_id=event.id,
            event_type=event.type.value,
            origin=envelope.origin,
            handlers=dispatched,
        )
