"""Unit tests for pulse.bus.event_bus module."""

import asyncio
from collections.abc import AsyncIterator, Callable
from unittest.mock import AsyncMock, patch

import pytest

from pulse.bus.event_bus import Envelope, EventBus
from pulse.config.models import BusConfig
from pulse.core.errors import (
    HandlerError,
    PersistenceError,
    SerializationError,
    StoreError,
    ValidationError,
)
from pulse.core.types import Result
from pulse.events.base import Event, EventType
from pulse.events.payloads import UserRegistrationData
from pulse.persistence.event_store import EventStore

FAST = BusConfig(worker_count=2, queue_size=10, listener_backoff_seconds=0.0)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


class Collector:
    """Handler recording every event it receives."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    async def __call__(self, event: Event) -> Result[None, HandlerError]:
        self.events.append(event)
        return Result.ok(None)


@pytest.fixture
async def bus(event_store: EventStore, shared_store) -> AsyncIterator[EventBus]:
    event_bus = EventBus(event_store, shared_store, FAST, origin="proc-a")
    yield event_bus
    await event_bus.stop()


class TestPublish:
    """Test publish() semantics."""

    async def test_registration_scenario(
        self, bus: EventBus, event_store: EventStore, shared_store
    ) -> None:
        """A registration is stored unprocessed, broadcast and handled locally."""
        collector = Collector()
        bus.subscribe(EventType.USER_REGISTERED, collector)

        result = await bus.publish(EventType.USER_REGISTERED, {"uid": 42, "username": "abc"})
        await bus.drain()

        assert result.is_ok
        event = result.value
        assert [e.id for e in collector.events] == [event.id]
        assert collector.events[0].data == {"uid": 42, "username": "abc"}

        stored = await event_store.get(event.id)
        assert stored is not None
        assert stored.processed is False

        channel, message = shared_store.published[0]
        assert channel == "events"
        envelope = Envelope.model_validate_json(message)
        assert envelope.origin == "proc-a"
        assert envelope.event.id == event.id
        await bus.stop()

    async def test_publish_user_registration(self, bus: EventBus) -> None:
        """publish_user_registration publishes uid and username."""
        result = await bus.publish_user_registration(42, "abc")

        assert result.value.type is EventType.USER_REGISTERED
        assert result.value.data == {"uid": 42, "username": "abc"}

    async def test_payload_model_accepted(self, bus: EventBus) -> None:
        """Payload models are flattened to event data."""
        result = await bus.publish(
            EventType.USER_REGISTERED, UserRegistrationData(uid=7, username="x")
        )
        assert result.value.data == {"uid": 7, "username": "x"}

    async def test_wire_name_accepted(self, bus: EventBus) -> None:
        """Event types may be given by wire name."""
        result = await bus.publish("user.deleted", {"uid": 1, "username": "a"})
        assert result.value.type is EventType.USER_DELETED

    async def test_unknown_type_rejected(
        self, bus: EventBus, event_store: EventStore, shared_store
    ) -> None:
        """Unknown event types are rejected before anything is stored."""
        result = await bus.publish("user.exploded", {"uid": 1})

        assert isinstance(result.error, ValidationError)
        assert await event_store.get_unprocessed() == []
        assert shared_store.published == []

    async def test_unserializable_payload_rejected(
        self, bus: EventBus, event_store: EventStore, shared_store
    ) -> None:
        """Payloads that cannot become event data are rejected up front."""
        collector = Collector()
        bus.subscribe(EventType.USER_REGISTERED, collector)

        result = await bus.publish(EventType.USER_REGISTERED, {"uid": object()})
        await bus.drain()

        assert isinstance(result.error, SerializationError)
        assert await event_store.get_unprocessed() == []
        assert shared_store.published == []
        assert collector.events == []

    async def test_persist_failure_stops_everything(self, shared_store) -> None:
        """If the append fails, nothing is broadcast or dispatched."""
        event_store = AsyncMock(spec=EventStore)
        event_store.append.side_effect = PersistenceError("disk full", operation="insert")
        bus = EventBus(event_store, shared_store, FAST)
        collector = Collector()
        bus.subscribe(EventType.USER_REGISTERED, collector)

        result = await bus.publish(EventType.USER_REGISTERED, {"uid": 1, "username": "a"})
        await bus.drain()

        assert isinstance(result.error, PersistenceError)
        assert shared_store.published == []
        assert collector.events == []

    async def test_broadcast_failure_is_not_fatal(
        self, bus: EventBus, event_store: EventStore, shared_store
    ) -> None:
        """A channel outage is logged; the event is stored and handled locally."""
        shared_store.failing_commands.add("publish")
        collector = Collector()
        bus.subscribe(EventType.USER_REGISTERED, collector)

        with patch("pulse.bus.event_bus.log") as mock_log:
            result = await bus.publish(EventType.USER_REGISTERED, {"uid": 1, "username": "a"})
            await bus.drain()

        assert result.is_ok
        assert await event_store.get(result.value.id) is not None
        assert len(collector.events) == 1
        assert mock_log.warning.call_args.args[0] == "bus.event.broadcast_failed"
        await bus.stop()

    async def test_failing_handler_does_not_fail_publish(self, bus: EventBus) -> None:
        """Handler failures never reach the publisher or siblings."""
        collector = Collector()

        async def broken(event: Event) -> Result[None, HandlerError]:
            raise RuntimeError("boom")

        bus.subscribe(EventType.USER_REGISTERED, broken)
        bus.subscribe(EventType.USER_REGISTERED, collector)

        result = await bus.publish(EventType.USER_REGISTERED, {"uid": 1, "username": "a"})
        await bus.drain()

        assert result.is_ok
        assert len(collector.events) == 1
        await bus.stop()

    async def test_unsubscribed_handler_not_called(self, bus: EventBus) -> None:
        """Unsubscribed handlers stop receiving events."""
        collector = Collector()
        bus.subscribe(EventType.USER_REGISTERED, collector)
        assert bus.unsubscribe(EventType.USER_REGISTERED, collector) is True

        await bus.publish(EventType.USER_REGISTERED, {"uid": 1, "username": "a"})
        await bus.drain()

        assert collector.events == []


class TestCrossProcessDelivery:
    """Test delivery through the shared channel."""

    async def test_other_bus_receives_and_own_echo_skipped(
        self, event_store: EventStore, shared_store
    ) -> None:
        """Each subscribed handler in each process sees the event exactly once."""
        bus_a = EventBus(event_store, shared_store, FAST, origin="proc-a")
        bus_b = EventBus(event_store, shared_store, FAST, origin="proc-b")
        seen_a, seen_b = Collector(), Collector()
        bus_a.subscribe(EventType.USER_REGISTERED, seen_a)
        bus_b.subscribe(EventType.USER_REGISTERED, seen_b)

        async with bus_a, bus_b:
            await wait_until(lambda: shared_store.subscriber_count("events") == 2)
            result = await bus_a.publish(
                EventType.USER_REGISTERED, {"uid": 42, "username": "abc"}
            )
            await wait_until(lambda: len(seen_b.events) == 1)
            await asyncio.sleep(0.05)
            await bus_a.drain()

        assert [e.id for e in seen_a.events] == [result.value.id]
        assert [e.id for e in seen_b.events] == [result.value.id]

    async def test_own_echo_dispatched_when_skipping_disabled(
        self, event_store: EventStore, shared_store
    ) -> None:
        """With skip_own_broadcasts off, the echo is dispatched again."""
        config = FAST.model_copy(update={"skip_own_broadcasts": False})
        bus = EventBus(event_store, shared_store, config, origin="proc-a")
        collector = Collector()
        bus.subscribe(EventType.USER_REGISTERED, collector)

        async with bus:
            await wait_until(lambda: shared_store.subscriber_count("events") == 1)
            await bus.publish(EventType.USER_REGISTERED, {"uid": 1, "username": "a"})
            await wait_until(lambda: len(collector.events) == 2)

    async def test_malformed_message_skipped(self, bus: EventBus, shared_store) -> None:
        """Undecodable messages are logged and the listener keeps going."""
        collector = Collector()
        bus.subscribe(EventType.USER_REGISTERED, collector)
        remote = Envelope(
            origin="proc-z",
            event=Event(type=EventType.USER_REGISTERED, data={"uid": 5, "username": "z"}),
        )

        async with bus:
            await wait_until(lambda: shared_store.subscriber_count("events") == 1)
            shared_store.inject("events", "not json")
            shared_store.inject("events", '{"origin": "x", "event": {"type": "nope"}}')
            shared_store.inject("events", remote.model_dump_json())
            await wait_until(lambda: len(collector.events) == 1)

        assert collector.events[0].id == remote.event.id

    async def test_listener_resubscribes_after_error(self, bus: EventBus, shared_store) -> None:
        """A receive error makes the listener back off and subscribe again."""
        collector = Collector()
        bus.subscribe(EventType.USER_REGISTERED, collector)
        remote = Envelope(
            origin="proc-z",
            event=Event(type=EventType.USER_REGISTERED, data={"uid": 5, "username": "z"}),
        )

        async with bus:
            await wait_until(lambda: shared_store.subscriber_count("events") == 1)
            shared_store.break_subscriptions("events", StoreError("connection lost"))
            await wait_until(lambda: shared_store.subscriptions.count("events") == 2)
            shared_store.inject("events", remote.model_dump_json())
            await wait_until(lambda: len(collector.events) == 1)

            assert bus.is_listening

        assert not bus.is_listening


class TestBookkeeping:
    """Test processed flags and replay."""

    async def test_mark_processed(self, bus: EventBus, event_store: EventStore) -> None:
        """mark_processed flips the stored flag; unknown ids return False."""
        event = (await bus.publish(EventType.USER_REGISTERED, {"uid": 1, "username": "a"})).value

        assert (await bus.mark_processed(event.id)).value is True
        assert (await bus.mark_processed("missing")).value is False
        stored = await event_store.get(event.id)
        assert stored is not None
        assert stored.processed is True

    async def test_get_unprocessed_by_type(self, bus: EventBus) -> None:
        """get_unprocessed filters by type and drops acknowledged events."""
        registered = (
            await bus.publish(EventType.USER_REGISTERED, {"uid": 1, "username": "a"})
        ).value
        deleted = (await bus.publish(EventType.USER_DELETED, {"uid": 1, "username": "a"})).value
        await bus.mark_processed(deleted.id)

        assert [e.id for e in (await bus.get_unprocessed()).value] == [registered.id]
        assert (await bus.get_unprocessed(EventType.USER_DELETED)).value == []

    async def test_store_failure_surfaces_as_err(self, shared_store) -> None:
        """Event store failures come back as Err results."""
        event_store = AsyncMock(spec=EventStore)
        event_store.get_unprocessed.side_effect = PersistenceError("gone")
        event_store.mark_processed.side_effect = PersistenceError("gone")
        bus = EventBus(event_store, shared_store, FAST)

        assert (await bus.get_unprocessed()).is_err
        assert (await bus.mark_processed("x")).is_err
        assert (await bus.replay_unprocessed()).is_err

    async def test_replay_redelivers_locally(self, bus: EventBus, shared_store) -> None:
        """replay_unprocessed hands unacknowledged events to local handlers again."""
        event = (await bus.publish(EventType.USER_REGISTERED, {"uid": 1, "username": "a"})).value
        collector = Collector()
        bus.subscribe(EventType.USER_REGISTERED, collector)
        published_before = len(shared_store.published)

        result = await bus.replay_unprocessed(EventType.USER_REGISTERED)
        await bus.drain()

        assert result.value == 1
        assert [e.id for e in collector.events] == [event.id]
        assert len(shared_store.published) == published_before
        await bus.stop()
