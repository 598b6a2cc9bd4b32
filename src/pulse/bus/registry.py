"""Handler registry for the event bus.

Maps each event type to the ordered list of handlers subscribed to it.
Registration takes an exclusive lock; dispatch takes a shared lock and works
on a snapshot, so handlers can be (un)registered from any thread while events
are being dispatched.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Iterator
from contextlib import contextmanager
import threading

from pulse.core.errors import HandlerError
from pulse.core.types import Result
from pulse.events.base import Event, EventType

Handler = Callable[[Event], Awaitable[Result[None, HandlerError]]]
"""Async event handler. Returns Result.err(HandlerError) on business failure."""


def handler_name(handler: Handler) -> str:
    """Return a readable name for a handler, used in logs and errors."""
    owner = getattr(handler, "__self__", None)
    name = getattr(handler, "__qualname__", None) or repr(handler)
    if owner is not None and "." not in name:
        return f"{type(owner).__name__}.{name}"
    return name


class ReadWriteLock:
    """Shared-read / exclusive-write lock.

    Writers wait for active readers to finish and block new readers while
    waiting, so a steady stream of dispatches cannot starve registration.
    """

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._writers_waiting = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._writers_waiting:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._writers_waiting += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._writers_waiting -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class HandlerRegistry:
    """Process-local subscriptions, event type -> handlers in registration order.

    Usage:
        registry = HandlerRegistry()
        registry.subscribe(EventType.USER_REGISTERED, on_registered)
        for handler in registry.handlers_for(EventType.USER_REGISTERED):
            ...
    """

    def __init__(self) -> None:
        self._handlers: dict[EventType, list[Handler]] = {}
        self._lock = ReadWriteLock()

    def subscribe(self, event_type: EventType, handler: Handler) -> None:
        """Append handler to the list for event_type.

        Subscribing the same handler twice means it runs twice per event.
        """
        with self._lock.write():
            self._handlers.setdefault(EventType(event_type), []).append(handler)

    def subscribe_many(self, event_types: Iterable[EventType], handler: Handler) -> None:
        """Subscribe one handler to several event types."""
        types = [EventType(t) for t in event_types]
        with self._lock.write():
            for event_type in types:
                self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: EventType, handler: Handler) -> bool:
        """Remove the first registration of handler for event_type.

        Returns:
            True if a registration was removed.
        """
        with self._lock.write():
            handlers = self._handlers.get(EventType(event_type))
            if not handlers:
                return False
            try:
                handlers.remove(handler)
            except ValueError:
                return False
            if not handlers:
                del self._handlers[EventType(event_type)]
            return True

    def handlers_for(self, event_type: EventType) -> tuple[Handler, ...]:
        """Snapshot of the handlers for event_type, in registration order."""
        with self._lock.read():
            return tuple(self._handlers.get(EventType(event_type), ()))

    def event_types(self) -> list[EventType]:
        """Event types with at least one handler."""
        with self._lock.read():
            return list(self._handlers)

    def clear(self) -> None:
        with self._lock.write():
            self._handlers.clear()

    def __len__(self) -> int:
        with self._lock.read():
            return sum(len(handlers) for handlers in self._handlers.values())
