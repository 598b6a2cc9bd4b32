"""Pulse event bus - publish, broadcast and dispatch of domain events."""

from pulse.bus.dispatcher import Dispatcher, handler_error
from pulse.bus.event_bus import Envelope, EventBus
from pulse.bus.registry import Handler, HandlerRegistry, ReadWriteLock, handler_name

__all__ = [
    "Dispatcher",
    "Envelope",
    "EventBus",
    "Handler",
    "HandlerRegistry",
    "ReadWriteLock",
    "handler_error",
    "handler_name",
]
