"""Pulse shared store - cross-process state and broadcast channel."""

from pulse.store import keys
from pulse.store.protocol import SharedStore
from pulse.store.redis_store import RedisSharedStore

__all__ = ["RedisSharedStore", "SharedStore", "keys"]
