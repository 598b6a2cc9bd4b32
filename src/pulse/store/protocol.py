"""Shared store protocol.

The bus, the rollout engine and the identity detector share state across
processes through a key-value store with atomic single-key commands, sets,
hashes and a publish/subscribe channel. Each operation maps onto exactly one
store command, so concurrent writers never interleave inside an operation.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol


class SharedStore(Protocol):
    """Atomic key-value, set, hash and pub/sub operations.

    Values are strings; integers passed as members or values are stored in
    their decimal form. Implementations raise StoreError on failure.
    """

    async def get(self, key: str) -> str | None: ...

    async def set(
        self, key: str, value: str | int, *, ex: int | None = None, nx: bool = False
    ) -> bool:
        """Set key to value. With nx, only if absent; returns False if not written."""
        ...

    async def getset(self, key: str, value: str | int) -> str | None:
        """Set key to value and return the previous value in one command."""
        ...

    async def delete(self, *keys: str) -> int: ...

    async def exists(self, key: str) -> bool: ...

    async def incr(self, key: str) -> int: ...

    async def expire(self, key: str, seconds: int) -> bool: ...

    async def sadd(self, key: str, *members: str | int) -> int: ...

    async def srem(self, key: str, *members: str | int) -> int: ...

    async def smembers(self, key: str) -> set[str]: ...

    async def sismember(self, key: str, member: str | int) -> bool: ...

    async def scard(self, key: str) -> int: ...

    async def hset(self, key: str, field: str, value: str) -> int: ...

    async def hget(self, key: str, field: str) -> str | None: ...

    async def hgetall(self, key: str) -> dict[str, str]: ...

    async def hdel(self, key: str, *fields: str) -> int: ...

    async def hexists(self, key: str, field: str) -> bool: ...

    async def publish(self, channel: str, message: str) -> int:
        """Broadcast message; returns the number of receivers."""
        ...

    def subscribe(self, channel: str) -> AsyncIterator[str]:
        """Yield messages published on channel until the iterator is closed."""
        ...

    async def close(self) -> None: ...
