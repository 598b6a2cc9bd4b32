"""Shared fixtures: in-memory shared store, user directory, event store and clock."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Iterable
from datetime import UTC, datetime, timedelta

import pytest

from pulse.core.errors import StoreError
from pulse.persistence.event_store import EventStore
from pulse.persistence.users import UserRecord


class InMemorySharedStore:
    """SharedStore test double with Redis semantics for the commands Pulse uses.

    Commands listed in failing_commands raise StoreError, which lets tests
    simulate an unreachable store for one operation at a time.
    """

    def __init__(self) -> None:
        self.strings: dict[str, str] = {}
        self.sets: dict[str, set[str]] = {}
        self.hashes: dict[str, dict[str, str]] = {}
        self.expiries: dict[str, int] = {}
        self.published: list[tuple[str, str]] = []
        self.failing_commands: set[str] = set()
        self.subscriptions: list[str] = []
        self._subscribers: dict[str, list[asyncio.Queue[str | Exception]]] = {}
        self.closed = False

    def _check(self, command: str, key: str | None = None) -> None:
        if command in self.failing_commands:
            raise StoreError(f"Store command {command} failed", command=command, key=key)

    async def get(self, key: str) -> str | None:
        self._check("get", key)
        return self.strings.get(key)

    async def set(
        self, key: str, value: str | int, *, ex: int | None = None, nx: bool = False
    ) -> bool:
        self._check("set", key)
        if nx and key in self.strings:
            return False
        self.strings[key] = str(value)
        if ex is not None:
            self.expiries[key] = ex
        return True

    async def getset(self, key: str, value: str | int) -> str | None:
        self._check("getset", key)
        previous = self.strings.get(key)
        self.strings[key] = str(value)
        return previous

    async def delete(self, *keys: str) -> int:
        self._check("delete", keys[0] if keys else None)
        removed = 0
        for key in keys:
            for space in (self.strings, self.sets, self.hashes):
                if key in space:
                    del space[key]
                    removed += 1
        return removed

    async def exists(self, key: str) -> bool:
        self._check("exists", key)
        return key in self.strings or key in self.sets or key in self.hashes

    async def incr(self, key: str) -> int:
        self._check("incr", key)
        value = int(self.strings.get(key, "0")) + 1
        self.strings[key] = str(value)
        return value

    async def expire(self, key: str, seconds: int) -> bool:
        self._check("expire", key)
        if not await self.exists(key):
            return False
        self.expiries[key] = seconds
        return True

    async def sadd(self, key: str, *members: str | int) -> int:
        self._check("sadd", key)
        target = self.sets.setdefault(key, set())
        before = len(target)
        target.update(str(m) for m in members)
        return len(target) - before

    async def srem(self, key: str, *members: str | int) -> int:
        self._check("srem", key)
        target = self.sets.get(key, set())
        removed = 0
        for member in members:
            if str(member) in target:
                target.discard(str(member))
                removed += 1
        return removed

    async def smembers(self, key: str) -> set[str]:
        self._check("smembers", key)
        return set(self.sets.get(key, set()))

    async def sismember(self, key: str, member: str | int) -> bool:
        self._check("sismember", key)
        return str(member) in self.sets.get(key, set())

    async def scard(self, key: str) -> int:
        self._check("scard", key)
        return len(self.sets.get(key, set()))

    async def hset(self, key: str, field: str, value: str) -> int:
        self._check("hset", key)
        target = self.hashes.setdefault(key, {})
        is_new = field not in target
        target[field] = value
        return int(is_new)

    async def hget(self, key: str, field: str) -> str | None:
        self._check("hget", key)
        return self.hashes.get(key, {}).get(field)

    async def hgetall(self, key: str) -> dict[str, str]:
        self._check("hgetall", key)
        return dict(self.hashes.get(key, {}))

    async def hdel(self, key: str, *fields: str) -> int:
        self._check("hdel", key)
        target = self.hashes.get(key, {})
        return sum(1 for field in fields if target.pop(field, None) is not None)

    async def hexists(self, key: str, field: str) -> bool:
        self._check("hexists", key)
        return field in self.hashes.get(key, {})

    async def publish(self, channel: str, message: str) -> int:
        self._check("publish", channel)
        self.published.append((channel, message))
        queues = self._subscribers.get(channel, [])
        for queue in queues:
            queue.put_nowait(message)
        return len(queues)

    async def subscribe(self, channel: str) -> AsyncIterator[str]:
        self._check("subscribe", channel)
        queue: asyncio.Queue[str | Exception] = asyncio.Queue()
        self._subscribers.setdefault(channel, []).append(queue)
        self.subscriptions.append(channel)
        try:
            while True:
                message = await queue.get()
                if isinstance(message, Exception):
                    raise message
                yield message
        finally:
            self._subscribers[channel].remove(queue)

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, []))

    def inject(self, channel: str, message: str) -> None:
        """Deliver a raw message to current subscribers without recording it."""
        for queue in self._subscribers.get(channel, []):
            queue.put_nowait(message)

    def break_subscriptions(self, channel: str, error: Exception) -> None:
        """Make every current subscriber's receive raise error."""
        for queue in self._subscribers.get(channel, []):
            queue.put_nowait(error)

    async def close(self) -> None:
        self.closed = True


class InMemoryUserDirectory:
    """UserDirectory test double over a dict of records."""

    def __init__(self, records: Iterable[UserRecord] = (), admin_staff_level: int = 4) -> None:
        self.records: dict[int, UserRecord] = {r.uid: r for r in records}
        self.admin_staff_level = admin_staff_level

    def add(
        self,
        uid: int,
        username: str | None = None,
        *,
        email: str | None = None,
        staff_level: int | None = None,
    ) -> UserRecord:
        record = UserRecord(
            uid=uid,
            username=username or f"user{uid}",
            email=email,
            staff_level=staff_level,
        )
        self.records[uid] = record
        return record

    def add_many(self, uids: Iterable[int], *, staff_level: int | None = None) -> None:
        for uid in uids:
            self.add(uid, staff_level=staff_level)

    async def list_admin_ids(self) -> list[int]:
        return sorted(
            uid for uid, r in self.records.items() if r.staff_level == self.admin_staff_level
        )

    async def list_non_admin_ids(self) -> list[int]:
        return sorted(
            uid for uid, r in self.records.items() if r.staff_level != self.admin_staff_level
        )

    async def list_ids(self, offset: int, limit: int) -> list[int]:
        return sorted(self.records)[offset : offset + limit]

    async def count(self) -> int:
        return len(self.records)

    async def get(self, uid: int) -> UserRecord | None:
        return self.records.get(uid)

    async def get_many(self, uids: Iterable[int]) -> list[UserRecord]:
        return [self.records[uid] for uid in sorted(set(uids)) if uid in self.records]

    async def find_by_email(self, email: str, *, exclude_uid: int) -> list[UserRecord]:
        return [
            r for uid, r in sorted(self.records.items()) if r.email == email and uid != exclude_uid
        ]


class FakeClock:
    """Settable clock for time-driven components."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2025, 1, 1, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def shared_store() -> InMemorySharedStore:
    return InMemorySharedStore()


@pytest.fixture
def user_directory() -> InMemoryUserDirectory:
    return InMemoryUserDirectory()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def event_store(tmp_path) -> AsyncIterator[EventStore]:
    """EventStore on a temporary SQLite file."""
    store = EventStore(f"sqlite+aiosqlite:///{tmp_path / 'events.db'}")
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def make_store() -> type[InMemorySharedStore]:
    """Factory for extra independent stores."""
    return InMemorySharedStore
