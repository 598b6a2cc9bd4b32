"""Redis implementation of the shared store.

Built on redis.asyncio with decoded (str) responses. Every method is a single
Redis command; client errors are wrapped as StoreError with the command and
key attached.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable
from typing import Any

import redis.asyncio as redis
from redis.exceptions import RedisError

from pulse.config.models import RedisConfig
from pulse.core.errors import StoreError
from pulse.observability.logging import get_logger

log = get_logger(__name__)


class RedisSharedStore:
    """SharedStore backed by a Redis server.

    Usage:
        store = RedisSharedStore.from_config(config.redis)
        await store.ping()
        await store.sadd("ip:203.0.113.7:users", 42)
        await store.close()
    """

    def __init__(self, client: redis.Redis) -> None:
        """Initialize with a client created with decode_responses=True."""
        self._client = client

    @classmethod
    def from_config(cls, config: RedisConfig) -> "RedisSharedStore":
        client = redis.from_url(
            config.url,
            decode_responses=True,
            socket_connect_timeout=config.connect_timeout,
            socket_timeout=config.socket_timeout,
            retry_on_timeout=True,
            max_connections=config.max_connections,
        )
        return cls(client)

    async def _run[T](self, command: str, key: str | None, call: Awaitable[T]) -> T:
        try:
            return await call
        except RedisError as e:
            raise StoreError.from_exception(e, command=command, key=key) from e

    async def ping(self) -> bool:
        return bool(await self._run("ping", None, self._client.ping()))

    async def get(self, key: str) -> str | None:
        return await self._run("get", key, self._client.get(key))

    async def set(
        self, key: str, value: str | int, *, ex: int | None = None, nx: bool = False
    ) -> bool:
        result = await self._run("set", key, self._client.set(key, value, ex=ex, nx=nx))
        return bool(result)

    async def getset(self, key: str, value: str | int) -> str | None:
        # SET ... GET replaces the deprecated GETSET command
        return await self._run("set", key, self._client.set(key, value, get=True))

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        return int(await self._run("del", keys[0], self._client.delete(*keys)))

    async def exists(self, key: str) -> bool:
        return bool(await self._run("exists", key, self._client.exists(key)))

    async def incr(self, key: str) -> int:
        return int(await self._run("incr", key, self._client.incr(key)))

    async def expire(self, key: str, seconds: int) -> bool:
        return bool(await self._run("expire", key, self._client.expire(key, seconds)))

    async def sadd(self, key: str, *members: str | int) -> int:
        if not members:
            return 0
        return int(await self._run("sadd", key, self._client.sadd(key, *members)))

    async def srem(self, key: str, *members: str | int) -> int:
        if not members:
            return 0
        return int(await self._run("srem", key, self._client.srem(key, *members)))

    async def smembers(self, key: str) -> set[str]:
        return set(await self._run("smembers", key, self._client.smembers(key)))

    async def sismember(self, key: str, member: str | int) -> bool:
        return bool(await self._run("sismember", key, self._client.sismember(key, member)))

    async def scard(self, key: str) -> int:
        return int(await self._run("scard", key, self._client.scard(key)))

    async def hset(self, key: str, field: str, value: str) -> int:
        return int(await self._run("hset", key, self._client.hset(key, field, value)))

    async def hget(self, key: str, field: str) -> str | None:
        return await self._run("hget", key, self._client.hget(key, field))

    async def hgetall(self, key: str) -> dict[str, str]:
        return dict(await self._run("hgetall", key, self._client.hgetall(key)))

    async def hdel(self, key: str, *fields: str) -> int:
        if not fields:
            return 0
        return int(await self._run("hdel", key, self._client.hdel(key, *fields)))

    async def hexists(self, key: str, field: str) -> bool:
        return bool(await self._run("hexists", key, self._client.hexists(key, field)))

    async def publish(self, channel: str, message: str) -> int:
        return int(await self._run("publish", channel, self._client.publish(channel, message)))

    async def subscribe(self, channel: str) -> AsyncIterator[str]:
        """Yield data messages from channel.

        Subscription confirmations are skipped. Connection errors surface as
        StoreError so the caller can back off and subscribe again.
        """
        pubsub = self._client.pubsub()
        try:
            await pubsub.subscribe(channel)
            log.debug("store.channel.subscribed", channel=channel)
            async for message in pubsub.listen():
                if _is_data_message(message):
                    yield message["data"]
        except RedisError as e:
            raise StoreError.from_exception(e, command="subscribe", key=channel) from e
        finally:
            await pubsub.aclose()

    async def close(self) -> None:
        await self._client.aclose()


def _is_data_message(message: dict[str, Any] | None) -> bool:
    return message is not None and message.get("type") == "message"
