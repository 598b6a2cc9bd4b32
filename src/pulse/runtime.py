"""Component wiring.

Builds the event store, user directory, shared store, event bus, rollout
engine, identity detector and (optionally) the Discord notifier from a
PulseConfig, and tears them down in reverse order.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
import random

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from pulse.bus.event_bus import EventBus
from pulse.config.loader import resolve_database_url
from pulse.config.models import PulseConfig
from pulse.identity.detector import IdentityCorrelationDetector
from pulse.notifiers.discord import DiscordNotifier
from pulse.observability.logging import get_logger
from pulse.persistence.event_store import EventStore
from pulse.persistence.users import SqlUserDirectory
from pulse.rollout.engine import RolloutEngine
from pulse.rollout.scheduler import PeriodicJob
from pulse.store.protocol import SharedStore
from pulse.store.redis_store import RedisSharedStore

log = get_logger(__name__)


@dataclass
class Runtime:
    """Every long-lived component of a Pulse process."""

    config: PulseConfig
    engine: AsyncEngine
    event_store: EventStore
    users: SqlUserDirectory
    store: SharedStore
    bus: EventBus
    rollout: RolloutEngine
    detector: IdentityCorrelationDetector
    http_client: httpx.AsyncClient | None = None
    notifier: DiscordNotifier | None = None

    def rollout_job(self) -> PeriodicJob:
        """Periodic job advancing every experiment."""
        return PeriodicJob(
            self.rollout.process_experiments,
            interval=self.config.rollout.interval_seconds,
            name="rollout",
        )

    async def close(self) -> None:
        await self.bus.stop()
        if self.http_client is not None:
            await self.http_client.aclose()
        await self.store.close()
        await self.event_store.close()
        await self.users.close()
        await self.engine.dispose()
        log.info("runtime.closed")


async def build_runtime(
    config: PulseConfig,
    *,
    store: SharedStore | None = None,
    notify: bool | None = None,
) -> Runtime:
    """Create and initialize all components.

    Args:
        config: Loaded configuration.
        store: Shared store to use instead of connecting to config.redis.
        notify: Register the Discord notifier; defaults to discord.enabled.
    """
    engine = create_async_engine(resolve_database_url(config), echo=config.database.echo)
    event_store = EventStore(engine=engine)
    users = SqlUserDirectory(engine=engine, admin_staff_level=config.rollout.admin_staff_level)
    await event_store.initialize()
    await users.initialize()

    shared = store or RedisSharedStore.from_config(config.redis)
    bus = EventBus(event_store, shared, config.bus, channel=config.redis.channel)
    rollout = RolloutEngine(
        shared,
        users,
        config.rollout,
        rng=random.Random(config.rollout.random_seed),
    )
    detector = IdentityCorrelationDetector(shared, users, bus, config.identity)

    runtime = Runtime(
        config=config,
        engine=engine,
        event_store=event_store,
        users=users,
        store=shared,
        bus=bus,
        rollout=rollout,
        detector=detector,
    )

    if config.discord.enabled if notify is None else notify:
        runtime.http_client = httpx.AsyncClient(timeout=config.discord.timeout_seconds)
        runtime.notifier = DiscordNotifier(runtime.http_client, config.discord)
        runtime.notifier.register(bus)

    log.info("runtime.started", origin=bus.origin, notify=runtime.notifier is not None)
    return runtime


@asynccontextmanager
async def open_runtime(
    config: PulseConfig,
    *,
    store: SharedStore | None = None,
    notify: bool | None = None,
) -> AsyncIterator[Runtime]:
    """Build a runtime and close it on exit.

    Usage:
        async with open_runtime(load_config()) as runtime:
            await runtime.rollout.process_experiments()
    """
    runtime = await build_runtime(config, store=store, notify=notify)
    try:
        yield runtime
    finally:
        await runtime.close()
