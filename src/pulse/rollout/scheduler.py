"""Periodic background job.

Runs an async callback at a fixed interval on an asyncio task. The rollout
worker uses it to call RolloutEngine.process_experiments every
rollout.interval_seconds.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable

from pulse.core.types import Result
from pulse.observability.logging import get_logger

log = get_logger(__name__)


class PeriodicJob:
    """Background task calling a callback every interval seconds.

    The first run happens one interval after start(); call run_once() to run
    immediately. Errors are logged and the job keeps running.

    Usage:
        job = PeriodicJob(engine.process_experiments, interval=1800, name="rollout")
        await job.start()

        # Later, when done
        await job.stop()
    """

    def __init__(
        self,
        callback: Callable[[], Awaitable[object]],
        interval: float = 1800,
        *,
        name: str = "job",
    ) -> None:
        """Initialize periodic job.

        Args:
            callback: Async function to call on every tick.
            interval: Seconds between ticks (default 1800 = 30 min).
            name: Name used in log entries.
        """
        if interval <= 0:
            msg = "interval must be positive"
            raise ValueError(msg)
        self._callback = callback
        self._interval = interval
        self._name = name
        self._task: asyncio.Task[None] | None = None
        self._stop_event = asyncio.Event()
        self.runs = 0

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background task.

        This method is idempotent - calling it multiple times is safe.
        """
        if self._task is None or self._task.done():
            self._stop_event.clear()
            self._task = asyncio.create_task(self._run(), name=f"pulse-{self._name}")
            log.info("scheduler.job.started", job=self._name, interval=self._interval)

    async def stop(self) -> None:
        """Stop the background task.

        Waits for a tick in progress to complete before returning.
        """
        if self._task is not None and not self._task.done():
            self._stop_event.set()
            await self._task
            log.info("scheduler.job.stopped", job=self._name, runs=self.runs)
        self._task = None

    async def run_once(self) -> bool:
        """Run the callback now.

        Returns:
            False if the callback raised or returned an Err result.
        """
        self.runs += 1
        try:
            outcome = await self._callback()
        except Exception:
            log.exception("scheduler.job.failed", job=self._name)
            return False

        if isinstance(outcome, Result) and outcome.is_err:
            log.warning("scheduler.job.failed", job=self._name, error=str(outcome.error))
            return False

        log.debug("scheduler.job.completed", job=self._name)
        return True

    async def _run(self) -> None:
        while not self._stop_event.is_set():
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except TimeoutError:
                await self.run_once()
