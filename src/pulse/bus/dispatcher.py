"""Bounded worker pool running event handlers.

Every (event, handler) pair is queued as its own unit of work and picked up
by one of N worker tasks, so handlers of the same event run concurrently and
a slow or failing handler never holds up its siblings. The queue is bounded:
when it is full, submit() waits, pushing back on publishers.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable

from pulse.bus.registry import Handler, handler_name
from pulse.core.errors import HandlerError, HandlerPanic
from pulse.core.types import Result
from pulse.events.base import Event
from pulse.observability.logging import get_logger

log = get_logger(__name__)


class Dispatcher:
    """Runs handlers on a fixed pool of asyncio worker tasks.

    Workers are started lazily on the first submit, or explicitly with start().

    Usage:
        dispatcher = Dispatcher(worker_count=8, queue_size=1000)
        await dispatcher.submit(event, registry.handlers_for(event.type))
        await dispatcher.drain()
        await dispatcher.stop()
    """

    def __init__(self, worker_count: int = 8, queue_size: int = 1000) -> None:
        if worker_count < 1:
            msg = "worker_count must be at least 1"
            raise ValueError(msg)
        self._worker_count = worker_count
        self._queue_size = queue_size
        self._queue: asyncio.Queue[tuple[Event, Handler]] | None = None
        self._workers: list[asyncio.Task[None]] = []

    @property
    def is_running(self) -> bool:
        return bool(self._workers)

    @property
    def pending(self) -> int:
        """Units queued but not yet picked up by a worker."""
        return self._queue.qsize() if self._queue is not None else 0

    async def start(self) -> None:
        """Start the worker tasks. Idempotent."""
        if self._workers:
            return
        if self._queue is None:
            self._queue = asyncio.Queue(maxsize=self._queue_size)
        self._workers = [
            asyncio.create_task(self._worker(), name=f"pulse-dispatch-{i}")
            for i in range(self._worker_count)
        ]
        log.debug("bus.dispatcher.started", workers=self._worker_count)

    async def submit(self, event: Event, handlers: Iterable[Handler]) -> int:
        """Queue one unit per handler, in the given order.

        Returns:
            Number of units queued.
        """
        await self.start()
        assert self._queue is not None
        count = 0
        for handler in handlers:
            await self._queue.put((event, handler))
            count += 1
        return count

    async def drain(self) -> None:
        """Wait until every queued unit has finished."""
        if self._queue is not None:
            await self._queue.join()

    async def stop(self, *, drain: bool = True) -> None:
        """Stop the workers, first letting queued units finish when drain is set."""
        if not self._workers:
            return
        if drain:
            await self.drain()
        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        self._queue = None
        log.debug("bus.dispatcher.stopped")

    async def _worker(self) -> None:
        assert self._queue is not None
        queue = self._queue
        while True:
            event, handler = await queue.get()
            try:
                await self._run_handler(event, handler)
            finally:
                queue.task_done()

    async def _run_handler(self, event: Event, handler: Handler) -> None:
        name = handler_name(handler)
        try:
            result = await handler(event)
        except (Exception, asyncio.CancelledError) as e:
            # A stray CancelledError from a handler is a panic; only a
            # cancellation of this worker task stops it.
            current = asyncio.current_task()
            if isinstance(e, asyncio.CancelledError) and current and current.cancelling():
                raise
            panic = HandlerPanic.from_exception(
                e, handler=name, event_id=event.id, event_type=event.type.value
            )
            log.exception(
                "bus.handler.panicked",
                handler=name,
                event_id=event.id,
                event_type=event.type.value,
                error=panic.message,
            )
            return

        if isinstance(result, Result) and result.is_err:
            error = result.error
            log.warning(
                "bus.handler.failed",
                handler=name,
                event_id=event.id,
                event_type=event.type.value,
                error=str(error),
                error_type=type(error).__name__,
            )
            return

        log.debug(
            "bus.handler.completed",
            handler=name,
            event_id=event.id,
            event_type=event.type.value,
        )


def handler_error(
    handler: str, event: Event, message: str, **details: object
) -> Result[None, HandlerError]:
    """Build the Err result a handler returns on a business-logic failure."""
    return Result.err(
        HandlerError(
            message,
            handler=handler,
            event_id=event.id,
            event_type=event.type.value,
            details=dict(details) or None,
        )
    )
