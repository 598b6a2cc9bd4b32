"""Worker command group for Pulse.

Runs the long-lived side of Pulse: the bus listener with its subscribers
(the Discord notifier) and the rollout scheduler.
"""

import asyncio
import contextlib
from typing import Annotated

import typer

from pulse.cli.formatters.panels import print_info, print_warning
from pulse.cli.session import ConfigOption, cli_runtime
from pulse.runtime import Runtime

app = typer.Typer(
    name="worker",
    help="Run the event listener and rollout scheduler.",
    no_args_is_help=True,
)


async def _serve(runtime: Runtime, *, once: bool, replay: bool) -> bool:
    if replay:
        replayed = await runtime.bus.replay_unprocessed()
        if replayed.is_ok:
            print_info(f"Replayed {replayed.value} unprocessed event(s).")

    job = runtime.rollout_job()
    if once:
        ok = await job.run_once()
        await runtime.bus.drain()
        return ok

    await runtime.bus.start()
    await job.start()
    try:
        await asyncio.Event().wait()
    finally:
        await job.stop()
    return True


@app.command()
def run(
    notify: Annotated[
        bool | None,
        typer.Option(
            "--notify/--no-notify",
            help="Post Discord notifications (default: discord.enabled).",
        ),
    ] = None,
    once: Annotated[
        bool,
        typer.Option("--once", help="Run a single rollout tick and exit."),
    ] = False,
    replay: Annotated[
        bool,
        typer.Option("--replay", help="Dispatch unprocessed events to local handlers first."),
    ] = False,
    config: ConfigOption = None,
) -> None:
    """Run a worker until interrupted.

    The worker listens on the shared channel, dispatches events to its
    subscribers and advances experiments every rollout.interval_seconds.
    """

    async def _run() -> bool:
        async with cli_runtime(config, notify=notify) as runtime:
            if not once:
                print_info(
                    f"Worker {runtime.bus.origin[:8]} listening on "
                    f"'{runtime.bus.channel}'. Press Ctrl+C to stop."
                )
            return await _serve(runtime, once=once, replay=replay)

    ok = True
    with contextlib.suppress(KeyboardInterrupt):
        ok = asyncio.run(_run())
    if not ok:
        print_warning("Rollout tick failed; see logs for details.")
        raise typer.Exit(1)


__all__ = ["app"]
