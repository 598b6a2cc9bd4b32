"""Events command group for Pulse.

Inspect unprocessed events in the event store and acknowledge them.
"""

import asyncio
from typing import Annotated

import typer

from pulse.cli.formatters.panels import print_info, print_success, print_warning
from pulse.cli.formatters.tables import events_table, print_table
from pulse.cli.session import ConfigOption, cli_runtime, exit_on_error
from pulse.events.base import Event, EventType

app = typer.Typer(
    name="events",
    help="Inspect and acknowledge stored events.",
    no_args_is_help=True,
)


@app.command()
def unprocessed(
    event_type: Annotated[
        list[EventType] | None,
        typer.Option("--type", "-t", help="Only events of this type (repeatable)."),
    ] = None,
    limit: Annotated[
        int, typer.Option("--limit", "-n", min=1, help="Maximum number of events to show.")
    ] = 50,
    config: ConfigOption = None,
) -> None:
    """List events no consumer has acknowledged yet, oldest first."""
    types = tuple(event_type or ())

    async def _unprocessed() -> list[Event]:
        async with cli_runtime(config) as runtime:
            result = await runtime.bus.get_unprocessed(*types)
            if result.is_err:
                exit_on_error(result.error)
            return result.value

    events = asyncio.run(_unprocessed())
    if not events:
        print_info("No unprocessed events.")
        return
    print_table(events_table(events[:limit]))
    if len(events) > limit:
        print_info(f"Showing {limit} of {len(events)} events. Use --limit to see more.")


@app.command()
def ack(
    event_id: Annotated[str, typer.Argument(help="Identifier of the event.")],
    config: ConfigOption = None,
) -> None:
    """Mark an event as processed."""

    async def _ack() -> bool:
        async with cli_runtime(config) as runtime:
            result = await runtime.bus.mark_processed(event_id)
            if result.is_err:
                exit_on_error(result.error)
            return result.value

    if asyncio.run(_ack()):
        print_success(f"Event [highlight]{event_id}[/] marked as processed")
    else:
        print_warning(f"No event with id '{event_id}'.")
        raise typer.Exit(1)


__all__ = ["app"]
