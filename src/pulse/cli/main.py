"""Pulse CLI main entry point.

This module defines the main Typer application and registers
all command groups for the Pulse CLI.
"""

from typing import Annotated

import typer

from pulse import __version__
from pulse.cli.commands import config, events, experiments, worker
from pulse.cli.formatters import console

# Create the main Typer app
app = typer.Typer(
    name="pulse",
    help="Pulse - event bus, feature rollouts and alt-account detection",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Register command groups
app.add_typer(config.app, name="config")
app.add_typer(experiments.app, name="experiments")
app.add_typer(events.app, name="events")
app.add_typer(worker.app, name="worker")


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]Pulse[/] version [green]{__version__}[/]")
        raise typer.Exit()


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit.",
        ),
    ] = None,
) -> None:
    """Pulse - platform event bus and background jobs.

    Manage feature rollout experiments, inspect stored events and run the
    worker that listens for events and advances rollouts.

    Use [bold cyan]pulse COMMAND --help[/] for command-specific help.
    """


__all__ = ["app", "main"]
