"""Pulse - platform event bus and background jobs.

Durable, broadcast domain events; progressive feature rollouts; and
identity correlation (alt-account) detection over a shared Redis store.

Example:
    # Using CLI
    pulse experiments create "Profile music" profile_music --days 14 --initial 100
    pulse worker run --notify

    # Using Python
    from pulse.config import load_config
    from pulse.runtime import open_runtime

    async with open_runtime(load_config()) as runtime:
        await runtime.bus.publish_user_registration(42, "abc")
"""

__version__ = "0.1.0"

__all__ = ["__version__", "main"]


def main() -> None:
    """Main entry point for the Pulse CLI.

    This function invokes the Typer app from pulse.cli.main.
    """
    from pulse.cli.main import app

    app()
