"""Config command group for Pulse.

Create and inspect the configuration file.
"""

from typing import Annotated

import typer

from pulse.cli.formatters.panels import print_info, print_success, print_warning
from pulse.cli.formatters.tables import create_table, print_table
from pulse.cli.session import ConfigOption, load_cli_config
from pulse.config.loader import create_default_config, resolve_database_url
from pulse.config.models import get_config_dir
from pulse.core.security import mask_url_credentials

app = typer.Typer(
    name="config",
    help="Manage Pulse configuration.",
    no_args_is_help=True,
)


@app.command()
def init(
    overwrite: Annotated[
        bool, typer.Option("--overwrite", help="Replace an existing config.yaml.")
    ] = False,
) -> None:
    """Write a default ~/.pulse/config.yaml."""
    config_dir = get_config_dir()
    config_file = config_dir / "config.yaml"
    if config_file.exists() and not overwrite:
        print_warning(f"{config_file} already exists. Use --overwrite to replace it.")
        raise typer.Exit(1)
    create_default_config(config_dir, overwrite=overwrite)
    print_success(f"Wrote {config_file}")
    print_info("Set webhook URLs through PULSE_DISCORD_* environment variables.")


@app.command()
def show(config: ConfigOption = None) -> None:
    """Display the effective configuration, secrets masked."""
    settings = load_cli_config(config)
    table = create_table("Effective configuration", show_header=False)
    table.add_column("Key", style="cyan", no_wrap=True)
    table.add_column("Value")

    rows = {
        "redis.url": mask_url_credentials(settings.redis.url),
        "redis.channel": settings.redis.channel,
        "database.url": mask_url_credentials(resolve_database_url(settings)),
        "bus.worker_count": settings.bus.worker_count,
        "bus.queue_size": settings.bus.queue_size,
        "rollout.interval_seconds": settings.rollout.interval_seconds,
        "rollout.batch_size": settings.rollout.batch_size,
        "rollout.admin_staff_level": settings.rollout.admin_staff_level,
        "identity.dedupe_email_matches": settings.identity.dedupe_email_matches,
        "discord.enabled": settings.discord.enabled,
        "discord.registrations_webhook_url": _is_set(settings.discord.registrations_webhook_url),
        "discord.security_webhook_url": _is_set(settings.discord.security_webhook_url),
        "logging.mode": settings.logging.mode.value,
    }
    for key, value in rows.items():
        table.add_row(key, str(value))
    print_table(table)


def _is_set(value: str | None) -> str:
    return "<set>" if value else "<not set>"


__all__ = ["app"]
