"""Config loading and runtime lifetime for CLI commands."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Annotated, NoReturn

import typer

from pulse.cli.formatters.panels import print_error
from pulse.config.loader import load_config
from pulse.config.models import PulseConfig
from pulse.core.errors import ConfigError, PulseError
from pulse.observability.logging import configure_logging
from pulse.runtime import Runtime, open_runtime

ConfigOption = Annotated[
    Path | None,
    typer.Option("--config", "-c", help="Path to config.yaml (default ~/.pulse/config.yaml)."),
]


def load_cli_config(config_path: Path | None = None) -> PulseConfig:
    """Load configuration, exiting with status 1 on a config error."""
    try:
        config = load_config(config_path)
    except ConfigError as e:
        print_error(e.message, title="Configuration error")
        raise typer.Exit(1) from e
    configure_logging(config.logging)
    return config


@asynccontextmanager
async def cli_runtime(
    config_path: Path | None = None, *, notify: bool = False
) -> AsyncIterator[Runtime]:
    """Runtime for one command; infrastructure errors exit with status 1."""
    config = load_cli_config(config_path)
    try:
        async with open_runtime(config, notify=notify) as runtime:
            yield runtime
    except PulseError as e:
        print_error(str(e))
        raise typer.Exit(1) from e


def exit_on_error(error: PulseError) -> NoReturn:
    print_error(str(error))
    raise typer.Exit(1)
