"""Experiments command group for Pulse.

Create, inspect, advance and delete progressive feature rollouts.
"""

import asyncio
from datetime import UTC, datetime, timedelta
from typing import Annotated

import typer

from pulse.cli.formatters import console
from pulse.cli.formatters.panels import print_info, print_success, print_warning
from pulse.cli.formatters.tables import experiments_table, print_table, rollout_summary_table
from pulse.cli.session import ConfigOption, cli_runtime, exit_on_error
from pulse.rollout.models import Experiment, RolloutSummary

app = typer.Typer(
    name="experiments",
    help="Manage progressive feature rollouts.",
    no_args_is_help=True,
)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


@app.command()
def create(
    name: Annotated[str, typer.Argument(help="Display name of the experiment.")],
    feature_key: Annotated[str, typer.Argument(help="Unique feature key, e.g. profile_music.")],
    description: Annotated[
        str, typer.Option("--description", "-d", help="What the feature does.")
    ] = "",
    start: Annotated[
        datetime | None,
        typer.Option("--start", help="Rollout start (UTC). Defaults to now."),
    ] = None,
    end: Annotated[
        datetime | None,
        typer.Option("--end", help="Rollout end (UTC). Overrides --days."),
    ] = None,
    days: Annotated[
        int, typer.Option("--days", min=1, help="Rollout length when --end is not given.")
    ] = 14,
    initial: Annotated[
        int, typer.Option("--initial", "-i", min=0, help="Members at start, admins included.")
    ] = 0,
    force: Annotated[
        bool, typer.Option("--force", "-f", help="Replace an existing experiment.")
    ] = False,
    config: ConfigOption = None,
) -> None:
    """Create an experiment.

    If the start is not in the future, initial members are assigned at once.
    """
    start_at = _as_utc(start) if start else datetime.now(UTC)
    end_at = _as_utc(end) if end else start_at + timedelta(days=days)

    async def _create() -> Experiment:
        async with cli_runtime(config) as runtime:
            exists = await runtime.rollout.experiment_exists(feature_key)
            if exists.is_err:
                exit_on_error(exists.error)
            if exists.value and not force:
                print_warning(
                    f"Experiment '{feature_key}' already exists. Use --force to replace it."
                )
                raise typer.Exit(1)

            result = await runtime.rollout.create_experiment(
                name, feature_key, description, start_at, end_at, initial
            )
            if result.is_err:
                exit_on_error(result.error)
            return result.value

    experiment = asyncio.run(_create())
    print_success(
        f"Created experiment [highlight]{experiment.feature_key}[/] "
        f"({experiment.start_date:%Y-%m-%d %H:%M} -> {experiment.end_date:%Y-%m-%d %H:%M})"
    )


@app.command("list")
def list_experiments(config: ConfigOption = None) -> None:
    """List experiments with their member counts."""

    async def _list() -> list[tuple[Experiment, int]]:
        async with cli_runtime(config) as runtime:
            result = await runtime.rollout.list_experiments()
            if result.is_err:
                exit_on_error(result.error)
            rows = []
            for experiment in result.value:
                count = await runtime.rollout.member_count(experiment.feature_key)
                rows.append((experiment, count.unwrap_or(0)))
            return rows

    rows = asyncio.run(_list())
    if not rows:
        print_info("No experiments defined.")
        return
    print_table(experiments_table(rows, datetime.now(UTC)))


@app.command()
def delete(
    feature_key: Annotated[str, typer.Argument(help="Feature key of the experiment.")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
    config: ConfigOption = None,
) -> None:
    """Delete an experiment and its membership."""
    if not yes:
        typer.confirm(f"Delete experiment '{feature_key}' and all its members?", abort=True)

    async def _delete() -> bool:
        async with cli_runtime(config) as runtime:
            result = await runtime.rollout.delete_experiment(feature_key)
            if result.is_err:
                exit_on_error(result.error)
            return result.value

    if asyncio.run(_delete()):
        print_success(f"Deleted experiment [highlight]{feature_key}[/]")
    else:
        print_warning(f"No experiment named '{feature_key}'.")


@app.command()
def process(config: ConfigOption = None) -> None:
    """Run one rollout tick now."""

    async def _process() -> RolloutSummary:
        async with cli_runtime(config) as runtime:
            result = await runtime.rollout.process_experiments()
            if result.is_err:
                exit_on_error(result.error)
            return result.value

    summary = asyncio.run(_process())
    if not summary.outcomes:
        print_info("No experiments to process.")
        return
    print_table(rollout_summary_table(summary))
    if summary.failed:
        raise typer.Exit(1)


@app.command()
def features(
    uid: Annotated[int, typer.Argument(help="User id.")],
    config: ConfigOption = None,
) -> None:
    """Show the running experiments a user is enrolled in."""

    async def _features() -> list[str]:
        async with cli_runtime(config) as runtime:
            result = await runtime.rollout.get_user_experimental_features(uid)
            if result.is_err:
                exit_on_error(result.error)
            return result.value

    keys = asyncio.run(_features())
    if not keys:
        print_info(f"User {uid} is not in any running experiment.")
        return
    for key in keys:
        console.print(f"[highlight]{key}[/]")


__all__ = ["app"]
