"""Rich tables for experiments and events."""

from datetime import datetime

from rich.table import Table

from pulse.cli.formatters import console
from pulse.events.base import Event
from pulse.rollout.models import Experiment, RolloutSummary


def create_table(
    title: str | None = None,
    *,
    show_header: bool = True,
    border_style: str = "blue",
    header_style: str = "bold cyan",
) -> Table:
    """Create a Rich Table with consistent Pulse styling.

    Example:
        table = create_table("Experiments")
        table.add_column("Feature", style="cyan")
        table.add_row("profile_music")
        print_table(table)
    """
    return Table(
        title=title,
        show_header=show_header,
        border_style=border_style,
        header_style=header_style,
        row_styles=["", "dim"],
    )


def _status_style(status: str) -> str:
    if status in ("active", "advanced", "completed", "ok"):
        return "success"
    if status in ("pending", "unchanged", "scheduled"):
        return "warning"
    if status in ("failed", "error"):
        return "error"
    return ""


def _fmt_time(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


def experiment_status(experiment: Experiment, now: datetime) -> str:
    if experiment.is_completed(now):
        return "completed"
    if experiment.is_active(now):
        return "active"
    return "scheduled"


def experiments_table(
    experiments: list[tuple[Experiment, int]], now: datetime, title: str = "Experiments"
) -> Table:
    """One row per experiment with its member count and window progress."""
    table = create_table(title)
    table.add_column("Feature", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Window")
    table.add_column("Initial", justify="right")
    table.add_column("Members", justify="right")
    table.add_column("Progress", justify="right")
    table.add_column("Status", justify="center")

    for experiment, members in experiments:
        status = experiment_status(experiment, now)
        table.add_row(
            experiment.feature_key,
            experiment.name,
            f"{_fmt_time(experiment.start_date)} -> {_fmt_time(experiment.end_date)}",
            str(experiment.initial_user_count),
            str(members),
            f"{experiment.progress(now) * 100:.1f}%",
            f"[{_status_style(status)}]{status}[/]",
        )
    return table


def rollout_summary_table(summary: RolloutSummary) -> Table:
    table = create_table("Rollout tick")
    table.add_column("Feature", style="cyan", no_wrap=True)
    table.add_column("Outcome", justify="center")
    table.add_column("Added", justify="right")
    table.add_column("Error", style="muted")

    for feature_key, outcome in summary.outcomes.items():
        table.add_row(
            feature_key,
            f"[{_status_style(outcome.value)}]{outcome.value}[/]",
            str(summary.added.get(feature_key, 0)),
            summary.errors.get(feature_key, ""),
        )
    return table


def events_table(events: list[Event], title: str = "Unprocessed events") -> Table:
    table = create_table(title)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Type")
    table.add_column("Created")
    table.add_column("Data", style="muted", overflow="fold")

    for event in events:
        table.add_row(
            event.id,
            event.type.value,
            _fmt_time(event.created_at),
            ", ".join(f"{k}={v}" for k, v in event.data.items()),
        )
    return table


def print_table(table: Table) -> None:
    """Print a Rich Table to the shared console."""
    console.print(table)


__all__ = [
    "create_table",
    "events_table",
    "experiment_status",
    "experiments_table",
    "print_table",
    "rollout_summary_table",
]
