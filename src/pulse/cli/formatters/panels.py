"""Rich panels for command outcomes."""

from rich.panel import Panel

from pulse.cli.formatters import console

_STYLES = {
    "info": "blue",
    "warning": "yellow",
    "error": "red",
    "success": "green",
}


def message_panel(message: str, kind: str = "info", title: str | None = None) -> Panel:
    """Create a panel styled for kind (info, warning, error or success).

    Args:
        message: Message content to display.
        kind: Semantic style name.
        title: Panel title; defaults to the capitalised kind.

    Returns:
        Configured Rich Panel.
    """
    color = _STYLES.get(kind, "blue")
    return Panel(
        f"[{kind}]{message}[/]",
        title=f"[bold {color}]{title or kind.capitalize()}[/]",
        border_style=color,
        expand=False,
    )


def print_info(message: str, title: str = "Info") -> None:
    console.print(message_panel(message, "info", title))


def print_warning(message: str, title: str = "Warning") -> None:
    console.print(message_panel(message, "warning", title))


def print_error(message: str, title: str = "Error") -> None:
    console.print(message_panel(message, "error", title))


def print_success(message: str, title: str = "Success") -> None:
    console.print(message_panel(message, "success", title))


__all__ = [
    "message_panel",
    "print_info",
    "print_warning",
    "print_error",
    "print_success",
]
