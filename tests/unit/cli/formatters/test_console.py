"""Unit tests for shared Console and theme."""

from io import StringIO

import pytest
from rich.console import Console
from rich.theme import Theme

from pulse.cli.formatters import PULSE_THEME, console


class TestPulseTheme:
    """Tests for the Pulse theme."""

    def test_theme_is_theme_instance(self) -> None:
        """PULSE_THEME is a Theme."""
        assert isinstance(PULSE_THEME, Theme)

    @pytest.mark.parametrize(
        "style", ["success", "warning", "error", "info", "muted", "highlight"]
    )
    def test_theme_defines_semantic_style(self, style: str) -> None:
        """Every semantic style used by the formatters is defined."""
        assert style in PULSE_THEME.styles


class TestSharedConsole:
    """Tests for the shared Console instance."""

    def test_console_is_console_instance(self) -> None:
        """The shared console is a Console."""
        assert isinstance(console, Console)

    def test_semantic_markup_renders(self) -> None:
        """Semantic markup tags render with the theme."""
        output = StringIO()
        themed = Console(file=output, theme=PULSE_THEME, force_terminal=True)

        themed.print("[success]Saved[/] [highlight]profile_music[/]")

        assert "Saved" in output.getvalue()
        assert "profile_music" in output.getvalue()
