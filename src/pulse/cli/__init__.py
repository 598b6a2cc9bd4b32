"""Pulse CLI module.

This module provides the command-line interface for Pulse, built with
Typer for the CLI framework and Rich for terminal output.
"""

from pulse.cli.main import app

__all__ = ["app"]
