"""Shared console output utilities."""

import sys

from rich.console import Console

# Shared console instance for all CLI output
console = Console(color_system="auto")


def is_non_interactive() -> bool:
    """Return True when stdin is not a TTY (prompts would hang)."""
    return not sys.stdin.isatty()
