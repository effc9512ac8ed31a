"""Error handling decorator for CLI commands."""

import functools
import logging
from typing import Any, Callable, Optional, TypeVar

import typer
from rich.console import Console

from ..exceptions import ForgeError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def handle_cli_error(
    operation: str,
    console: Optional[Console] = None,
    exit_code: int = 1,
    log_traceback: bool = True,
) -> Callable[[F], F]:
    """Decorator for consistent CLI command error handling.

    Usage:
        @app.command()
        @handle_cli_error("running update")
        def update():
            ...
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            _console = console or Console()
            try:
                return func(*args, **kwargs)
            except typer.Exit:
                raise
            except typer.Abort:
                _console.print(f"[yellow]{operation.capitalize()} cancelled[/yellow]")
                raise typer.Exit(0) from None
            except ForgeError as e:
                _console.print(f"[red]Error {operation}: {e.message}[/red]")
                if log_traceback:
                    logger.error(f"Error during {operation}: {e}", exc_info=True)
                raise typer.Exit(exit_code) from e
            except Exception as e:
                _console.print(f"[red]Error {operation}: {e}[/red]")
                if log_traceback:
                    logger.error(f"Unexpected error during {operation}: {e}", exc_info=True)
                raise typer.Exit(exit_code) from e

        return wrapper  # type: ignore[return-value]

    return decorator
