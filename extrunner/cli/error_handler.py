"""Global exception handling for extrunner.

This module provides a decorator that ensures consistent error reporting
and exit codes across the CLI commands.
"""

from functools import wraps
from typing import Callable, TypeVar, Any
import logging

import typer
from rich.console import Console

from extrunner.cli.exit_codes import ExitCode
from extrunner.errors import ExtRunnerError

# Console for error output (stderr)
console = Console(stderr=True)

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


def _print_error(error: ExtRunnerError) -> None:
    console.print(f"[red]Error:[/red] {error.message}")

    if error.details:
        for key, value in error.details.items():
            console.print(f"  [dim]{key}:[/dim] {value}")


def handle_errors(func: F) -> F:
    """Decorator for consistent error handling across CLI commands.

    This decorator catches all exceptions and converts them to appropriate
    error messages and exit codes. It handles:

    - ExtRunnerError subclasses: Display error message with appropriate exit code
    - KeyboardInterrupt: Show cancellation message with exit code 130
    - Other exceptions: Show generic error with option for verbose details

    Args:
        func: The function to wrap

    Returns:
        Wrapped function with error handling

    Example:
        @app.command()
        @handle_errors
        def my_command():
            raise UsageError("Invalid options")
    """
    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except ExtRunnerError as e:
            logger.error(
                f"ExtRunnerError: {e.message}",
                extra={"exit_code": e.exit_code, "details": e.details},
            )
            _print_error(e)
            raise typer.Exit(code=e.exit_code)

        except KeyboardInterrupt:
            console.print("\n[yellow]Operation cancelled by user.[/yellow]")
            logger.info("Operation cancelled by user (KeyboardInterrupt)")
            raise typer.Exit(code=ExitCode.CANCELLED)

        except typer.Exit:
            raise

        except Exception as e:
            logger.exception("Unexpected error occurred")
            console.print(f"[red]Unexpected error:[/red] {e}")
            console.print("[dim]Run with --debug or --log-file for the traceback[/dim]")
            raise typer.Exit(code=ExitCode.GENERAL_ERROR)

    return wrapper  # type: ignore[return-value]

