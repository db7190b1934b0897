"""Main CLI entry point for extrunner."""

import logging
import sys
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console

from extrunner import __app_name__, __version__
from extrunner.cli import config, run
from extrunner.cli.exit_codes import ExitCode
from extrunner.config import LoggingConfig, get_config

# Create the main Typer app
app = typer.Typer(
    name=__app_name__,
    help="extrunner - Run browser extensions in development and reload them on change.",
    add_completion=True,
    no_args_is_help=True,
    rich_markup_mode="rich",
)

# Console for CLI output
console = Console()

DEBUG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s [%(filename)s:%(lineno)d] %(message)s"

# Register command groups
app.add_typer(run.app, name="run")
app.add_typer(config.app, name="config")

# Global state for CLI options
_global_state: dict[str, Any] = {
    "verbose": False,
    "debug": False,
    "quiet": False,
    "log_file": None,
}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"{__app_name__} v{__version__}")
        raise typer.Exit(code=ExitCode.SUCCESS)


def _console_level(settings: LoggingConfig, verbose: bool, debug: bool, quiet: bool) -> int:
    """Pick the console log level; flags win over the configured level."""
    if debug:
        return logging.DEBUG
    if quiet:
        return logging.ERROR
    if verbose:
        return logging.INFO
    return logging.getLevelName(settings.level.upper()) if settings.level else logging.WARNING


def _setup_logging(
    settings: LoggingConfig,
    verbose: bool = False,
    debug: bool = False,
    quiet: bool = False,
    log_file: Optional[Path] = None,
) -> None:
    """Configure the root logger for a command.

    The console handler writes to stderr so it never mixes with command
    output. A log file, from ``--log-file`` or the ``[logging]`` section,
    always receives DEBUG records.
    """
    level = _console_level(settings, verbose, debug, quiet)
    if not isinstance(level, int):
        level = logging.WARNING

    formatter = logging.Formatter(DEBUG_FORMAT if debug else settings.format)
    handlers: list[logging.Handler] = []

    log_path = log_file or settings.file
    if log_path:
        log_path = Path(log_path).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(DEBUG_FORMAT))
        handlers.append(file_handler)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(level)
    stderr_handler.setFormatter(formatter)
    handlers.append(stderr_handler)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(logging.DEBUG if log_path else level)

    logging.getLogger(__name__).debug(
        f"Console logging at {logging.getLevelName(level)}, log file: {log_path or 'none'}"
    )


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose output (INFO level logging).",
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug mode (DEBUG level logging, protocol messages included).",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Suppress non-error output.",
    ),
    log_file: Optional[Path] = typer.Option(
        None,
        "--log-file",
        help="Log to file (logs DEBUG level regardless of console settings).",
    ),
) -> None:
    """extrunner - Run browser extensions in development.

    [bold]Commands:[/bold]

    • [cyan]run[/cyan] - Run extensions in Firefox and/or Chromium and reload them on change
    • [cyan]config[/cyan] - Inspect configuration

    [bold]Examples:[/bold]

        extrunner run -s ./my-extension
        extrunner --verbose run -s ./my-extension -t chromium
        extrunner config show
    """
    if quiet and (verbose or debug):
        console.print("[red]Error:[/red] --quiet can't be combined with --verbose or --debug")
        raise typer.Exit(code=ExitCode.INVALID_ARGUMENT)

    _global_state["verbose"] = verbose
    _global_state["debug"] = debug
    _global_state["quiet"] = quiet
    _global_state["log_file"] = log_file

    _setup_logging(get_config().logging, verbose=verbose, debug=debug, quiet=quiet, log_file=log_file)
    logging.getLogger(__name__).debug(f"{__app_name__} v{__version__} starting")


def apply_logging_config(settings: LoggingConfig) -> None:
    """Set up logging again once a command loaded its own config file."""
    _setup_logging(
        settings,
        verbose=_global_state["verbose"],
        debug=_global_state["debug"],
        quiet=_global_state["quiet"],
        log_file=_global_state["log_file"],
    )


def is_debug() -> bool:
    """Check if debug mode is enabled."""
    return _global_state.get("debug", False)


if __name__ == "__main__":
    app()
