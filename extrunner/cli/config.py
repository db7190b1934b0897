"""extrunner config command - Configuration inspection."""

import os
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.syntax import Syntax

from extrunner.cli.exit_codes import ExitCode

app = typer.Typer(help="Inspect extrunner configuration.")
console = Console()


def _config_file_path() -> Path:
    from extrunner.config import DEFAULT_CONFIG_DIR, DEFAULT_CONFIG_FILE

    config_dir = Path(os.environ.get("EXTRUNNER_CONFIG_DIR", DEFAULT_CONFIG_DIR))
    return config_dir / DEFAULT_CONFIG_FILE


@app.command("show")
def show_config(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        dir_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Show the effective configuration as JSON.

    Example:
        extrunner config show
    """
    from extrunner.config import export_config_json, load_config

    config = load_config(config_file)
    console.print(Syntax(export_config_json(config), "json", theme="monokai"))


@app.command("validate")
def validate_config(
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        dir_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Validate the configuration.

    Example:
        extrunner config validate
    """
    from extrunner.config import load_config, validate_config as do_validate

    config = load_config(config_file)
    errors = do_validate(config)

    all_passed = True
    for error in errors:
        if error.severity == "error":
            status = "[red]✗[/red]"
            all_passed = False
        else:
            status = "[yellow]![/yellow]"
        console.print(f"  {status} [{error.severity.upper()}] {error.field}: {error.message}")

    if all_passed:
        console.print("[green]Configuration is valid[/green]")
    else:
        console.print("[red]Configuration has errors[/red]")
        raise typer.Exit(code=ExitCode.CONFIGURATION_ERROR)


@app.command("path")
def config_path() -> None:
    """Show the configuration file path.

    Example:
        extrunner config path
    """
    config_file_path = _config_file_path()
    console.print(f"[bold]Config directory:[/bold] {config_file_path.parent}")
    console.print(f"[bold]Config file:[/bold] {config_file_path}")
    console.print(f"[bold]Exists:[/bold] {config_file_path.exists()}")
