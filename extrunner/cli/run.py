"""extrunner run command - Run extensions in browsers and reload them on change."""

import asyncio
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console

from extrunner.cli.error_handler import handle_errors
from extrunner.cli.exit_codes import ExitCode

app = typer.Typer(help="Run extensions in browsers and reload them on change.")
console = Console()

logger = logging.getLogger(__name__)


@dataclass
class RunOptions:
    """Everything the run command needs, once options and config are merged."""

    source_dirs: list[Path]
    targets: list[str] = field(default_factory=list)
    firefox_binary: Optional[str] = None
    firefox_profile: Optional[str] = None
    chromium_binary: Optional[str] = None
    chromium_profile: Optional[str] = None
    keep_profile_changes: bool = False
    pre_install: bool = False
    browser_console: bool = False
    start_urls: list[str] = field(default_factory=list)
    args: list[str] = field(default_factory=list)
    prefs: list[str] = field(default_factory=list)
    no_reload: bool = False
    no_input: bool = False
    watch_files: list[Path] = field(default_factory=list)
    ignore_files: list[str] = field(default_factory=list)
    artifacts_dir: Optional[Path] = None


async def run_extensions(options: RunOptions) -> None:
    """
    Start the runners and keep the extensions live until the browsers close.

    Args:
        options: Run options

    Raises:
        InvalidManifest: If a source dir has no valid manifest
        UsageError: If no target can be run
    """
    from extrunner.config import get_config
    from extrunner.firefox.preferences import parse_custom_prefs
    from extrunner.manifest import get_validated_manifest
    from extrunner.reload import ReloadOrchestrator
    from extrunner.runners.base import Extension
    from extrunner.runners.multi import create_multi_runner

    config = get_config()

    extensions = []
    for source_dir in options.source_dirs:
        resolved = source_dir.resolve()
        extensions.append(Extension(
            source_dir=str(resolved),
            manifest_data=get_validated_manifest(resolved),
        ))

    no_reload = options.no_reload
    if options.pre_install:
        logger.info("Disabled auto-reloading because it's not possible with --pre-install")
        no_reload = True

    custom_prefs: dict[str, Any] = {**config.firefox.custom_prefs, **parse_custom_prefs(options.prefs)}

    common_params: dict[str, Any] = {
        "extensions": extensions,
        "keep_profile_changes": options.keep_profile_changes,
        "start_url": options.start_urls or None,
        "args": options.args,
    }
    target_params = {
        "firefox-desktop": {
            "profile_path": options.firefox_profile,
            "firefox_binary": options.firefox_binary or config.firefox.binary,
            "browser_console": options.browser_console,
            "pre_install": options.pre_install,
            "custom_prefs": custom_prefs,
            "firefox": config.firefox,
        },
        "chromium": {
            "profile_path": options.chromium_profile,
            "chromium_binary": options.chromium_binary or config.chromium.binary,
            "chromium": config.chromium,
        },
    }

    runner = create_multi_runner(options.targets, common_params, target_params)
    await runner.run()

    artifacts_dir = options.artifacts_dir or config.watch.artifacts_dir
    orchestrator = ReloadOrchestrator(
        runner,
        extensions,
        watch=not no_reload,
        no_input=options.no_input or no_reload,
        watch_file=options.watch_files or None,
        ignore_files=[*config.watch.ignore_files, *options.ignore_files],
        artifacts_dir=artifacts_dir.resolve() if artifacts_dir else None,
        debounce_ms=config.watch.debounce_ms,
    )

    if no_reload:
        logger.info("Automatic extension reloading has been disabled")
    else:
        logger.info("The extension will reload if any source file changes")

    await orchestrator.run()


@app.callback(invoke_without_command=True)
@handle_errors
def run(
    source_dir: list[Path] = typer.Option(
        [Path(".")],
        "--source-dir",
        "-s",
        help="Extension source directory (repeatable).",
        exists=True,
        file_okay=False,
        dir_okay=True,
    ),
    target: list[str] = typer.Option(
        [],
        "--target",
        "-t",
        help="Browser to run in: firefox-desktop or chromium (repeatable).",
    ),
    firefox: Optional[str] = typer.Option(
        None,
        "--firefox",
        "-f",
        help="Path to a Firefox executable.",
    ),
    firefox_profile: Optional[str] = typer.Option(
        None,
        "--firefox-profile",
        "-p",
        help="Firefox profile directory or name to run the extension in.",
    ),
    chromium_binary: Optional[str] = typer.Option(
        None,
        "--chromium-binary",
        help="Path to a Chromium-based browser executable.",
    ),
    chromium_profile: Optional[str] = typer.Option(
        None,
        "--chromium-profile",
        help="Chromium user-data-dir or profile directory.",
    ),
    keep_profile_changes: bool = typer.Option(
        False,
        "--keep-profile-changes",
        help="Run directly in the given profile and keep its changes.",
    ),
    pre_install: bool = typer.Option(
        False,
        "--pre-install",
        help="Install the extension into the Firefox profile before startup (disables reloading).",
    ),
    browser_console: bool = typer.Option(
        False,
        "--browser-console",
        help="Open the Firefox Browser Console.",
    ),
    start_url: list[str] = typer.Option(
        [],
        "--start-url",
        "-u",
        help="Open a URL on startup (repeatable).",
    ),
    arg: list[str] = typer.Option(
        [],
        "--arg",
        help="Extra browser command line argument (repeatable).",
    ),
    pref: list[str] = typer.Option(
        [],
        "--pref",
        help="Custom Firefox preference as name=value (repeatable).",
    ),
    no_reload: bool = typer.Option(
        False,
        "--no-reload",
        help="Do not reload the extension when source files change.",
    ),
    no_input: bool = typer.Option(
        False,
        "--no-input",
        help="Disable keypress handling on the terminal.",
    ),
    watch_file: list[Path] = typer.Option(
        [],
        "--watch-file",
        help="Only reload when these files change (repeatable).",
    ),
    ignore_files: list[str] = typer.Option(
        [],
        "--ignore-files",
        "-i",
        help="Glob patterns of files to ignore when watching (repeatable).",
    ),
    artifacts_dir: Optional[Path] = typer.Option(
        None,
        "--artifacts-dir",
        "-a",
        help="Directory of build artifacts, ignored when watching.",
    ),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to configuration file.",
        exists=True,
        file_okay=True,
        dir_okay=False,
        resolve_path=True,
    ),
) -> None:
    """Run extensions in one or more browsers.

    The extensions are reloaded when their source files change. On an
    interactive terminal press [cyan]R[/cyan] to reload and
    [cyan]Ctrl-C[/cyan] to quit.

    Example:
        extrunner run -s ./my-extension
        extrunner run -s ./my-extension -t chromium -t firefox-desktop
        extrunner run --pre-install --firefox-profile dev
    """
    from extrunner.config import load_config, set_config, validate_config
    from extrunner.errors import ExtRunnerError

    from extrunner.main import apply_logging_config, is_debug

    config = load_config(config_file)
    if is_debug():
        config.chromium.verbose_protocol = True
    set_config(config)
    if config_file:
        apply_logging_config(config.logging)

    issues = validate_config(config)
    for issue in issues:
        logger.warning(str(issue))
    if any(issue.severity == "error" for issue in issues):
        raise ExtRunnerError(
            "Invalid configuration",
            exit_code=ExitCode.CONFIGURATION_ERROR,
            details={"config": config_file or "default"},
        )

    options = RunOptions(
        source_dirs=source_dir,
        targets=target,
        firefox_binary=firefox,
        firefox_profile=firefox_profile,
        chromium_binary=chromium_binary,
        chromium_profile=chromium_profile,
        keep_profile_changes=keep_profile_changes,
        pre_install=pre_install,
        browser_console=browser_console,
        start_urls=start_url,
        args=arg,
        prefs=pref,
        no_reload=no_reload,
        no_input=no_input,
        watch_files=watch_file,
        ignore_files=ignore_files,
        artifacts_dir=artifacts_dir,
    )

    console.print(f"[bold green]Running {len(options.source_dirs)} extension(s)...[/bold green]")
    asyncio.run(run_extensions(options))
