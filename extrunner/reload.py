"""
Reload orchestration.

Two independent sources trigger reloads on the runner: file changes in the
extension sources and, on an interactive terminal, keypresses. The loop
lasts until the user quits or every browser has gone away.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys
from pathlib import Path
from typing import Any, Callable, Optional, Sequence, TextIO, Union

from extrunner.file_filter import FileFilter
from extrunner.runners.base import Extension, ExtensionRunner
from extrunner.stdin import KEY_CTRL_C, TerminalInput, is_tty
from extrunner.watcher import DEFAULT_DEBOUNCE_MS, on_source_change

logger = logging.getLogger(__name__)

KEY_RELOAD = "r"
KEY_SUSPEND = "z"


class ReloadOrchestrator:
    """
    Runs the reload loop against an extension runner.

    Example:
        orchestrator = ReloadOrchestrator(runner, extensions)
        await orchestrator.run()
    """

    def __init__(
        self,
        extension_runner: ExtensionRunner,
        extensions: Sequence[Extension],
        watch: bool = True,
        no_input: bool = False,
        watch_file: Optional[Sequence[Union[str, Path]]] = None,
        ignore_files: Optional[Sequence[str]] = None,
        artifacts_dir: Optional[Union[str, Path]] = None,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
        stdin: TextIO = sys.stdin,
        watch_fn: Callable[..., Any] = on_source_change,
        terminal_factory: Callable[[TextIO], TerminalInput] = TerminalInput,
    ):
        self._runner = extension_runner
        self._extensions = list(extensions)
        self._watch = watch
        self._no_input = no_input
        self._watch_file = watch_file
        self._ignore_files = ignore_files
        self._artifacts_dir = artifacts_dir
        self._debounce_ms = debounce_ms
        self._stdin = stdin
        self._watch_fn = watch_fn
        self._terminal_factory = terminal_factory

        self._terminal: Optional[TerminalInput] = None
        self._tasks: list[asyncio.Task] = []
        self._stop_watching = asyncio.Event()
        self._shutdown_event = asyncio.Event()
        self._exit_runner = False

    @property
    def interactive(self) -> bool:
        """Whether keypresses are read."""
        return not self._no_input and is_tty(self._stdin)

    def request_shutdown(self, exit_runner: bool = False) -> None:
        """End the loop.

        With exit_runner the browsers are closed as well; otherwise they
        are assumed to be gone already.
        """
        if exit_runner:
            self._exit_runner = True
        if not self._shutdown_event.is_set():
            logger.debug("Reload loop shutdown requested")
        self._shutdown_event.set()

    async def run(self) -> None:
        """Run until the user quits or every browser has exited."""
        self._runner.register_cleanup(self.request_shutdown)
        self._install_signal_handlers()

        if self._watch:
            for extension in self._extensions:
                self._tasks.append(asyncio.create_task(self._watch_source_dir(extension.source_dir)))

        if self.interactive:
            self._terminal = self._terminal_factory(self._stdin)
            self._terminal.set_raw_mode(True)
            self._tasks.append(asyncio.create_task(self._keypress_loop(self._terminal)))
        elif not self._no_input:
            logger.debug("stdin is not a TTY, keypresses are disabled")

        try:
            await self._shutdown_event.wait()
        finally:
            await self._shutdown()

    async def reload_all(self) -> None:
        """Reload every extension, logging failures."""
        try:
            await self._runner.reload_all_extensions()
        except Exception as e:
            logger.error(f"Error reloading extensions: {e}")

    async def reload_source_dir(self, source_dir: str) -> None:
        """Reload the extension of a source dir, logging failures."""
        try:
            await self._runner.reload_extension_by_source_dir(source_dir)
        except Exception as e:
            logger.error(f"Error reloading extension from {source_dir}: {e}")

    # Private methods

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()

        def handle_signal(sig: signal.Signals) -> None:
            logger.info(f"Received signal {sig.name}, exiting...")
            self.request_shutdown(exit_runner=True)

        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, lambda s=sig: handle_signal(s))
            except (NotImplementedError, RuntimeError):
                # Not supported on Windows or outside the main thread
                logger.debug(f"Can't install a handler for {sig.name}")

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass

    async def _watch_source_dir(self, source_dir: str) -> None:
        file_filter = FileFilter(
            source_dir,
            ignore_files=self._ignore_files,
            artifacts_dir=self._artifacts_dir,
        )

        async def on_change() -> None:
            await self.reload_source_dir(source_dir)

        try:
            await self._watch_fn(
                source_dir=source_dir,
                on_change=on_change,
                artifacts_dir=self._artifacts_dir,
                should_watch_file=file_filter.want_file,
                watch_file=self._watch_file,
                debounce_ms=self._debounce_ms,
                stop_event=self._stop_watching,
            )
        except Exception as e:
            logger.error(f"Stopped watching {source_dir}: {e}")

    async def _keypress_loop(self, terminal: TerminalInput) -> None:
        logger.info("Press R to reload (and Ctrl-C to quit)")

        async with contextlib.aclosing(terminal.keypresses()) as keys:
            async for key in keys:
                if key == KEY_CTRL_C:
                    self.request_shutdown(exit_runner=True)
                    break
                if key.lower() == KEY_RELOAD:
                    logger.debug("Reloading installed extensions on user request")
                    await self.reload_all()
                elif key.lower() == KEY_SUSPEND:
                    terminal.suspend()

    async def _shutdown(self) -> None:
        self._stop_watching.set()
        self._remove_signal_handlers()

        if self._terminal is not None:
            self._terminal.close()

        if self._tasks:
            _, pending = await asyncio.wait(self._tasks, timeout=1.0)
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)
            self._tasks.clear()

        if self._exit_runner:
            logger.info("Exiting...")
            try:
                await self._runner.exit()
            except Exception as e:
                logger.error(f"Error while exiting: {e}")
