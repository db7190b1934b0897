"""Tests for the reload orchestrator."""

import asyncio
import io
from unittest.mock import AsyncMock, MagicMock

import pytest

from extrunner.reload import ReloadOrchestrator
from extrunner.runners.base import CleanupCallbacks, Extension
from extrunner.runners.multi import MultipleTargetsExtensionRunner, MultipleTargetsRunnerParams
from extrunner.stdin import KEY_CTRL_C


class FakeRunner:
    """Runner recording reloads, exits and cleanups."""

    def __init__(self):
        self.reload_all_extensions = AsyncMock(return_value=[])
        self.reload_extension_by_source_dir = AsyncMock(return_value=[])
        self.exit = AsyncMock()
        self.cleanups = []

    def get_name(self):
        return "Fake"

    async def run(self):
        pass

    def register_cleanup(self, fn):
        self.cleanups.append(fn)

    def browser_closed(self):
        for fn in self.cleanups:
            fn()


class FakeTerminal:
    """Terminal delivering scripted keys."""

    def __init__(self, keys):
        self.keys = asyncio.Queue()
        for key in keys:
            self.keys.put_nowait(key)
        self.raw_modes = []
        self.suspended = 0
        self.closed = False

    def set_raw_mode(self, enabled):
        self.raw_modes.append(enabled)

    def suspend(self):
        self.suspended += 1

    async def keypresses(self):
        while True:
            key = await self.keys.get()
            if key is None:
                return
            yield key

    def close(self):
        self.closed = True
        self.keys.put_nowait(None)


def tty():
    stdin = MagicMock()
    stdin.isatty.return_value = True
    return stdin


async def idle_watch(**kwargs):
    await kwargs["stop_event"].wait()


EXTENSIONS = [Extension("/ext/a"), Extension("/ext/b")]


class TestReloadOrchestrator:
    """Tests for ReloadOrchestrator."""

    @pytest.mark.asyncio
    async def test_stops_when_browsers_are_gone(self):
        """Test that the loop ends on runner cleanup without exiting it."""
        runner = FakeRunner()
        orchestrator = ReloadOrchestrator(
            runner, EXTENSIONS, stdin=io.StringIO(), watch_fn=idle_watch,
        )

        task = asyncio.create_task(orchestrator.run())
        await asyncio.sleep(0.01)
        runner.browser_closed()
        await asyncio.wait_for(task, timeout=2)

        runner.exit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_ends_when_browser_died_before_loop(self):
        """Test that a browser gone during startup doesn't leave the loop waiting."""
        gone = CleanupCallbacks("Chromium")
        gone.run_all()
        runner = FakeRunner()
        runner.register_cleanup = gone.add
        multi = MultipleTargetsExtensionRunner(MultipleTargetsRunnerParams(
            runners=[runner], desktop_notifications=AsyncMock(),
        ))
        orchestrator = ReloadOrchestrator(multi, EXTENSIONS, watch=False, no_input=True)

        await asyncio.wait_for(orchestrator.run(), timeout=2)

        runner.exit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_watches_every_source_dir(self):
        """Test that a change reloads the extension of its source dir."""
        runner = FakeRunner()
        watched = []

        async def watch_fn(**kwargs):
            watched.append(kwargs)
            await kwargs["on_change"]()
            await kwargs["stop_event"].wait()

        orchestrator = ReloadOrchestrator(
            runner, EXTENSIONS, stdin=io.StringIO(), watch_fn=watch_fn,
            ignore_files=["*.log"], debounce_ms=300,
        )

        task = asyncio.create_task(orchestrator.run())
        await asyncio.sleep(0.01)
        runner.browser_closed()
        await asyncio.wait_for(task, timeout=2)

        assert [kwargs["source_dir"] for kwargs in watched] == ["/ext/a", "/ext/b"]
        assert all(kwargs["debounce_ms"] == 300 for kwargs in watched)
        assert not watched[0]["should_watch_file"]("/ext/a/debug.log")
        assert watched[0]["should_watch_file"]("/ext/a/background.js")
        sources = [call.args[0] for call in runner.reload_extension_by_source_dir.await_args_list]
        assert sources == ["/ext/a", "/ext/b"]

    @pytest.mark.asyncio
    async def test_no_watching_without_reload(self):
        """Test that watch=False starts no watcher."""
        runner = FakeRunner()
        watch_fn = AsyncMock()
        orchestrator = ReloadOrchestrator(
            runner, EXTENSIONS, watch=False, stdin=io.StringIO(), watch_fn=watch_fn,
        )

        task = asyncio.create_task(orchestrator.run())
        await asyncio.sleep(0.01)
        runner.browser_closed()
        await asyncio.wait_for(task, timeout=2)

        watch_fn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_keypresses(self):
        """Test r reloads, z suspends and Ctrl-C exits the runner."""
        runner = FakeRunner()
        terminal = FakeTerminal(["r", "z", "R", KEY_CTRL_C])
        orchestrator = ReloadOrchestrator(
            runner, EXTENSIONS, watch=False, stdin=tty(),
            terminal_factory=lambda stream: terminal,
        )

        await asyncio.wait_for(orchestrator.run(), timeout=2)

        assert runner.reload_all_extensions.await_count == 2
        assert terminal.suspended == 1
        assert terminal.raw_modes == [True]
        assert terminal.closed
        runner.exit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_no_input(self):
        """Test that no_input never opens the terminal."""
        runner = FakeRunner()
        factory = MagicMock()
        orchestrator = ReloadOrchestrator(
            runner, EXTENSIONS, watch=False, no_input=True, stdin=tty(), terminal_factory=factory,
        )
        assert not orchestrator.interactive

        task = asyncio.create_task(orchestrator.run())
        await asyncio.sleep(0.01)
        runner.browser_closed()
        await asyncio.wait_for(task, timeout=2)

        factory.assert_not_called()

    @pytest.mark.asyncio
    async def test_reload_errors_are_logged(self):
        """Test that a failing reload doesn't end the loop."""
        runner = FakeRunner()
        runner.reload_all_extensions.side_effect = RuntimeError("boom")
        terminal = FakeTerminal(["r", KEY_CTRL_C])
        orchestrator = ReloadOrchestrator(
            runner, EXTENSIONS, watch=False, stdin=tty(),
            terminal_factory=lambda stream: terminal,
        )

        await asyncio.wait_for(orchestrator.run(), timeout=2)

        runner.exit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_shutdown_request_exits_runner(self):
        """Test that request_shutdown(exit_runner=True) closes the browsers."""
        runner = FakeRunner()
        orchestrator = ReloadOrchestrator(
            runner, EXTENSIONS, stdin=io.StringIO(), watch_fn=idle_watch,
        )

        task = asyncio.create_task(orchestrator.run())
        await asyncio.sleep(0.01)
        orchestrator.request_shutdown(exit_runner=True)
        await asyncio.wait_for(task, timeout=2)

        runner.exit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_exit_error_is_logged(self):
        """Test that an exit failure doesn't propagate."""
        runner = FakeRunner()
        runner.exit.side_effect = RuntimeError("already gone")
        orchestrator = ReloadOrchestrator(runner, EXTENSIONS, watch=False, stdin=io.StringIO())

        task = asyncio.create_task(orchestrator.run())
        await asyncio.sleep(0.01)
        orchestrator.request_shutdown(exit_runner=True)
        await asyncio.wait_for(task, timeout=2)
