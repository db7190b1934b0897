"""Tests for Firefox discovery and launch."""

import asyncio
import os
import socket
from unittest.mock import patch

import pytest

from extrunner.errors import BrowserNotFoundError
from extrunner.firefox.app import find_firefox_binary, find_free_tcp_port, run
from extrunner.firefox.profile import FirefoxProfile


def fake_firefox(tmp_path):
    """A script standing in for the Firefox binary."""
    script = tmp_path / "firefox"
    script.write_text('#!/bin/sh\necho "$@"\nexec sleep 30\n')
    os.chmod(script, 0o755)
    return str(script)


class TestFindFirefoxBinary:
    """Tests for find_firefox_binary."""

    def test_found_on_path(self):
        """Test that the first candidate on PATH wins."""
        with patch("extrunner.firefox.app.platform.system", return_value="Linux"), \
                patch("extrunner.firefox.app.shutil.which", side_effect=lambda name: f"/usr/bin/{name}"):
            assert find_firefox_binary() == "/usr/bin/firefox"

    def test_not_found(self):
        """Test that None is returned without any candidate."""
        with patch("extrunner.firefox.app.platform.system", return_value="Linux"), \
                patch("extrunner.firefox.app.shutil.which", return_value=None):
            assert find_firefox_binary() is None


class TestFindFreeTcpPort:
    """Tests for find_free_tcp_port."""

    def test_port_is_bindable(self):
        """Test that the returned port can be bound."""
        port = find_free_tcp_port()
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", port))


@pytest.mark.skipif(os.name != "posix", reason="uses a shell script as browser")
class TestRun:
    """Tests for starting Firefox."""

    @pytest.mark.asyncio
    async def test_arguments(self, tmp_path):
        """Test the profile, debugger port and extra arguments."""
        profile = FirefoxProfile(path=tmp_path / "profile")

        info = await run(profile, firefox_binary=fake_firefox(tmp_path), binary_args=["-jsconsole"])
        try:
            assert info.args == [
                "-no-remote",
                "-foreground",
                "-profile", str(profile.path),
                "--start-debugger-server", str(info.debugger_port),
                "-jsconsole",
            ]
            assert info.process.returncode is None
        finally:
            await info.kill()
            await asyncio.gather(*info.output_tasks)

        assert info.process.returncode is not None
        # Killing twice is harmless
        await info.kill()

    @pytest.mark.asyncio
    async def test_missing_binary(self, tmp_path):
        """Test that a nonexistent binary raises BrowserNotFoundError."""
        with pytest.raises(BrowserNotFoundError):
            await run(FirefoxProfile(path=tmp_path), firefox_binary=str(tmp_path / "nope"))

    @pytest.mark.asyncio
    async def test_no_binary_found(self, tmp_path):
        """Test that auto-detection failing raises BrowserNotFoundError."""
        with patch("extrunner.firefox.app.find_firefox_binary", return_value=None):
            with pytest.raises(BrowserNotFoundError):
                await run(FirefoxProfile(path=tmp_path))
