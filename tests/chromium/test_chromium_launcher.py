"""Tests for Chromium discovery and launch."""

from unittest.mock import patch

import pytest

from extrunner.chromium.launcher import (
    DEFAULT_CHROME_FLAGS,
    PIPE_FLAGS,
    find_chromium_binary,
    launch_chromium,
)
from extrunner.errors import BrowserNotFoundError


class TestFlags:
    """Tests for the default flags."""

    def test_pipe_transport_enabled(self):
        """Test that the pipe transport flag is present."""
        assert "--remote-debugging-pipe" in PIPE_FLAGS

    def test_extensions_not_disabled(self):
        """Test that no default flag disables extensions."""
        assert "--disable-extensions" not in DEFAULT_CHROME_FLAGS


class TestFindChromiumBinary:
    """Tests for find_chromium_binary."""

    def test_found_on_path(self):
        """Test that the first candidate on PATH wins."""
        def fake_which(name):
            return f"/usr/bin/{name}" if name == "chromium" else None

        with patch("extrunner.chromium.launcher.platform.system", return_value="Linux"), \
                patch("extrunner.chromium.launcher.shutil.which", side_effect=fake_which):
            assert find_chromium_binary() == "/usr/bin/chromium"

    def test_not_found(self):
        """Test that None is returned without any candidate."""
        with patch("extrunner.chromium.launcher.platform.system", return_value="Linux"), \
                patch("extrunner.chromium.launcher.shutil.which", return_value=None):
            assert find_chromium_binary() is None


class TestLaunchChromium:
    """Tests for launch_chromium error paths."""

    @pytest.mark.asyncio
    async def test_no_binary(self, tmp_path):
        """Test that a missing browser raises BrowserNotFoundError."""
        with patch("extrunner.chromium.launcher.find_chromium_binary", return_value=None):
            with pytest.raises(BrowserNotFoundError):
                await launch_chromium([], user_data_dir=str(tmp_path))

    @pytest.mark.asyncio
    async def test_binary_does_not_exist(self, tmp_path):
        """Test that a nonexistent binary raises BrowserNotFoundError."""
        with pytest.raises(BrowserNotFoundError):
            await launch_chromium(
                [],
                user_data_dir=str(tmp_path),
                chrome_path=str(tmp_path / "no-such-chrome"),
            )
