"""
Chromium discovery and launch with the pipe transport.

The browser is started with ``--remote-debugging-pipe``: it reads protocol
messages from fd 3 and writes replies to fd 4. Only POSIX platforms can
map the pipes onto those descriptors.
"""

from __future__ import annotations

import asyncio
import fcntl
import logging
import os
import platform
import shutil
from dataclasses import dataclass
from typing import Optional, Sequence

from extrunner.chromium.connection import ChromiumConnection
from extrunner.errors import BrowserNotFoundError, UsageError

logger = logging.getLogger(__name__)

# Chromium's default automation flags, minus the ones that would disable
# extensions or get in the way of extension development.
DEFAULT_CHROME_FLAGS = [
    "--disable-features=Translate,OptimizationHints,MediaRouter,"
    "DialMediaRouteProvider,CalculateNativeWinOcclusion,"
    "InterestFeedContentSuggestions,CertificateTransparencyComponentUpdater,"
    "AutofillServerCommunication,PrivacySandboxSettings4",
    "--disable-component-extensions-with-background-pages",
    "--disable-background-networking",
    "--disable-client-side-phishing-detection",
    "--disable-sync",
    "--metrics-recording-only",
    "--disable-default-apps",
    "--no-default-browser-check",
    "--no-first-run",
    "--disable-backgrounding-occluded-windows",
    "--disable-renderer-backgrounding",
    "--disable-background-timer-throttling",
    "--disable-ipc-flooding-protection",
    "--password-store=basic",
    "--use-mock-keychain",
    "--disable-hang-monitor",
    "--disable-prompt-on-repost",
    "--disable-domain-reliability",
]

PIPE_FLAGS = [
    "--remote-debugging-pipe",
    # Extensions.loadUnpacked is refused without it.
    "--enable-unsafe-extension-debugging",
]

# Descriptors the browser uses for the pipe transport.
BROWSER_READ_FD = 3
BROWSER_WRITE_FD = 4

_LINUX_CANDIDATES = [
    "google-chrome",
    "google-chrome-stable",
    "chromium-browser",
    "chromium",
    "microsoft-edge",
    "microsoft-edge-stable",
]

_DARWIN_CANDIDATES = [
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/Applications/Google Chrome Canary.app/Contents/MacOS/Google Chrome Canary",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
    "/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge",
]


def find_chromium_binary() -> Optional[str]:
    """Find a Chromium-based browser binary on the system.

    Returns the path to the browser executable, or None if not found.
    """
    system = platform.system()
    if system == "Darwin":
        for candidate in _DARWIN_CANDIDATES:
            if os.path.isfile(candidate):
                return candidate
        return None

    for candidate in _LINUX_CANDIDATES:
        path = shutil.which(candidate)
        if path:
            return path
    return None


@dataclass
class ChromiumInstance:
    """A running Chromium process and the protocol connection to it."""

    process: asyncio.subprocess.Process
    connection: ChromiumConnection
    binary: str
    args: list[str]

    async def kill(self, timeout: float = 5.0) -> None:
        """Terminate the browser, killing it if it doesn't exit in time."""
        if self.process.returncode is None:
            self.process.terminate()
            try:
                await asyncio.wait_for(self.process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.debug("Chromium did not exit on SIGTERM, killing it")
                self.process.kill()
                await self.process.wait()
        await self.connection.close()


async def launch_chromium(
    chrome_flags: Sequence[str],
    user_data_dir: str,
    chrome_path: Optional[str] = None,
    starting_url: Optional[str] = None,
    verbose: bool = False,
) -> ChromiumInstance:
    """
    Start a Chromium instance with the pipe transport enabled.

    Args:
        chrome_flags: Extra command line flags
        user_data_dir: The user-data-dir to launch on
        chrome_path: Browser binary (auto-detected if not specified)
        starting_url: Optional URL opened on startup
        verbose: Log every protocol message

    Returns:
        The running instance

    Raises:
        BrowserNotFoundError: If no browser binary can be found
        UsageError: On platforms without fd inheritance (Windows)
    """
    if os.name != "posix":
        raise UsageError("The Chromium pipe transport is only supported on POSIX systems")

    binary = chrome_path or find_chromium_binary()
    if not binary:
        raise BrowserNotFoundError(
            "No Chromium-based browser found. Install Chrome or Chromium, "
            "or pass --chromium-binary"
        )

    args = [
        *DEFAULT_CHROME_FLAGS,
        *PIPE_FLAGS,
        f"--user-data-dir={user_data_dir}",
        *chrome_flags,
    ]
    if starting_url:
        args.append(starting_url)

    browser_read, parent_write = os.pipe()
    parent_read, browser_write = os.pipe()

    def _map_pipe_fds() -> None:
        # Move both ends above the target descriptors first so the dup2
        # calls can't clobber each other.
        read_fd = fcntl.fcntl(browser_read, fcntl.F_DUPFD, 10)
        write_fd = fcntl.fcntl(browser_write, fcntl.F_DUPFD, 10)
        os.dup2(read_fd, BROWSER_READ_FD)
        os.dup2(write_fd, BROWSER_WRITE_FD)
        os.close(read_fd)
        os.close(write_fd)

    logger.debug(f"Starting Chromium: {binary} {' '.join(args)}")

    try:
        process = await asyncio.create_subprocess_exec(
            binary,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.DEVNULL,
            close_fds=False,
            preexec_fn=_map_pipe_fds,
        )
    except FileNotFoundError:
        for fd in (browser_read, parent_write, parent_read, browser_write):
            os.close(fd)
        raise BrowserNotFoundError(f"Chromium binary not found: {binary}")

    os.close(browser_read)
    os.close(browser_write)

    loop = asyncio.get_running_loop()

    reader = asyncio.StreamReader()
    await loop.connect_read_pipe(
        lambda: asyncio.StreamReaderProtocol(reader),
        os.fdopen(parent_read, "rb", 0),
    )
    write_transport, write_protocol = await loop.connect_write_pipe(
        asyncio.streams.FlowControlMixin,
        os.fdopen(parent_write, "wb", 0),
    )
    writer = asyncio.StreamWriter(write_transport, write_protocol, None, loop)

    logger.info(f"Chromium started (pid {process.pid})")
    return ChromiumInstance(
        process=process,
        connection=ChromiumConnection(reader, writer, verbose=verbose),
        binary=binary,
        args=args,
    )
