"""
Firefox discovery and launch.

Firefox is started on a dedicated profile with its remote debugging server
listening on a free local port.
"""

from __future__ import annotations

import asyncio
import logging
import os
import platform
import shutil
import socket
from dataclasses import dataclass, field
from typing import Optional, Sequence

from extrunner.errors import BrowserNotFoundError
from extrunner.firefox.profile import FirefoxProfile

logger = logging.getLogger(__name__)

DEFAULT_FIREFOX_ENV = {
    "XPCOM_DEBUG_BREAK": "stack",
    "NS_TRACE_MALLOC_DISABLE_STACKS": "1",
}

_LINUX_CANDIDATES = ["firefox", "firefox-developer-edition", "firefox-nightly", "firefox-esr"]

_DARWIN_CANDIDATES = [
    "/Applications/Firefox.app/Contents/MacOS/firefox",
    "/Applications/Firefox Developer Edition.app/Contents/MacOS/firefox",
    "/Applications/Firefox Nightly.app/Contents/MacOS/firefox",
]


def find_firefox_binary() -> Optional[str]:
    """Find a Firefox binary on the system.

    Returns the path to the executable, or None if not found.
    """
    if platform.system() == "Darwin":
        for candidate in _DARWIN_CANDIDATES:
            if os.path.isfile(candidate):
                return candidate
        return None

    for candidate in _LINUX_CANDIDATES:
        path = shutil.which(candidate)
        if path:
            return path
    return None


def find_free_tcp_port(host: str = "127.0.0.1") -> int:
    """Ask the OS for a free local port."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind((host, 0))
        return sock.getsockname()[1]


@dataclass
class FirefoxInfo:
    """A running Firefox process."""

    process: asyncio.subprocess.Process
    debugger_port: int
    binary: str
    args: list[str] = field(default_factory=list)
    output_tasks: list[asyncio.Task] = field(default_factory=list, repr=False)

    async def kill(self, timeout: float = 5.0) -> None:
        """Terminate Firefox, killing it if it doesn't exit in time."""
        if self.process.returncode is not None:
            return
        self.process.terminate()
        try:
            await asyncio.wait_for(self.process.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.debug("Firefox did not exit on SIGTERM, killing it")
            self.process.kill()
            await self.process.wait()


async def _log_output(stream: Optional[asyncio.StreamReader], name: str) -> None:
    if stream is None:
        return
    while True:
        line = await stream.readline()
        if not line:
            break
        logger.debug(f"Firefox {name}: {line.decode(errors='replace').rstrip()}")


async def run(
    profile: FirefoxProfile,
    firefox_binary: Optional[str] = None,
    binary_args: Optional[Sequence[str]] = None,
) -> FirefoxInfo:
    """
    Start Firefox on a profile with the remote debugger enabled.

    Args:
        profile: Profile to launch on
        firefox_binary: Firefox executable (auto-detected if not specified)
        binary_args: Extra command line arguments

    Returns:
        The running instance and its debugger port

    Raises:
        BrowserNotFoundError: If no Firefox binary can be found
    """
    binary = firefox_binary or find_firefox_binary()
    if not binary:
        raise BrowserNotFoundError(
            "No Firefox binary found. Install Firefox or pass --firefox"
        )

    debugger_port = find_free_tcp_port()
    args = [
        "-no-remote",
        "-foreground",
        "-profile", str(profile.path),
        "--start-debugger-server", str(debugger_port),
        *(binary_args or []),
    ]

    logger.info(f"Running Firefox with profile at {profile.path}")
    logger.debug(f"Executing Firefox binary: {binary} {' '.join(args)}")

    try:
        process = await asyncio.create_subprocess_exec(
            binary,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env={**os.environ, **DEFAULT_FIREFOX_ENV},
        )
    except FileNotFoundError:
        raise BrowserNotFoundError(f"Firefox binary not found: {binary}")

    output_tasks = [
        asyncio.create_task(_log_output(process.stdout, "stdout")),
        asyncio.create_task(_log_output(process.stderr, "stderr")),
    ]

    logger.info("Use --verbose or open Tools > Browser Tools > Browser Console to see logging")
    return FirefoxInfo(
        process=process,
        debugger_port=debugger_port,
        binary=binary,
        args=args,
        output_tasks=output_tasks,
    )
