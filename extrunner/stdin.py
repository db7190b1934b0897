"""Raw-mode keypress input from an interactive terminal."""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
import termios
from typing import Any, AsyncIterator, Optional, TextIO

logger = logging.getLogger(__name__)

KEY_CTRL_C = "\x03"

_READ_SIZE = 32


def is_tty(stream: Any) -> bool:
    """Whether a stream is attached to a terminal."""
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


class TerminalInput:
    """
    Keypresses of a terminal in raw mode.

    In raw mode keys are delivered one by one without echo, and Ctrl-C
    arrives as a key instead of raising SIGINT.

    Example:
        terminal = TerminalInput()
        terminal.set_raw_mode(True)
        async for key in terminal.keypresses():
            ...
    """

    def __init__(self, stream: TextIO = sys.stdin):
        self.stream = stream
        self.fd = stream.fileno()
        self._saved_attrs: Optional[list[Any]] = None
        self._keys: asyncio.Queue[Optional[str]] = asyncio.Queue()

    @property
    def raw_mode(self) -> bool:
        return self._saved_attrs is not None

    def set_raw_mode(self, enabled: bool) -> None:
        """Switch the terminal to raw mode, or back to the saved mode."""
        if enabled:
            if self._saved_attrs is not None:
                return
            self._saved_attrs = termios.tcgetattr(self.fd)
            attrs = termios.tcgetattr(self.fd)
            attrs[0] &= ~(termios.IXON | termios.ICRNL)
            attrs[3] &= ~(termios.ECHO | termios.ICANON | termios.ISIG | termios.IEXTEN)
            attrs[6][termios.VMIN] = 1
            attrs[6][termios.VTIME] = 0
            termios.tcsetattr(self.fd, termios.TCSANOW, attrs)
        elif self._saved_attrs is not None:
            termios.tcsetattr(self.fd, termios.TCSANOW, self._saved_attrs)
            self._saved_attrs = None

    def suspend(self) -> None:
        """Suspend the own process like Ctrl-Z in cooked mode would.

        Returns once the process is resumed, in raw mode again.
        """
        self.set_raw_mode(False)
        logger.debug("Suspending on keypress")
        os.kill(os.getpid(), signal.SIGTSTP)
        logger.debug("Resumed")
        self.set_raw_mode(True)

    async def keypresses(self) -> AsyncIterator[str]:
        """Yield keys as they are pressed, until close() is called."""
        loop = asyncio.get_running_loop()
        loop.add_reader(self.fd, self._on_readable)
        try:
            while True:
                key = await self._keys.get()
                if key is None:
                    break
                yield key
        finally:
            loop.remove_reader(self.fd)

    def close(self) -> None:
        """Stop the keypress iteration and restore the terminal mode."""
        self._keys.put_nowait(None)
        self.set_raw_mode(False)

    def _on_readable(self) -> None:
        try:
            data = os.read(self.fd, _READ_SIZE)
        except OSError as e:
            logger.debug(f"Error reading keypresses: {e}")
            data = b""

        if not data:
            # End of input
            self._keys.put_nowait(None)
            return

        for key in data.decode(errors="replace"):
            self._keys.put_nowait(key)
