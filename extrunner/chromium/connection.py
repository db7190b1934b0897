"""
Chromium DevTools protocol client over pipes.

Chromium started with ``--remote-debugging-pipe`` reads protocol messages
from fd 3 and writes its replies to fd 4. Every message is one JSON object
followed by a single NUL byte. This module provides the framing, the
request/response correlation and the disconnect handling; it does not
support event subscriptions.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from extrunner.errors import ConnectionClosedError, ProtocolError

logger = logging.getLogger(__name__)

MESSAGE_DELIMITER = b"\x00"
READ_CHUNK_SIZE = 64 * 1024


class PipeWriter(Protocol):
    """The writing half of the channel (an asyncio.StreamWriter in practice)."""

    def write(self, data: bytes) -> None: ...

    async def drain(self) -> None: ...

    def close(self) -> None: ...

    def is_closing(self) -> bool: ...


class NulFrameDecoder:
    """Split a byte stream into NUL-terminated frames.

    Bytes are buffered until a delimiter shows up, so a frame may span any
    number of reads and a single read may carry several frames.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def feed(self, data: bytes) -> list[bytes]:
        """Append data and return every frame completed by it, in order."""
        self._buffer.extend(data)

        frames: list[bytes] = []
        start = 0
        while True:
            end = self._buffer.find(MESSAGE_DELIMITER, start)
            if end == -1:
                break
            frames.append(bytes(self._buffer[start:end]))
            start = end + 1

        if start:
            del self._buffer[:start]
        return frames

    @property
    def buffered(self) -> int:
        """Number of bytes waiting for their delimiter."""
        return len(self._buffer)


@dataclass
class CDPRequest:
    """Protocol request object."""

    id: int
    method: str
    params: dict[str, Any] = field(default_factory=dict)
    session_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        request: dict[str, Any] = {
            "id": self.id,
            "method": self.method,
            "params": self.params,
        }
        if self.session_id is not None:
            request["sessionId"] = self.session_id
        return request

    def to_bytes(self) -> bytes:
        """Serialize to one NUL-terminated frame.

        json.dumps escapes control characters, so the payload itself never
        contains a literal NUL.
        """
        return json.dumps(self.to_dict()).encode("utf-8") + MESSAGE_DELIMITER


@dataclass
class PendingRequest:
    """A request waiting for its response."""

    id: int
    method: str
    future: asyncio.Future


class ChromiumConnection:
    """
    Request/response client for one Chromium instance.

    The connection owns a reader task that decodes frames from the pipe and
    queues them, and a dispatch task that matches queued messages against
    the pending requests by id. When the pipe closes every pending request
    fails with ConnectionClosedError and the connection stays disconnected.

    Example:
        connection = ChromiumConnection(reader, writer)
        result = await connection.send("Extensions.loadUnpacked", {"path": path})
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: PipeWriter,
        verbose: bool = False,
    ):
        self._reader = reader
        self._writer = writer
        self._verbose = verbose
        self._decoder = NulFrameDecoder()
        self._ids = itertools.count(1)
        self._pending: dict[int, PendingRequest] = {}
        self._incoming: asyncio.Queue[Optional[dict[str, Any]]] = asyncio.Queue()
        self._disconnected = False
        self._disconnected_event = asyncio.Event()
        self._reader_task: Optional[asyncio.Task] = None
        self._dispatch_task: Optional[asyncio.Task] = None

        if writer.is_closing() or reader.at_eof():
            self._on_disconnect("channel already closed")
        else:
            self._reader_task = asyncio.create_task(self._read_loop())
            self._dispatch_task = asyncio.create_task(self._dispatch_loop())

    @property
    def disconnected(self) -> bool:
        """Whether the channel is closed for good."""
        return self._disconnected

    @property
    def pending_count(self) -> int:
        """Get the number of pending requests."""
        return len(self._pending)

    async def wait_disconnected(self) -> None:
        """Wait until the channel is closed."""
        await self._disconnected_event.wait()

    async def send(
        self,
        method: str,
        params: Optional[dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> Any:
        """
        Call a protocol method and wait for its result.

        Args:
            method: The protocol method name
            params: Optional method parameters
            session_id: Optional target session the call is scoped to

        Returns:
            The ``result`` object of the response

        Raises:
            ProtocolError: If the browser answers with an error
            ConnectionClosedError: If the channel is or gets closed
        """
        if self._disconnected:
            raise ConnectionClosedError(method=method)

        request = CDPRequest(
            id=next(self._ids),
            method=method,
            params=params or {},
            session_id=session_id,
        )
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[request.id] = PendingRequest(request.id, method, future)

        data = request.to_bytes()
        if self._verbose:
            logger.debug(f"CDP send: {data[:-1].decode('utf-8')}")

        try:
            self._writer.write(data)
            await self._writer.drain()
        except (ConnectionError, OSError) as e:
            self._on_disconnect(f"write failed: {e}")

        return await future

    async def close(self) -> None:
        """Close the channel and stop the reader."""
        if not self._writer.is_closing():
            self._writer.close()
        self._on_disconnect("closed by client")

        for task in (self._reader_task, self._dispatch_task):
            if task and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass

    # Private methods

    async def _read_loop(self) -> None:
        """Read the pipe and queue every decoded message."""
        try:
            while True:
                chunk = await self._reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    break

                for frame in self._decoder.feed(chunk):
                    message = self._decode_frame(frame)
                    if message is not None:
                        self._incoming.put_nowait(message)
        except (ConnectionError, OSError) as e:
            logger.debug(f"CDP pipe read error: {e}")
        finally:
            self._incoming.put_nowait(None)

    async def _dispatch_loop(self) -> None:
        """Match queued messages to pending requests until the pipe closes."""
        try:
            while True:
                message = await self._incoming.get()
                if message is None:
                    break
                try:
                    self._handle_message(message)
                except Exception as e:
                    logger.warning(f"Dropping malformed CDP message: {e}")
        finally:
            self._on_disconnect("channel closed")

    def _decode_frame(self, frame: bytes) -> Optional[dict[str, Any]]:
        if self._verbose:
            logger.debug(f"CDP recv: {frame.decode('utf-8', errors='replace')}")

        try:
            message = json.loads(frame)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f"Dropping undecodable CDP message: {e}")
            return None

        if not isinstance(message, dict):
            logger.debug(f"Dropping unexpected CDP message: {message!r}")
            return None
        return message

    def _handle_message(self, message: dict[str, Any]) -> None:
        message_id = message.get("id")
        pending = self._pending.pop(message_id, None) if isinstance(message_id, int) else None
        if pending is None:
            # Events and stray responses.
            return

        if pending.future.done():
            return

        if "error" in message:
            error = message.get("error") or {}
            if not isinstance(error, dict):
                error = {"message": str(error)}
            pending.future.set_exception(
                ProtocolError(
                    error.get("message", "Unknown protocol error"),
                    method=pending.method,
                    code=error.get("code"),
                )
            )
        else:
            pending.future.set_result(message.get("result", {}))

    def _on_disconnect(self, reason: str) -> None:
        if self._disconnected:
            return
        self._disconnected = True
        logger.debug(f"CDP connection disconnected: {reason}")

        pending = list(self._pending.values())
        self._pending.clear()
        for request in pending:
            if not request.future.done():
                request.future.set_exception(ConnectionClosedError(method=request.method))

        self._disconnected_event.set()
