"""
Firefox remote debugging protocol client.

Packets are ``<byte length>:<JSON>`` over TCP. Every request is addressed to
an actor and an actor answers one request at a time, so requests to a busy
actor wait in a queue until its active request is answered.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from dataclasses import dataclass
from typing import Any, Optional, Union

from extrunner.errors import ConnectionClosedError, RDPError

logger = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 6000
READ_CHUNK_SIZE = 64 * 1024

# Messages actors send without a request.
UNSOLICITED_EVENTS = frozenset({
    "tabNavigated",
    "styleApplied",
    "propertyChange",
    "networkEventUpdate",
    "networkEvent",
    "newMutations",
    "frameUpdate",
    "tabListChanged",
})


class RDPParseError(ValueError):
    """A packet could not be parsed.

    ``fatal`` is set when the stream can't be resynchronized.
    """

    def __init__(self, message: str, fatal: bool = False) -> None:
        super().__init__(message)
        self.fatal = fatal


@dataclass
class ParseResult:
    """Outcome of parsing the head of the incoming buffer."""

    data: bytes
    message: Optional[dict[str, Any]] = None
    error: Optional[RDPParseError] = None


def parse_rdp_message(data: bytes) -> ParseResult:
    """Parse one ``length:json`` packet from the start of data.

    Returns the remaining data along with the parsed message. Without a
    complete packet the data is returned untouched and no message is set.
    """
    sep_idx = data.find(b":")
    if sep_idx < 1:
        return ParseResult(data=data)

    try:
        byte_len = int(data[:sep_idx])
    except ValueError:
        return ParseResult(
            data=data,
            error=RDPParseError("Error parsing RDP message length", fatal=True),
        )

    if len(data) - (sep_idx + 1) < byte_len:
        return ParseResult(data=data)

    body = data[sep_idx + 1:sep_idx + 1 + byte_len]
    rest = data[sep_idx + 1 + byte_len:]

    try:
        return ParseResult(data=rest, message=json.loads(body))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        return ParseResult(data=rest, error=RDPParseError(str(e)))


def encode_rdp_message(request: dict[str, Any]) -> bytes:
    """Serialize a request packet."""
    body = json.dumps(request).encode("utf-8")
    return str(len(body)).encode("ascii") + b":" + body


@dataclass
class _QueuedRequest:
    request: dict[str, Any]
    future: asyncio.Future


class FirefoxRDPClient:
    """
    Client for the Firefox remote debugging server.

    Example:
        client = await connect_to_firefox(6000)
        root = await client.request("getRoot")
        client.disconnect()
    """

    def __init__(self) -> None:
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._incoming = b""
        self._pending: deque[_QueuedRequest] = deque()
        self._active: dict[str, asyncio.Future] = {}
        self._read_task: Optional[asyncio.Task] = None
        self._closed = False
        self.unsolicited_events: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._closed

    async def connect(self, port: int, host: str = DEFAULT_HOST) -> None:
        """Connect and wait for the greeting of the root actor.

        Raises:
            OSError: If the port refuses the connection
        """
        self._reader, self._writer = await asyncio.open_connection(host, port)

        greeting: asyncio.Future = asyncio.get_running_loop().create_future()
        self._expect_reply("root", greeting)
        self._read_task = asyncio.create_task(self._read_loop())
        await greeting

    def disconnect(self) -> None:
        """Close the connection and fail every request still waiting."""
        if self._closed:
            return
        self._closed = True

        if self._writer is not None:
            self._writer.close()
        task = self._read_task
        if task and not task.done() and task is not asyncio.current_task():
            task.cancel()

        self._reject_all_requests(ConnectionClosedError("RDP connection closed"))

    async def request(self, request: Union[str, dict[str, Any]]) -> dict[str, Any]:
        """
        Send a request and wait for the reply of the target actor.

        Args:
            request: Either a request type sent to the root actor, or a
                full request with ``to`` and ``type``

        Returns:
            The reply packet

        Raises:
            RDPError: If the actor answers with an error
            ConnectionClosedError: If the connection is closed
        """
        if isinstance(request, str):
            request = {"to": "root", "type": request}

        if request.get("to") is None:
            raise ValueError(f"Unexpected RDP request without target actor: {request.get('type')}")

        if self._closed:
            raise ConnectionClosedError("RDP connection closed")

        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending.append(_QueuedRequest(request, future))
        self._flush_pending_requests()
        return await future

    # Private methods

    def _flush_pending_requests(self) -> None:
        waiting: deque[_QueuedRequest] = deque()
        while self._pending:
            queued = self._pending.popleft()
            target = queued.request["to"]
            if target in self._active:
                waiting.append(queued)
                continue

            if self._writer is None or self._closed:
                queued.future.set_exception(ConnectionClosedError("RDP connection closed"))
                continue

            try:
                self._writer.write(encode_rdp_message(queued.request))
                self._expect_reply(target, queued.future)
            except (ConnectionError, OSError) as e:
                queued.future.set_exception(e)
        self._pending = waiting

    def _expect_reply(self, target_actor: str, future: asyncio.Future) -> None:
        if target_actor in self._active:
            raise RuntimeError(f"{target_actor} does already have an active request")
        self._active[target_actor] = future

    def _reject_all_requests(self, error: Exception) -> None:
        for future in self._active.values():
            if not future.done():
                future.set_exception(error)
        self._active.clear()

        for queued in self._pending:
            if not queued.future.done():
                queued.future.set_exception(error)
        self._pending.clear()

    def _handle_message(self, message: dict[str, Any]) -> None:
        sender = message.get("from")
        if sender is None:
            if "error" in message:
                logger.debug(f"Received RDP error without sender: {message}")
                return
            logger.warning(f"Received an RDP message without a sender actor: {message}")
            return

        if message.get("type") in UNSOLICITED_EVENTS:
            self.unsolicited_events.put_nowait(message)
            return

        future = self._active.pop(sender, None)
        if future is None:
            logger.warning(f"Unexpected RDP message received: {message}")
            return

        if not future.done():
            if "error" in message:
                future.set_exception(RDPError(
                    f"{message['error']}: {message.get('message', '')}",
                    error=message["error"],
                    actor=sender,
                ))
            else:
                future.set_result(message)
        self._flush_pending_requests()

    def _read_messages(self) -> bool:
        """Handle every complete packet in the buffer.

        Returns False when a fatal parse error closed the connection.
        """
        while True:
            result = parse_rdp_message(self._incoming)
            self._incoming = result.data

            if result.error:
                logger.error(f"Error parsing RDP packet: {result.error}")
                if result.error.fatal:
                    self.disconnect()
                    return False
                continue

            if result.message is None:
                return True

            self._handle_message(result.message)

    async def _read_loop(self) -> None:
        assert self._reader is not None
        try:
            while True:
                chunk = await self._reader.read(READ_CHUNK_SIZE)
                if not chunk:
                    logger.debug("RDP connection ended")
                    break
                self._incoming += chunk
                if not self._read_messages():
                    return
        except (ConnectionError, OSError) as e:
            logger.debug(f"RDP connection error: {e}")
        finally:
            self.disconnect()


async def connect_to_firefox(port: int, host: str = DEFAULT_HOST) -> FirefoxRDPClient:
    """Open an RDP connection to a Firefox instance."""
    client = FirefoxRDPClient()
    await client.connect(port, host)
    return client
