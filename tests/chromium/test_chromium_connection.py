"""Tests for the Chromium pipe protocol connection."""

import asyncio
import json

import pytest

from extrunner.chromium.connection import CDPRequest, ChromiumConnection, NulFrameDecoder
from extrunner.errors import ConnectionClosedError, ProtocolError


class FakeWriter:
    """Collects written frames in place of a pipe StreamWriter."""

    def __init__(self, closing: bool = False):
        self.frames: list[bytes] = []
        self.closed = False
        self._closing = closing

    def write(self, data: bytes) -> None:
        self.frames.append(data)

    async def drain(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True
        self._closing = True

    def is_closing(self) -> bool:
        return self._closing

    def sent(self) -> list[dict]:
        return [json.loads(frame[:-1]) for frame in self.frames]


def frame(message: dict) -> bytes:
    return json.dumps(message).encode("utf-8") + b"\x00"


async def settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


class TestNulFrameDecoder:
    """Tests for NUL frame splitting."""

    def test_single_frame(self) -> None:
        """Test a complete frame in one chunk."""
        decoder = NulFrameDecoder()
        assert decoder.feed(b'{"id":1}\x00') == [b'{"id":1}']
        assert decoder.buffered == 0

    def test_frame_split_across_chunks(self) -> None:
        """Test that a partial frame is kept until its delimiter arrives."""
        decoder = NulFrameDecoder()
        assert decoder.feed(b'{"id"') == []
        assert decoder.buffered == 5
        assert decoder.feed(b':1}') == []
        assert decoder.feed(b'\x00') == [b'{"id":1}']
        assert decoder.buffered == 0

    def test_several_frames_in_one_chunk(self) -> None:
        """Test that frames come out in order with the remainder kept."""
        decoder = NulFrameDecoder()
        frames = decoder.feed(b'{"id":1}\x00{"id":2}\x00{"id"')
        assert frames == [b'{"id":1}', b'{"id":2}']
        assert decoder.feed(b':3}\x00') == [b'{"id":3}']

    def test_byte_by_byte(self) -> None:
        """Test feeding one byte at a time."""
        decoder = NulFrameDecoder()
        frames = []
        for byte in b'{"a":1}\x00{"b":2}\x00':
            frames.extend(decoder.feed(bytes([byte])))
        assert frames == [b'{"a":1}', b'{"b":2}']


class TestCDPRequest:
    """Tests for request serialization."""

    def test_to_bytes_ends_with_nul(self) -> None:
        """Test that a request is one NUL-terminated JSON frame."""
        data = CDPRequest(id=7, method="Target.getTargets").to_bytes()
        assert data.endswith(b"\x00")
        assert data.count(b"\x00") == 1
        assert json.loads(data[:-1]) == {"id": 7, "method": "Target.getTargets", "params": {}}

    def test_session_id_included(self) -> None:
        """Test that a session id is sent as sessionId."""
        request = CDPRequest(id=1, method="Runtime.evaluate", session_id="S1")
        assert request.to_dict()["sessionId"] == "S1"

    def test_nul_in_params_is_escaped(self) -> None:
        """Test that a NUL inside a string param doesn't end the frame early."""
        data = CDPRequest(id=1, method="Runtime.evaluate", params={"expression": "a\x00b"}).to_bytes()
        assert data.count(b"\x00") == 1


class TestChromiumConnection:
    """Tests for request/response correlation and disconnects."""

    @pytest.mark.asyncio
    async def test_send_resolves_with_result(self) -> None:
        """Test that a response resolves the request with the same id."""
        reader = asyncio.StreamReader()
        writer = FakeWriter()
        connection = ChromiumConnection(reader, writer)

        task = asyncio.create_task(connection.send("Extensions.loadUnpacked", {"path": "/ext"}))
        await settle()

        assert writer.sent() == [
            {"id": 1, "method": "Extensions.loadUnpacked", "params": {"path": "/ext"}}
        ]
        assert connection.pending_count == 1

        reader.feed_data(frame({"id": 1, "result": {"id": "abcdef"}}))
        assert await task == {"id": "abcdef"}
        assert connection.pending_count == 0

        await connection.close()

    @pytest.mark.asyncio
    async def test_ids_increase(self) -> None:
        """Test that every request gets a fresh id."""
        reader = asyncio.StreamReader()
        writer = FakeWriter()
        connection = ChromiumConnection(reader, writer)

        first = asyncio.create_task(connection.send("A"))
        second = asyncio.create_task(connection.send("B"))
        await settle()

        assert [message["id"] for message in writer.sent()] == [1, 2]

        # Answered out of order
        reader.feed_data(frame({"id": 2, "result": {"b": True}}) + frame({"id": 1, "result": {"a": True}}))
        assert await first == {"a": True}
        assert await second == {"b": True}

        await connection.close()

    @pytest.mark.asyncio
    async def test_error_response_raises_protocol_error(self) -> None:
        """Test that an error response fails the request."""
        reader = asyncio.StreamReader()
        connection = ChromiumConnection(reader, FakeWriter())

        task = asyncio.create_task(connection.send("Extensions.loadUnpacked", {"path": "/ext"}))
        await settle()
        reader.feed_data(frame({
            "id": 1,
            "error": {"code": -32601, "message": "'Extensions.loadUnpacked' wasn't found"},
        }))

        with pytest.raises(ProtocolError) as exc_info:
            await task
        assert exc_info.value.message == "'Extensions.loadUnpacked' wasn't found"
        assert exc_info.value.code == -32601
        assert exc_info.value.method == "Extensions.loadUnpacked"

        await connection.close()

    @pytest.mark.asyncio
    async def test_error_that_is_not_an_object(self) -> None:
        """Test that a string error fails its request and keeps the others alive."""
        reader = asyncio.StreamReader()
        connection = ChromiumConnection(reader, FakeWriter())

        first = asyncio.create_task(connection.send("Runtime.evaluate"))
        second = asyncio.create_task(connection.send("Target.getTargets"))
        third = asyncio.create_task(connection.send("Target.closeTarget"))
        await settle()

        reader.feed_data(frame({"id": 1, "error": "boom"}) + frame({"id": 2, "result": {"ok": 1}}))

        with pytest.raises(ProtocolError) as exc_info:
            await first
        assert exc_info.value.message == "boom"
        assert await second == {"ok": 1}

        reader.feed_eof()
        await asyncio.wait_for(connection.wait_disconnected(), timeout=1)
        with pytest.raises(ConnectionClosedError):
            await third
        assert connection.pending_count == 0

    @pytest.mark.asyncio
    async def test_response_split_across_reads(self) -> None:
        """Test a response that arrives in pieces."""
        reader = asyncio.StreamReader()
        connection = ChromiumConnection(reader, FakeWriter())

        task = asyncio.create_task(connection.send("Target.getTargets"))
        await settle()

        data = frame({"id": 1, "result": {"targetInfos": []}})
        reader.feed_data(data[:10])
        await settle()
        assert not task.done()
        reader.feed_data(data[10:])

        assert await task == {"targetInfos": []}
        await connection.close()

    @pytest.mark.asyncio
    async def test_events_are_ignored(self) -> None:
        """Test that messages without a pending id don't disturb requests."""
        reader = asyncio.StreamReader()
        connection = ChromiumConnection(reader, FakeWriter())

        task = asyncio.create_task(connection.send("Target.createTarget", {"url": "chrome://version"}))
        await settle()
        reader.feed_data(
            frame({"method": "Target.targetCreated", "params": {}})
            + b"not json\x00"
            + frame({"id": 99, "result": {}})
            + frame({"id": 1, "result": {"targetId": "T1"}})
        )

        assert await task == {"targetId": "T1"}
        await connection.close()

    @pytest.mark.asyncio
    async def test_disconnect_rejects_every_pending_request(self) -> None:
        """Test that closing the pipe fails all pending requests once."""
        reader = asyncio.StreamReader()
        connection = ChromiumConnection(reader, FakeWriter())

        tasks = [asyncio.create_task(connection.send(f"Method.n{i}")) for i in range(3)]
        await settle()
        assert connection.pending_count == 3

        reader.feed_eof()
        results = await asyncio.gather(*tasks, return_exceptions=True)

        assert all(isinstance(result, ConnectionClosedError) for result in results)
        assert connection.pending_count == 0
        assert connection.disconnected

        # A second disconnect has no effect
        await connection.close()
        assert connection.disconnected
        assert connection.pending_count == 0

    @pytest.mark.asyncio
    async def test_send_after_disconnect_fails(self) -> None:
        """Test that new requests fail once disconnected."""
        reader = asyncio.StreamReader()
        writer = FakeWriter()
        connection = ChromiumConnection(reader, writer)

        reader.feed_eof()
        await asyncio.wait_for(connection.wait_disconnected(), timeout=1)

        with pytest.raises(ConnectionClosedError):
            await connection.send("Target.getTargets")
        assert writer.frames == []

    @pytest.mark.asyncio
    async def test_already_closed_channel(self) -> None:
        """Test a channel closed before the connection was created."""
        reader = asyncio.StreamReader()
        reader.feed_eof()
        writer = FakeWriter()

        connection = ChromiumConnection(reader, writer)
        assert connection.disconnected

        with pytest.raises(ConnectionClosedError):
            await connection.send("Extensions.loadUnpacked", {"path": "/ext"})
        assert writer.frames == []

    @pytest.mark.asyncio
    async def test_closing_writer_counts_as_closed(self) -> None:
        """Test a writer that is already closing."""
        writer = FakeWriter(closing=True)
        connection = ChromiumConnection(asyncio.StreamReader(), writer)

        assert connection.disconnected
        await asyncio.wait_for(connection.wait_disconnected(), timeout=1)
        assert writer.frames == []

    @pytest.mark.asyncio
    async def test_close_closes_writer(self) -> None:
        """Test that close() closes the writing half."""
        writer = FakeWriter()
        connection = ChromiumConnection(asyncio.StreamReader(), writer)

        await connection.close()

        assert writer.closed
        assert connection.disconnected
