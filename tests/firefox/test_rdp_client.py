"""Tests for the Firefox remote debugging protocol client."""

import asyncio
import json
from unittest.mock import MagicMock

import pytest

from extrunner.errors import ConnectionClosedError, RDPError
from extrunner.firefox.rdp_client import (
    FirefoxRDPClient,
    connect_to_firefox,
    encode_rdp_message,
    parse_rdp_message,
)


def packet(message: dict) -> bytes:
    body = json.dumps(message).encode("utf-8")
    return str(len(body)).encode() + b":" + body


def connected_client() -> FirefoxRDPClient:
    client = FirefoxRDPClient()
    client._writer = MagicMock()
    return client


def written(client: FirefoxRDPClient) -> list[dict]:
    messages = []
    for call in client._writer.write.call_args_list:
        data = call.args[0]
        messages.append(json.loads(data[data.index(b":") + 1:]))
    return messages


class TestParseRdpMessage:
    """Tests for packet parsing."""

    def test_complete_packet(self) -> None:
        """Test a packet followed by more data."""
        result = parse_rdp_message(packet({"from": "root"}) + b"12:")
        assert result.message == {"from": "root"}
        assert result.data == b"12:"
        assert result.error is None

    def test_incomplete_packet(self) -> None:
        """Test that a partial packet leaves the data untouched."""
        data = packet({"from": "root"})[:-3]
        result = parse_rdp_message(data)
        assert result.message is None
        assert result.data == data

    def test_no_separator_yet(self) -> None:
        """Test data without the length separator."""
        result = parse_rdp_message(b"12")
        assert result.message is None
        assert result.data == b"12"

    def test_invalid_length_is_fatal(self) -> None:
        """Test that a non numeric length can't be recovered."""
        result = parse_rdp_message(b"abc:{}")
        assert result.error is not None
        assert result.error.fatal

    def test_invalid_json_is_skipped(self) -> None:
        """Test that a broken body is dropped with the stream kept in sync."""
        result = parse_rdp_message(b"3:{x}" + packet({"from": "a"}))
        assert result.error is not None
        assert not result.error.fatal
        assert parse_rdp_message(result.data).message == {"from": "a"}

    def test_length_counts_bytes(self) -> None:
        """Test that the length is a byte length, not a character count."""
        data = packet({"from": "root", "title": "héllo"})
        assert parse_rdp_message(data).message["title"] == "héllo"

    def test_encode(self) -> None:
        """Test request encoding."""
        data = encode_rdp_message({"to": "root", "type": "getRoot"})
        assert parse_rdp_message(data).message == {"to": "root", "type": "getRoot"}


class TestFirefoxRDPClient:
    """Tests for request queueing and replies."""

    @pytest.mark.asyncio
    async def test_string_request_goes_to_root(self) -> None:
        """Test that a bare type is addressed to the root actor."""
        client = connected_client()

        task = asyncio.create_task(client.request("getRoot"))
        await asyncio.sleep(0)
        assert written(client) == [{"to": "root", "type": "getRoot"}]

        client._handle_message({"from": "root", "addonsActor": "server1.conn0.addonsActor1"})
        assert (await task)["addonsActor"] == "server1.conn0.addonsActor1"

    @pytest.mark.asyncio
    async def test_request_without_target(self) -> None:
        """Test that a request needs a target actor."""
        with pytest.raises(ValueError):
            await connected_client().request({"type": "getRoot"})

    @pytest.mark.asyncio
    async def test_one_active_request_per_actor(self) -> None:
        """Test that a second request to a busy actor waits for the reply."""
        client = connected_client()

        first = asyncio.create_task(client.request({"to": "addon1", "type": "requestTypes"}))
        second = asyncio.create_task(client.request({"to": "addon1", "type": "reload"}))
        other = asyncio.create_task(client.request({"to": "root", "type": "listAddons"}))
        await asyncio.sleep(0)

        assert [m["type"] for m in written(client)] == ["requestTypes", "listAddons"]

        client._handle_message({"from": "addon1", "requestTypes": ["reload"]})
        assert (await first)["requestTypes"] == ["reload"]
        assert [m["type"] for m in written(client)] == ["requestTypes", "listAddons", "reload"]

        client._handle_message({"from": "addon1"})
        client._handle_message({"from": "root", "addons": []})
        assert await second == {"from": "addon1"}
        assert await other == {"from": "root", "addons": []}

    @pytest.mark.asyncio
    async def test_error_reply(self) -> None:
        """Test that an error reply raises RDPError."""
        client = connected_client()

        task = asyncio.create_task(client.request({"to": "addons1", "type": "installTemporaryAddon"}))
        await asyncio.sleep(0)
        client._handle_message({"from": "addons1", "error": "fileNotFound", "message": "no such dir"})

        with pytest.raises(RDPError) as exc_info:
            await task
        assert exc_info.value.error == "fileNotFound"
        assert exc_info.value.actor == "addons1"
        assert str(exc_info.value) == "fileNotFound: no such dir"

    @pytest.mark.asyncio
    async def test_unsolicited_events_are_queued(self) -> None:
        """Test that events don't answer the active request."""
        client = connected_client()

        task = asyncio.create_task(client.request({"to": "tab1", "type": "attach"}))
        await asyncio.sleep(0)
        client._handle_message({"from": "tab1", "type": "tabNavigated", "url": "about:blank"})

        assert not task.done()
        event = client.unsolicited_events.get_nowait()
        assert event["type"] == "tabNavigated"

        client._handle_message({"from": "tab1", "type": "tabAttached"})
        assert (await task)["type"] == "tabAttached"

    @pytest.mark.asyncio
    async def test_disconnect_rejects_requests(self) -> None:
        """Test that active and queued requests fail on disconnect."""
        client = connected_client()

        first = asyncio.create_task(client.request({"to": "a", "type": "x"}))
        queued = asyncio.create_task(client.request({"to": "a", "type": "y"}))
        await asyncio.sleep(0)

        client.disconnect()
        client.disconnect()

        for task in (first, queued):
            with pytest.raises(ConnectionClosedError):
                await task
        with pytest.raises(ConnectionClosedError):
            await client.request("getRoot")

    @pytest.mark.asyncio
    async def test_fatal_parse_error_disconnects(self) -> None:
        """Test that an unparseable length closes the connection."""
        client = connected_client()

        task = asyncio.create_task(client.request("getRoot"))
        await asyncio.sleep(0)
        client._incoming = b"xx:{}"

        assert client._read_messages() is False
        with pytest.raises(ConnectionClosedError):
            await task
        assert not client.connected


class TestConnectToFirefox:
    """Tests against a local debugger server."""

    @pytest.mark.asyncio
    async def test_connect_and_request(self) -> None:
        """Test the greeting and a request round trip over TCP."""
        async def serve(reader, writer):
            writer.write(packet({"from": "root", "applicationType": "browser"}))
            await writer.drain()
            data = await reader.read(1024)
            request = parse_rdp_message(data).message
            # Reply in two writes to exercise buffering
            reply = packet({"from": request["to"], "addonsActor": "addons1"})
            writer.write(reply[:5])
            await writer.drain()
            writer.write(reply[5:])
            await writer.drain()
            await reader.read(1024)
            writer.close()

        server = await asyncio.start_server(serve, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        try:
            client = await connect_to_firefox(port)
            assert client.connected
            root = await client.request("getRoot")
            assert root["addonsActor"] == "addons1"
            client.disconnect()
            assert not client.connected
        finally:
            server.close()
            await server.wait_closed()

    @pytest.mark.asyncio
    async def test_connection_refused(self) -> None:
        """Test that a closed port raises ConnectionRefusedError."""
        server = await asyncio.start_server(lambda r, w: None, "127.0.0.1", 0)
        port = server.sockets[0].getsockname()[1]
        server.close()
        await server.wait_closed()

        with pytest.raises(ConnectionRefusedError):
            await connect_to_firefox(port)
