"""Tests for the WebSocket transports and the standalone media server."""

import socket

import aiohttp
import pytest

from voicerelay.errors import BridgeConnectionError, TransportClosed
from voicerelay.transports.websocket import WebSocketClientTransport, WebSocketServer


def _free_port() -> int:
    with socket.socket() as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]


def _echo_once(received):
    async def handler(transport):
        received.append(await transport.recv())
        await transport.send("pong")
        await transport.disconnect()

    return handler


class TestWebSocketServer:

    @pytest.mark.asyncio
    async def test_handler_receives_connection(self):
        received = []
        port = _free_port()
        server = WebSocketServer("127.0.0.1", port, "/media", handler=_echo_once(received))
        await server.start()
        try:
            client = WebSocketClientTransport(f"ws://127.0.0.1:{port}/media")
            await client.connect()
            assert client.is_connected()
            await client.send("ping")
            assert await client.recv() == "pong"
            await client.disconnect()
            assert not client.is_connected()
        finally:
            await server.stop()
        assert received == ["ping"]

    @pytest.mark.asyncio
    async def test_wrong_path_rejected(self):
        received = []
        port = _free_port()
        server = WebSocketServer("127.0.0.1", port, "/media", handler=_echo_once(received))
        await server.start()
        try:
            client = WebSocketClientTransport(f"ws://127.0.0.1:{port}/other")
            await client.connect()
            with pytest.raises(TransportClosed):
                await client.recv()
            await client.disconnect()
        finally:
            await server.stop()
        assert received == []

    @pytest.mark.asyncio
    async def test_hybrid_mode_serves_http_and_websocket(self):
        received = []
        port = _free_port()

        async def http_handler(request):
            return 200, "application/xml", b"<Response />"

        server = WebSocketServer(
            "127.0.0.1",
            port,
            "/media",
            handler=_echo_once(received),
            http_handler=http_handler,
        )
        await server.start()
        try:
            async with aiohttp.ClientSession() as session:
                async with session.post(f"http://127.0.0.1:{port}/voice") as resp:
                    assert resp.status == 200
                    assert await resp.text() == "<Response />"

            client = WebSocketClientTransport(f"ws://127.0.0.1:{port}/media")
            await client.connect()
            await client.send("ping")
            assert await client.recv() == "pong"
            await client.disconnect()
        finally:
            await server.stop()
        assert received == ["ping"]


class TestWebSocketClientTransport:

    @pytest.mark.asyncio
    async def test_connect_refused(self):
        client = WebSocketClientTransport(f"ws://127.0.0.1:{_free_port()}/")
        with pytest.raises(BridgeConnectionError):
            await client.connect()

    @pytest.mark.asyncio
    async def test_send_before_connect(self):
        client = WebSocketClientTransport("ws://127.0.0.1:1/")
        with pytest.raises(TransportClosed):
            await client.send("x")
        with pytest.raises(TransportClosed):
            await client.recv()

    @pytest.mark.asyncio
    async def test_missing_url(self):
        with pytest.raises(ValueError):
            await WebSocketClientTransport().connect()
