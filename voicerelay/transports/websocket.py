"""WebSocket transports for voicerelay.

``WebSocketClientTransport`` dials the realtime model. ``WebSocketServerTransport``
wraps a telephony connection that was already accepted, and ``WebSocketServer``
accepts those connections with the ``websockets`` library.

When an ``http_handler`` is provided, the server uses ``aiohttp`` instead so
that the TwiML webhook and the media stream share one port.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable

import aiohttp
import aiohttp.web as aioweb
import websockets.asyncio.client
import websockets.asyncio.server
from loguru import logger
from websockets.exceptions import ConnectionClosed

from voicerelay.errors import BridgeConnectionError, TransportClosed
from voicerelay.transports.base import BaseTransport

ConnectionHandler = Callable[["WebSocketServerTransport"], Awaitable[None]]
HttpHandler = Callable[[Any], Awaitable[tuple[int, str, bytes]]]


class WebSocketClientTransport(BaseTransport):
    """Outbound WebSocket connection, e.g. to the realtime model endpoint."""

    def __init__(
        self,
        url: str | None = None,
        headers: dict[str, str] | None = None,
        **ws_kwargs: Any,
    ) -> None:
        self._url = url
        self._headers = headers or {}
        self._ws: Any | None = None
        self._ws_kwargs = ws_kwargs

    async def connect(self, **kwargs) -> None:
        url = kwargs.get("url", self._url)
        if not url:
            raise ValueError("WebSocket URL is required")
        self._url = url
        logger.info(f"Connecting to {url}")
        try:
            self._ws = await websockets.asyncio.client.connect(
                url,
                additional_headers=self._headers,
                **self._ws_kwargs,
            )
        except (OSError, websockets.exceptions.InvalidHandshake) as e:
            raise BridgeConnectionError(f"Could not connect to {url}: {e}") from e
        logger.info(f"Connected to {url}")

    async def send(self, data: bytes | str) -> None:
        if self._ws is None:
            raise TransportClosed("Not connected")
        try:
            await self._ws.send(data)
        except ConnectionClosed as e:
            raise TransportClosed(str(e)) from e

    async def recv(self) -> bytes | str:
        if self._ws is None:
            raise TransportClosed("Not connected")
        try:
            return await self._ws.recv()
        except ConnectionClosed as e:
            raise TransportClosed(str(e)) from e

    async def disconnect(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            await ws.close()
            logger.info(f"Disconnected from {self._url}")

    def is_connected(self) -> bool:
        return self._ws is not None


class WebSocketServerTransport(BaseTransport):
    """Wraps an accepted inbound connection (telephony provider side)."""

    def __init__(self, websocket: Any = None) -> None:
        self._ws = websocket
        self.path: str = getattr(websocket, "path", "") or ""

    async def connect(self, **kwargs) -> None:
        ws = kwargs.get("websocket")
        if ws:
            self._ws = ws
        if not self._ws:
            raise ValueError("An accepted WebSocket connection is required")

    async def send(self, data: bytes | str) -> None:
        if self._ws is None:
            raise TransportClosed("Not connected")
        try:
            await self._ws.send(data)
        except ConnectionClosed as e:
            raise TransportClosed(str(e)) from e

    async def recv(self) -> bytes | str:
        if self._ws is None:
            raise TransportClosed("Not connected")
        try:
            return await self._ws.recv()
        except ConnectionClosed as e:
            raise TransportClosed(str(e)) from e

    async def disconnect(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None:
            try:
                await ws.close()
            except (ConnectionClosed, OSError) as e:
                logger.debug(f"Ignoring error while closing telephony socket: {e}")
            logger.info("Telephony WebSocket disconnected")

    def is_connected(self) -> bool:
        return self._ws is not None


class WebSocketServer:
    """Accepts telephony media connections and hands each to ``handler``.

    Usage:
        server = WebSocketServer(port=8010, path="/media", handler=bridge.accept)
        await server.serve_forever()
    """

    def __init__(
        self,
        host: str = "0.0.0.0",
        port: int = 8010,
        path: str = "/media",
        handler: ConnectionHandler | None = None,
        http_handler: HttpHandler | None = None,
    ) -> None:
        self.host = host
        self.port = port
        self.path = path
        self._handler = handler
        self._http_handler = http_handler
        self._server: Any = None
        self._runner: aioweb.AppRunner | None = None

    async def _ws_handler(self, websocket) -> None:
        request = getattr(websocket, "request", None)
        request_path = (getattr(request, "path", None) or "/").split("?", 1)[0]
        if self.path and self.path != "/" and not request_path.startswith(self.path):
            logger.warning(f"Rejected connection to {request_path} (expected {self.path})")
            return

        await self._dispatch(WebSocketServerTransport(websocket=websocket))

    async def _dispatch(self, transport: WebSocketServerTransport) -> None:
        if self._handler is None:
            logger.warning("No handler registered for incoming connections")
            return
        try:
            await self._handler(transport)
        except Exception as e:
            logger.exception(f"Connection handler failed: {e}")

    # ------------------------------------------------------------------
    # aiohttp hybrid mode: HTTP + WebSocket on one port
    # ------------------------------------------------------------------

    async def _aiohttp_route_handler(self, request: aioweb.Request):
        if request.headers.get("Upgrade", "").lower() == "websocket":
            ws = aioweb.WebSocketResponse()
            await ws.prepare(request)
            await self._dispatch(WebSocketServerTransport(websocket=_AiohttpWebSocketShim(ws)))
            return ws

        if self._http_handler is None:
            return aioweb.Response(status=404, text="Not Found")
        try:
            status, content_type, body = await self._http_handler(request)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}")
            return aioweb.Response(status=500, text="Internal Server Error")
        return aioweb.Response(status=status, body=body, content_type=content_type)

    async def _start_hybrid(self) -> None:
        app = aioweb.Application()
        app.router.add_route("*", "/{path_info:.*}", self._aiohttp_route_handler)
        self._runner = aioweb.AppRunner(app)
        await self._runner.setup()
        site = aioweb.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info(f"Hybrid HTTP+WebSocket server listening on http://{self.host}:{self.port}")

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def start(self) -> None:
        if self._http_handler:
            await self._start_hybrid()
            return
        self._server = await websockets.asyncio.server.serve(
            self._ws_handler,
            self.host,
            self.port,
        )
        logger.info(f"WebSocket server listening on ws://{self.host}:{self.port}{self.path}")

    async def stop(self) -> None:
        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Hybrid server stopped")
        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
            logger.info("WebSocket server stopped")

    async def serve_forever(self) -> None:
        await self.start()
        try:
            await asyncio.Future()
        finally:
            await self.stop()


class _AiohttpWebSocketShim:
    """Makes an ``aiohttp.web.WebSocketResponse`` quack like a ``websockets``
    connection so :class:`WebSocketServerTransport` can wrap it unchanged.
    """

    def __init__(self, ws: aioweb.WebSocketResponse) -> None:
        self._ws = ws

    async def send(self, data: bytes | str) -> None:
        if self._ws.closed:
            raise ConnectionClosed(None, None)
        if isinstance(data, bytes):
            await self._ws.send_bytes(data)
        else:
            await self._ws.send_str(data)

    async def recv(self) -> bytes | str:
        msg = await self._ws.receive()
        if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
            return msg.data
        raise ConnectionClosed(None, None)

    async def close(self) -> None:
        await self._ws.close()
