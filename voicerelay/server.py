"""Built-in HTTP/WebSocket server for voicerelay.

A FastAPI app that accepts Twilio media streams on the configured listen
path and hands each one to :meth:`CallBridge.accept`. Also serves the TwiML
webhook and health/status endpoints.
"""

from __future__ import annotations

from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse, Response
from loguru import logger

from voicerelay.bridge import CallBridge
from voicerelay.errors import TransportClosed
from voicerelay.transports.base import BaseTransport
from voicerelay.twiml import connect_stream_twiml, stream_url

SERVICE_NAME = "voicerelay"


def create_app(bridge: CallBridge) -> FastAPI:
    """Create the FastAPI application around an already-configured bridge."""
    config = bridge.config

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await bridge.registry.close()

    app = FastAPI(
        title="voicerelay",
        description="Realtime voice bridge between Twilio media streams and a speech model",
        version="0.1.0",
        lifespan=lifespan,
    )

    @app.get("/healthz")
    async def health():
        return JSONResponse(
            {
                "status": "ok",
                "service": SERVICE_NAME,
                "active_calls": bridge.sessions.active_count,
            }
        )

    @app.get("/status")
    async def status():
        return JSONResponse(
            {
                "model": config.realtime.model,
                "tools": [spec.name for spec in bridge.tool_specs()],
                "active_calls": bridge.sessions.active_count,
                "sessions": [s.to_dict() for s in bridge.sessions.all_sessions],
            }
        )

    @app.post("/voice")
    async def voice(request: Request):
        host = config.telephony.public_host or request.headers.get("host", "")
        url = stream_url(host, config.telephony.listen_path)
        logger.info(f"Incoming call webhook, streaming to {url}")
        return Response(content=connect_stream_twiml(url), media_type="application/xml")

    @app.websocket(config.telephony.listen_path)
    async def media_stream(websocket: WebSocket):
        await websocket.accept()
        logger.info(f"Media stream connected: {websocket.client}")
        await bridge.accept(_FastAPIWebSocketAdapter(websocket))

    return app


class _FastAPIWebSocketAdapter(BaseTransport):
    """Makes a Starlette WebSocket satisfy the transport interface."""

    def __init__(self, ws: WebSocket) -> None:
        self._ws = ws
        self._connected = True

    async def connect(self, **kwargs) -> None:
        pass

    async def send(self, data: bytes | str) -> None:
        if not self._connected:
            raise TransportClosed("Not connected")
        try:
            if isinstance(data, bytes):
                await self._ws.send_bytes(data)
            else:
                await self._ws.send_text(data)
        except (RuntimeError, OSError) as e:
            self._connected = False
            raise TransportClosed(str(e)) from e

    async def recv(self) -> bytes | str:
        if not self._connected:
            raise TransportClosed("Not connected")
        try:
            msg = await self._ws.receive()
        except RuntimeError as e:
            self._connected = False
            raise TransportClosed(str(e)) from e
        if msg.get("type") == "websocket.disconnect":
            self._connected = False
            raise TransportClosed(f"client disconnected ({msg.get('code')})")
        if msg.get("text") is not None:
            return msg["text"]
        if msg.get("bytes") is not None:
            return msg["bytes"]
        raise TransportClosed(f"Unexpected WebSocket message: {msg.get('type')}")

    async def disconnect(self) -> None:
        if not self._connected:
            return
        self._connected = False
        try:
            await self._ws.close()
        except (RuntimeError, OSError) as e:
            logger.debug(f"Ignoring error while closing media stream: {e}")

    def is_connected(self) -> bool:
        return self._connected


def run_server(bridge: CallBridge, host: str | None = None, port: int | None = None) -> None:
    """Run the FastAPI app with uvicorn (blocking)."""
    config = bridge.config
    app = create_app(bridge)
    uvicorn.run(
        app,
        host=host or config.telephony.listen_host,
        port=port or config.telephony.listen_port,
        log_level=config.logging.level.lower(),
    )

