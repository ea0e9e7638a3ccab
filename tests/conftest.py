"""Shared fixtures for voicerelay tests."""

from __future__ import annotations

import asyncio
import base64
import json

import pytest

from voicerelay.config import BridgeConfig
from voicerelay.errors import TransportClosed
from voicerelay.transports.base import BaseTransport

_CLOSED = object()


class FakeTransport(BaseTransport):
    """In-memory socket: tests feed inbound frames and inspect what was sent."""

    def __init__(self) -> None:
        self.inbox: asyncio.Queue = asyncio.Queue()
        self.sent: list[str | bytes] = []
        self.closed = False
        self.disconnect_calls = 0
        self.connect_calls = 0

    def feed(self, message: dict | str) -> None:
        self.inbox.put_nowait(json.dumps(message) if isinstance(message, dict) else message)

    def close_remote(self) -> None:
        self.inbox.put_nowait(_CLOSED)

    async def connect(self, **kwargs) -> None:
        self.connect_calls += 1

    async def send(self, data: bytes | str) -> None:
        if self.closed:
            raise TransportClosed("fake transport closed")
        self.sent.append(data)

    async def recv(self) -> bytes | str:
        if self.closed:
            raise TransportClosed("fake transport closed")
        item = await self.inbox.get()
        if item is _CLOSED:
            self.closed = True
            raise TransportClosed("remote closed")
        return item

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        if not self.closed:
            self.closed = True
            self.inbox.put_nowait(_CLOSED)

    def is_connected(self) -> bool:
        return not self.closed

    # Helpers ------------------------------------------------------------

    @property
    def sent_json(self) -> list[dict]:
        return [json.loads(m) for m in self.sent if isinstance(m, str)]

    def sent_of_type(self, type_: str) -> list[dict]:
        return [m for m in self.sent_json if m.get("type") == type_]


async def wait_for(predicate, timeout: float = 1.0) -> None:
    """Yield to the loop until ``predicate()`` holds."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


def twilio_start(stream_sid: str = "SS1", call_sid: str = "CA1") -> dict:
    return {
        "event": "start",
        "streamSid": stream_sid,
        "start": {
            "streamSid": stream_sid,
            "callSid": call_sid,
            "customParameters": {"tenant": "salon-42"},
            "mediaFormat": {"encoding": "audio/x-mulaw", "sampleRate": 8000, "channels": 1},
        },
    }


def twilio_media(payload: bytes, stream_sid: str = "SS1") -> dict:
    return {
        "event": "media",
        "streamSid": stream_sid,
        "media": {"payload": base64.b64encode(payload).decode("ascii")},
    }


def twilio_stop(stream_sid: str = "SS1") -> dict:
    return {"event": "stop", "streamSid": stream_sid, "stop": {"callSid": "CA1"}}


@pytest.fixture
def config() -> BridgeConfig:
    return BridgeConfig.from_dict(
        {"openai_api_key": "sk-test", "voice": "alloy", "keepalive_interval": 0}
    )


@pytest.fixture
def telephony() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def model() -> FakeTransport:
    return FakeTransport()
