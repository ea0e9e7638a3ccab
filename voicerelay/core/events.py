"""Unified event model for voicerelay.

Both wire codecs (telephony media stream and realtime model session) convert
their JSON frames into these canonical events. Each side has a closed set of
variants, and the bridge consumes them with a single isinstance dispatch per
connection.
"""

from __future__ import annotations

import json
import time
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class Encoding(str, Enum):
    MULAW = "mulaw"
    PCM16 = "pcm16"


class AudioFrame(BaseModel):
    """An immutable chunk of mono audio.

    ``data`` holds raw mu-law bytes or PCM16 little-endian samples depending
    on ``encoding``.
    """

    model_config = ConfigDict(frozen=True)

    encoding: Encoding = Encoding.PCM16
    sample_rate: Literal[8000, 16000] = 8000
    channels: Literal[1] = 1
    data: bytes = b""

    def __len__(self) -> int:
        return len(self.data)


# ---------------------------------------------------------------------------
# Telephony side
# ---------------------------------------------------------------------------


class TelephonyEventType(str, Enum):
    CONNECTED = "connected"
    START = "start"
    MEDIA = "media"
    STOP = "stop"
    MARK = "mark"


class TelephonyEvent(BaseModel):
    """Base event for everything parsed off the telephony media stream."""

    event_type: TelephonyEventType
    stream_id: str = ""
    timestamp: float = Field(default_factory=time.time)


class StreamConnected(TelephonyEvent):
    """Handshake acknowledgement, sent before ``start``."""

    event_type: TelephonyEventType = TelephonyEventType.CONNECTED


class StreamStarted(TelephonyEvent):
    """Stream metadata. ``call_id`` may be empty if the provider omits it."""

    event_type: TelephonyEventType = TelephonyEventType.START
    call_id: str = ""
    custom_parameters: dict[str, Any] = Field(default_factory=dict)
    media_format: dict[str, Any] = Field(default_factory=dict)


class MediaReceived(TelephonyEvent):
    """One inbound chunk of caller audio (mu-law, 8 kHz)."""

    event_type: TelephonyEventType = TelephonyEventType.MEDIA
    frame: AudioFrame = Field(
        default_factory=lambda: AudioFrame(encoding=Encoding.MULAW, sample_rate=8000)
    )


class StreamStopped(TelephonyEvent):
    """Caller hung up or the stream ended."""

    event_type: TelephonyEventType = TelephonyEventType.STOP


class MarkReceived(TelephonyEvent):
    """Playback marker echoed back by the provider. Informational only."""

    event_type: TelephonyEventType = TelephonyEventType.MARK
    name: str = ""


AnyTelephonyEvent = (
    StreamConnected
    | StreamStarted
    | MediaReceived
    | StreamStopped
    | MarkReceived
)


# ---------------------------------------------------------------------------
# Realtime model side
# ---------------------------------------------------------------------------


class RealtimeEventType(str, Enum):
    AUDIO_DELTA = "audio_delta"
    TEXT_DELTA = "text_delta"
    TOOL_CALL = "tool_call"
    RESPONSE_COMPLETED = "response_completed"
    SESSION_OPENED = "session_opened"
    SESSION_CLOSED = "session_closed"
    ERROR = "error"


class RealtimeEvent(BaseModel):
    """Base event for everything parsed off the realtime model session."""

    event_type: RealtimeEventType
    timestamp: float = Field(default_factory=time.time)


class AudioDelta(RealtimeEvent):
    """A burst of synthesized speech (PCM16, 16 kHz), already base64-decoded."""

    event_type: RealtimeEventType = RealtimeEventType.AUDIO_DELTA
    audio: bytes = b""


class TextDelta(RealtimeEvent):
    """Incremental transcript of what the model is saying."""

    event_type: RealtimeEventType = RealtimeEventType.TEXT_DELTA
    text: str = ""


class ToolCall(RealtimeEvent):
    """The model asked the host to run a named capability.

    ``arguments`` is kept as it arrived on the wire: usually a JSON string,
    occasionally an already-decoded object.
    """

    event_type: RealtimeEventType = RealtimeEventType.TOOL_CALL
    call_id: str = ""
    name: str = ""
    arguments: str | dict[str, Any] = ""

    def parsed_arguments(self) -> dict[str, Any]:
        """Decode ``arguments`` to a dict. Anything unparseable becomes ``{}``."""
        if isinstance(self.arguments, dict):
            return dict(self.arguments)
        if not self.arguments:
            return {}
        try:
            value = json.loads(self.arguments)
        except json.JSONDecodeError:
            return {}
        return value if isinstance(value, dict) else {}


class ResponseCompleted(RealtimeEvent):
    event_type: RealtimeEventType = RealtimeEventType.RESPONSE_COMPLETED


class SessionOpened(RealtimeEvent):
    event_type: RealtimeEventType = RealtimeEventType.SESSION_OPENED
    session_id: str = ""


class SessionClosed(RealtimeEvent):
    event_type: RealtimeEventType = RealtimeEventType.SESSION_CLOSED
    reason: str = "normal"


class RealtimeError(RealtimeEvent):
    event_type: RealtimeEventType = RealtimeEventType.ERROR
    message: str = ""


AnyRealtimeEvent = (
    AudioDelta
    | TextDelta
    | ToolCall
    | ResponseCompleted
    | SessionOpened
    | SessionClosed
    | RealtimeError
)
