"""Twilio Media Streams WebSocket serializer.

Twilio streams audio as base64-encoded mu-law at 8kHz inside JSON text
frames, each carrying an ``event`` discriminator.

Protocol reference:
    https://www.twilio.com/docs/voice/media-streams/websocket-messages
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from pydantic import ValidationError

from voicerelay.core.events import (
    AnyTelephonyEvent,
    AudioFrame,
    Encoding,
    MarkReceived,
    MediaReceived,
    StreamConnected,
    StreamStarted,
    StreamStopped,
)
from voicerelay.errors import ParseError
from voicerelay.serializers.base import BaseSerializer


class TwilioSerializer(BaseSerializer):
    """Serializer for the Twilio Media Streams protocol.

    State kept across the lifetime of a single stream:
        stream_sid: The media stream identifier, learned from ``start``.
        call_sid:   The Twilio Call SID, possibly empty.
    """

    def __init__(self) -> None:
        self.stream_sid: str = ""
        self.call_sid: str = ""

    @property
    def name(self) -> str:
        return "twilio"

    # ------------------------------------------------------------------
    # Deserialization (Twilio -> events)
    # ------------------------------------------------------------------

    def deserialize(self, raw: bytes | str | dict) -> AnyTelephonyEvent | None:
        """Parse a Twilio message.

        Handles ``connected``, ``start``, ``media``, ``stop`` and ``mark``.
        Anything else returns ``None``. Fields of the wrong type raise
        :class:`ParseError`, except ``start`` metadata, which falls back to
        an empty dict.
        """
        msg = self.parse_message(raw)
        event_type = msg.get("event", "")
        if not isinstance(event_type, str):
            raise ParseError(f"'event' is not a string: {event_type!r}")

        if "streamSid" in msg and msg["streamSid"]:
            self.stream_sid = str(msg["streamSid"])

        try:
            return self._to_event(event_type, msg)
        except ValidationError as e:
            raise ParseError(f"Invalid {event_type} frame: {e}") from e

    def _to_event(self, event_type: str, msg: dict[str, Any]) -> AnyTelephonyEvent | None:
        if event_type == "connected":
            return StreamConnected(stream_id=self.stream_sid)

        if event_type == "start":
            start = msg.get("start") or {}
            if not isinstance(start, dict):
                raise ParseError("'start' payload is not an object")
            self.stream_sid = str(start.get("streamSid") or self.stream_sid)
            self.call_sid = str(start.get("callSid") or "")
            params = start.get("customParameters")
            media_format = start.get("mediaFormat")
            return StreamStarted(
                stream_id=self.stream_sid,
                call_id=self.call_sid,
                custom_parameters=params if isinstance(params, dict) else {},
                media_format=media_format if isinstance(media_format, dict) else {},
            )

        if event_type == "media":
            media = msg.get("media") or {}
            if not isinstance(media, dict):
                raise ParseError("'media' payload is not an object")
            payload = media.get("payload", "")
            if not isinstance(payload, str):
                raise ParseError(f"Media payload is not a string: {type(payload).__name__}")
            try:
                audio = base64.b64decode(payload, validate=True)
            except (binascii.Error, ValueError, TypeError) as e:
                raise ParseError(f"Invalid base64 media payload: {e}") from e
            return MediaReceived(
                stream_id=self.stream_sid,
                frame=AudioFrame(encoding=Encoding.MULAW, sample_rate=8000, data=audio),
            )

        if event_type == "stop":
            return StreamStopped(stream_id=self.stream_sid)

        if event_type == "mark":
            mark = msg.get("mark") or {}
            name = mark.get("name", "") if isinstance(mark, dict) else ""
            return MarkReceived(stream_id=self.stream_sid, name=str(name))

        return None

    # ------------------------------------------------------------------
    # Serialization (events -> Twilio)
    # ------------------------------------------------------------------

    def serialize_audio(self, frame: AudioFrame) -> str:
        """Wrap mu-law audio in Twilio's outbound ``media`` envelope."""
        return json.dumps(
            {
                "event": "media",
                "streamSid": self.stream_sid,
                "media": {"payload": base64.b64encode(frame.data).decode("ascii")},
            }
        )

