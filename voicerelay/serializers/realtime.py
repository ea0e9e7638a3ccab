"""OpenAI Realtime API serializer.

Inbound frames become :mod:`voicerelay.core.events` realtime events;
outbound builders return JSON text ready for the socket.

Protocol reference:
    https://platform.openai.com/docs/api-reference/realtime
"""

from __future__ import annotations

import base64
import binascii
import json
import time
from typing import Any

from voicerelay.core.events import (
    AnyRealtimeEvent,
    AudioDelta,
    RealtimeError,
    ResponseCompleted,
    SessionOpened,
    TextDelta,
    ToolCall,
)
from voicerelay.errors import ParseError, ProtocolError
from voicerelay.serializers.base import BaseSerializer

TOOL_CALL_TYPES = frozenset({"response.function_call", "tool.call"})
COMPLETION_TYPES = frozenset({"response.completed", "response.done"})


class RealtimeSerializer(BaseSerializer):
    """Translator for the realtime model session protocol."""

    @property
    def name(self) -> str:
        return "openai-realtime"

    # ------------------------------------------------------------------
    # Deserialization (model -> events)
    # ------------------------------------------------------------------

    def deserialize(self, raw: bytes | str | dict) -> AnyRealtimeEvent | None:
        """Parse one model frame.

        Unrecognized types (and audio/text deltas with no payload) return
        ``None``.
        """
        msg = self.parse_message(raw)
        event_type = msg.get("type", "")
        if not isinstance(event_type, str):
            raise ParseError(f"'type' is not a string: {event_type!r}")

        if event_type == "response.audio.delta":
            delta = msg.get("delta")
            if not delta:
                return None
            try:
                audio = base64.b64decode(delta, validate=True)
            except (binascii.Error, ValueError, TypeError) as e:
                raise ParseError(f"Invalid base64 audio delta: {e}") from e
            return AudioDelta(audio=audio)

        if event_type in ("response.output_text.delta", "response.audio_transcript.delta"):
            delta = msg.get("delta")
            return TextDelta(text=str(delta)) if delta else None

        if event_type in TOOL_CALL_TYPES:
            return self._parse_tool_call(msg)

        if event_type in COMPLETION_TYPES:
            return ResponseCompleted()

        if event_type == "session.created":
            session = msg.get("session") or {}
            return SessionOpened(session_id=str(session.get("id", "")) if isinstance(session, dict) else "")

        if event_type == "error":
            return RealtimeError(message=self._error_message(msg.get("error")))

        return None

    def deserialize_strict(self, raw: bytes | str | dict) -> AnyRealtimeEvent:
        """Like :meth:`deserialize` but raise ProtocolError for unknown types."""
        event = self.deserialize(raw)
        if event is None:
            msg = self.parse_message(raw)
            raise ProtocolError(f"Unhandled realtime event type: {msg.get('type')!r}")
        return event

    @staticmethod
    def _parse_tool_call(msg: dict[str, Any]) -> ToolCall:
        arguments = msg.get("arguments")
        if not isinstance(arguments, (str, dict)):
            arguments = ""
        return ToolCall(
            call_id=str(msg.get("tool_call_id") or msg.get("call_id") or msg.get("id") or ""),
            name=str(msg.get("name") or msg.get("tool_name") or ""),
            arguments=arguments,
        )

    @staticmethod
    def _error_message(error: Any) -> str:
        if isinstance(error, dict):
            return str(error.get("message") or error.get("code") or error)
        return str(error) if error else "unknown error"

    # ------------------------------------------------------------------
    # Serialization (host -> model)
    # ------------------------------------------------------------------

    @staticmethod
    def session_update(
        *,
        voice: str,
        instructions: str,
        tools: list[dict[str, Any]],
        sample_rate: int = 16000,
        turn_detection: str = "server_vad",
    ) -> str:
        audio_format = {"type": "pcm16", "sample_rate": sample_rate}
        return json.dumps(
            {
                "type": "session.update",
                "session": {
                    "input_audio_format": audio_format,
                    "output_audio_format": dict(audio_format),
                    "turn_detection": {
                        "type": "server_vad" if turn_detection == "server_vad" else "none"
                    },
                    "voice": voice,
                    "tools": tools,
                    "instructions": instructions,
                },
            }
        )

    @staticmethod
    def session_patch(patch: dict[str, Any]) -> str:
        return json.dumps({"type": "session.update", "session": patch})

    @staticmethod
    def keepalive(now: float | None = None) -> str:
        """A no-op session update stamped with the current time in milliseconds."""
        stamp = int((time.time() if now is None else now) * 1000)
        return json.dumps({"type": "session.update", "session": {"keepalive_at": stamp}})

    @staticmethod
    def audio_append(pcm: bytes) -> str:
        return json.dumps(
            {
                "type": "input_audio_buffer.append",
                "audio": base64.b64encode(pcm).decode("ascii"),
            }
        )

    @staticmethod
    def audio_commit() -> str:
        return json.dumps({"type": "input_audio_buffer.commit"})

    @staticmethod
    def response_create(modalities: list[str]) -> str:
        return json.dumps({"type": "response.create", "response": {"modalities": list(modalities)}})

    @staticmethod
    def tool_output(tool_call_id: str, output: Any) -> str:
        """``output`` is JSON-encoded a second time, as the protocol expects a string."""
        return json.dumps(
            {
                "type": "tool.output",
                "tool_call_id": tool_call_id,
                "output": json.dumps(output, default=str),
            }
        )
