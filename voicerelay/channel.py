"""Telephony side of a call: the inbound media stream.

The channel owns the accepted provider socket, turns its frames into
telephony events, and drives the call's lifecycle state:

    IDLE -> STARTED -> STREAMING -> STOPPED -> CLOSED

Outbound audio is only accepted while STARTED or STREAMING; anything sent
outside that window is dropped, never queued.
"""

from __future__ import annotations

from typing import AsyncIterator

from loguru import logger

from voicerelay.core.events import (
    AnyTelephonyEvent,
    AudioFrame,
    Encoding,
    MediaReceived,
    StreamStarted,
    StreamStopped,
)
from voicerelay.errors import ParseError, TransportClosed
from voicerelay.serializers.twilio import TwilioSerializer
from voicerelay.session import CallSession, CallState
from voicerelay.transports.base import BaseTransport

_SENDABLE = frozenset({CallState.STARTED, CallState.STREAMING})


class TelephonyMediaChannel:
    """Wraps one accepted telephony media connection."""

    def __init__(
        self,
        transport: BaseTransport,
        session: CallSession | None = None,
        serializer: TwilioSerializer | None = None,
    ) -> None:
        self.transport = transport
        self.session = session or CallSession()
        self.serializer = serializer or TwilioSerializer()

    @property
    def state(self) -> CallState:
        return self.session.state

    @property
    def is_closed(self) -> bool:
        return self.session.state == CallState.CLOSED

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def recv(self) -> AnyTelephonyEvent | None:
        """Return the next recognized event, or None once the socket is gone.

        Malformed and unrecognized frames are skipped.
        """
        while not self.is_closed:
            try:
                raw = await self.transport.recv()
            except TransportClosed:
                logger.info(f"[{self.session.session_id}] Telephony socket closed")
                self.session.end()
                return None

            try:
                event = self.serializer.deserialize(raw)
            except ParseError as e:
                logger.warning(f"[{self.session.session_id}] Dropping malformed telephony frame: {e}")
                continue
            if event is None:
                continue

            self._advance(event)
            return event
        return None

    async def events(self) -> AsyncIterator[AnyTelephonyEvent]:
        while True:
            event = await self.recv()
            if event is None:
                return
            yield event

    def _advance(self, event: AnyTelephonyEvent) -> None:
        session = self.session
        if isinstance(event, StreamStarted):
            if session.state != CallState.IDLE:
                logger.warning(f"[{session.session_id}] Duplicate start ignored")
                return
            session.stream_id = event.stream_id
            session.call_id = event.call_id
            session.custom_parameters = dict(event.custom_parameters)
            session.state = CallState.STARTED
            logger.info(
                f"[{session.session_id}] Stream started "
                f"(stream: {session.stream_id}, call: {session.call_id or '-'})"
            )
        elif isinstance(event, MediaReceived):
            if session.state == CallState.STARTED:
                session.state = CallState.STREAMING
        elif isinstance(event, StreamStopped):
            if session.state in _SENDABLE or session.state == CallState.IDLE:
                session.state = CallState.STOPPED
                logger.info(f"[{session.session_id}] Stream stopped")

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send_audio(self, frame: AudioFrame) -> bool:
        """Send mu-law 8 kHz audio to the caller.

        Returns False if the frame was dropped because the channel is not
        streaming.
        """
        if frame.encoding != Encoding.MULAW or frame.sample_rate != 8000:
            raise ValueError(
                f"send_audio expects mulaw/8000, got {frame.encoding.value}/{frame.sample_rate}"
            )
        if self.session.state not in _SENDABLE:
            return False
        try:
            await self.transport.send(self.serializer.serialize_audio(frame))
        except TransportClosed:
            self.session.end()
            return False
        self.session.frames_out += 1
        self.session.audio_bytes_out += len(frame.data)
        return True

    async def close(self) -> None:
        """Close the provider socket. Safe to call more than once."""
        self.session.end()
        await self.transport.disconnect()
