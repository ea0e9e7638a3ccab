"""Tests for TelephonyMediaChannel and CallSession state handling."""

import base64
import json

import pytest

from conftest import twilio_media, twilio_start, twilio_stop
from voicerelay.channel import TelephonyMediaChannel
from voicerelay.core.events import AudioFrame, Encoding, MediaReceived, StreamStarted
from voicerelay.session import CallSession, CallState, SessionStore


def _mulaw(data: bytes = b"\xff" * 160) -> AudioFrame:
    return AudioFrame(encoding=Encoding.MULAW, sample_rate=8000, data=data)


class TestTelephonyMediaChannel:

    @pytest.fixture
    def channel(self, telephony):
        return TelephonyMediaChannel(telephony)

    @pytest.mark.asyncio
    async def test_lifecycle_states(self, channel, telephony):
        assert channel.state == CallState.IDLE

        telephony.feed(twilio_start())
        event = await channel.recv()
        assert isinstance(event, StreamStarted)
        assert channel.state == CallState.STARTED
        assert channel.session.stream_id == "SS1"
        assert channel.session.call_id == "CA1"
        assert channel.session.custom_parameters == {"tenant": "salon-42"}

        telephony.feed(twilio_media(b"\xff" * 160))
        assert isinstance(await channel.recv(), MediaReceived)
        assert channel.state == CallState.STREAMING

        telephony.feed(twilio_stop())
        await channel.recv()
        assert channel.state == CallState.STOPPED

        telephony.close_remote()
        assert await channel.recv() is None
        assert channel.state == CallState.CLOSED

    @pytest.mark.asyncio
    async def test_malformed_frames_skipped(self, channel, telephony):
        telephony.feed("{broken")
        telephony.feed({"event": "media", "media": {"payload": "??"}})
        telephony.feed({"event": "dtmf"})
        telephony.feed(twilio_start())
        event = await channel.recv()
        assert isinstance(event, StreamStarted)

    @pytest.mark.asyncio
    async def test_wrong_type_fields_skipped(self, channel, telephony):
        telephony.feed({"event": "media", "media": {"payload": None}})
        telephony.feed({"event": ["start"]})
        telephony.feed({"event": "start", "start": "SS1"})
        telephony.feed(twilio_start())
        assert isinstance(await channel.recv(), StreamStarted)
        assert channel.state == CallState.STARTED

        telephony.feed({"event": "media", "streamSid": "SS1", "media": {"payload": 160}})
        telephony.feed(twilio_media(b"\xff" * 160))
        event = await channel.recv()
        assert isinstance(event, MediaReceived)
        assert event.frame.data == b"\xff" * 160
        assert channel.state == CallState.STREAMING

    @pytest.mark.asyncio
    async def test_start_with_non_object_parameters(self, channel, telephony):
        msg = twilio_start()
        msg["start"]["customParameters"] = ["tenant"]
        telephony.feed(msg)
        assert isinstance(await channel.recv(), StreamStarted)
        assert channel.session.call_id == "CA1"
        assert channel.session.custom_parameters == {}

    @pytest.mark.asyncio
    async def test_duplicate_start_ignored(self, channel, telephony):
        telephony.feed(twilio_start("SS1", "CA1"))
        telephony.feed(twilio_start("SS9", "CA9"))
        await channel.recv()
        await channel.recv()
        assert channel.session.call_id == "CA1"
        assert channel.state == CallState.STARTED

    @pytest.mark.asyncio
    async def test_events_iterator_ends_on_close(self, channel, telephony):
        telephony.feed(twilio_start())
        telephony.feed(twilio_stop())
        telephony.close_remote()
        events = [event async for event in channel.events()]
        assert len(events) == 2

    @pytest.mark.asyncio
    async def test_send_audio_envelope(self, channel, telephony):
        telephony.feed(twilio_start())
        await channel.recv()

        assert await channel.send_audio(_mulaw(b"\x01\x02")) is True
        msg = json.loads(telephony.sent[-1])
        assert msg["event"] == "media"
        assert msg["streamSid"] == "SS1"
        assert base64.b64decode(msg["media"]["payload"]) == b"\x01\x02"
        assert channel.session.frames_out == 1
        assert channel.session.audio_bytes_out == 2

    @pytest.mark.asyncio
    async def test_send_before_start_dropped(self, channel, telephony):
        assert await channel.send_audio(_mulaw()) is False
        assert telephony.sent == []

    @pytest.mark.asyncio
    async def test_send_after_stop_dropped(self, channel, telephony):
        telephony.feed(twilio_start())
        telephony.feed(twilio_stop())
        await channel.recv()
        await channel.recv()
        assert await channel.send_audio(_mulaw()) is False
        assert telephony.sent == []

    @pytest.mark.asyncio
    async def test_send_rejects_pcm(self, channel, telephony):
        telephony.feed(twilio_start())
        await channel.recv()
        with pytest.raises(ValueError):
            await channel.send_audio(
                AudioFrame(encoding=Encoding.PCM16, sample_rate=16000, data=b"\x00\x00")
            )

    @pytest.mark.asyncio
    async def test_send_on_closed_socket(self, channel, telephony):
        telephony.feed(twilio_start())
        await channel.recv()
        telephony.closed = True
        assert await channel.send_audio(_mulaw()) is False
        assert channel.is_closed

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, channel, telephony):
        await channel.close()
        await channel.close()
        assert channel.is_closed
        assert await channel.recv() is None


class TestCallSession:

    def test_defaults(self):
        session = CallSession()
        assert session.state == CallState.IDLE
        assert session.is_active
        assert session.session_id

    def test_end_keeps_first_timestamp(self):
        session = CallSession()
        session.end()
        first = session.ended_at
        session.end()
        assert session.ended_at == first
        assert not session.is_active

    def test_to_dict(self):
        session = CallSession(stream_id="SS1", call_id="CA1")
        data = session.to_dict()
        assert data["stream_id"] == "SS1"
        assert data["call_id"] == "CA1"
        assert data["state"] == "idle"
        assert data["model_close_reason"] == ""


class TestSessionStore:

    def test_create_and_lookup(self):
        store = SessionStore()
        session = store.create(call_id="CA1")
        assert store.get(session.session_id) is session
        assert store.get_by_call_id("CA1") is session
        assert store.get_by_call_id("") is None
        assert store.active_count == 1

    def test_remove_ends_session(self):
        store = SessionStore()
        session = store.create()
        store.remove(session.session_id)
        store.remove(session.session_id)
        assert session.state == CallState.CLOSED
        assert store.active_count == 0
        assert store.all_sessions == []
