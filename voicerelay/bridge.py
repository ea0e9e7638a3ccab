"""voicerelay - central call orchestrator.

The CallBridge owns one call at a time per ``accept`` invocation and wires:
- TelephonyMediaChannel (caller side)
- AudioCodecPipeline (mu-law 8 kHz <-> PCM16 16 kHz)
- RealtimeModelSession (model side)
- ToolDispatcher (model tool calls -> backend capabilities)

Two loops run per call and either one ending tears down both:
1. telephony: media -> decode/upsample -> append (+ auto-flush); stop -> commit
2. realtime:  audio delta -> downsample/encode -> caller; tool call -> dispatch
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Awaitable, Callable

from loguru import logger

from voicerelay.audio.pipeline import AudioCodecPipeline
from voicerelay.channel import TelephonyMediaChannel
from voicerelay.config import (
    BridgeConfig,
    ConfigProvider,
    PolicyThresholds,
    StaticConfigProvider,
    load_config,
)
from voicerelay.core.events import (
    AudioFrame,
    Encoding,
    MarkReceived,
    MediaReceived,
    SessionClosed,
    StreamStarted,
    StreamStopped,
    ToolCall,
)
from voicerelay.errors import ConfigurationError, VoiceRelayError
from voicerelay.providers.openai_realtime import RealtimeModelSession
from voicerelay.session import CallSession, CallState, SessionStore
from voicerelay.tools.base import ToolSpec
from voicerelay.tools.dispatcher import ToolDispatcher
from voicerelay.tools.http import HttpCapability
from voicerelay.tools.registry import ToolRegistry
from voicerelay.transports.base import BaseTransport
from voicerelay.transports.websocket import HttpHandler, WebSocketServer
from voicerelay.twiml import connect_stream_twiml, stream_url

# Builds the model session for one call. Receives the same keyword
# arguments as RealtimeModelSession minus the config.
SessionFactory = Callable[..., RealtimeModelSession]
CallHandler = Callable[[CallSession], Awaitable[Any]]


class CallBridge:
    """Bridges telephony media streams to a realtime speech model.

    Usage (config-driven):
        bridge = CallBridge("voicerelay.yaml", registry=registry)
        bridge.run()

    Usage (embedded):
        bridge = CallBridge({"voice": "verse"}, registry=registry)

        @bridge.on_call_start
        async def started(session):
            print(f"Call {session.call_id} connected")

        # from any websocket server:
        await bridge.accept(transport)

    Raises:
        ConfigurationError: At construction when no realtime API key is set.
    """

    def __init__(
        self,
        config: BridgeConfig | dict | str | Path | None = None,
        registry: ToolRegistry | None = None,
        config_provider: ConfigProvider | None = None,
        pipeline: AudioCodecPipeline | None = None,
        session_factory: SessionFactory | None = None,
    ) -> None:
        self.config = load_config(config)
        if not self.config.realtime.resolved_api_key():
            raise ConfigurationError(
                "Realtime API key missing: set realtime.api_key or OPENAI_API_KEY"
            )

        self.registry = registry if registry is not None else ToolRegistry()
        for hook in self.config.tools.webhooks:
            capability, spec = HttpCapability.from_config(hook)
            self.registry.register(hook.name, capability, spec=spec)

        self.dispatcher = ToolDispatcher(self.registry)
        self.config_provider = config_provider or StaticConfigProvider(self.config)
        self.pipeline = pipeline or AudioCodecPipeline(self.config.audio.downsample)
        self.sessions = SessionStore()
        self._session_factory = session_factory or self._default_session_factory

        self._handlers: dict[str, list[CallHandler]] = {
            "on_call_start": [],
            "on_call_end": [],
        }
        self._server: WebSocketServer | None = None
        self._http_handler: HttpHandler | None = None

    def _default_session_factory(self, **kwargs: Any) -> RealtimeModelSession:
        return RealtimeModelSession(self.config.realtime, **kwargs)

    # ------------------------------------------------------------------
    # Decorator API
    # ------------------------------------------------------------------

    def on_call_start(self, fn: CallHandler) -> CallHandler:
        """Called with the CallSession once the model session is configured."""
        self._handlers["on_call_start"].append(fn)
        return fn

    def on_call_end(self, fn: CallHandler) -> CallHandler:
        """Called with the CallSession after both sockets are closed."""
        self._handlers["on_call_end"].append(fn)
        return fn

    async def _fire(self, name: str, session: CallSession) -> None:
        for handler in self._handlers[name]:
            try:
                await handler(session)
            except Exception as e:
                logger.error(f"{name} handler error: {e}")

    # ------------------------------------------------------------------
    # Per-call lookups for capabilities
    # ------------------------------------------------------------------

    def tool_specs(self) -> list[ToolSpec]:
        """Everything announced to the model: registered tools, then config extras."""
        return self.registry.specs(self.config.tools.specs)

    def policy_for(self, call_id: str) -> PolicyThresholds | None:
        """Knowledge-base thresholds resolved for a live call, if known."""
        session = self.sessions.get_by_call_id(call_id)
        if session is None or session.call_config is None:
            return None
        return session.call_config.policy

    # ------------------------------------------------------------------
    # Call handling
    # ------------------------------------------------------------------

    async def accept(self, transport: BaseTransport) -> None:
        """Run one call over an accepted telephony connection until it ends."""
        session = self.sessions.create()
        channel = TelephonyMediaChannel(transport, session)
        realtime: RealtimeModelSession | None = None
        started = False

        try:
            start = await self._await_start(channel)
            if start is None:
                logger.info(f"[{session.session_id}] Stream ended before start")
                return

            session.call_config = await self.config_provider.get_call_config(session)
            realtime = self._session_factory(
                voice=session.call_config.voice,
                instructions=session.call_config.instructions,
                tools=self.tool_specs(),
                on_audio=lambda audio: self._play_to_caller(channel, audio),
                on_tool_call=lambda call: self._run_tool(session, call),
                on_closed=lambda event: self._record_model_close(session, event),
                label=session.session_id,
            )
            await realtime.connect()
            started = True
            await self._fire("on_call_start", session)

            telephony_task = asyncio.create_task(self._telephony_loop(channel, realtime))
            realtime_task = asyncio.create_task(realtime.run())

            done, pending = await asyncio.wait(
                [telephony_task, realtime_task],
                return_when=asyncio.FIRST_COMPLETED,
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

            for task in done:
                if not task.cancelled() and task.exception() is not None:
                    exc = task.exception()
                    logger.opt(exception=exc).error(
                        f"[{session.session_id}] Call loop failed: {exc}"
                    )

        except VoiceRelayError as e:
            logger.error(f"[{session.session_id}] Call aborted: {e}")
        finally:
            await self._teardown(channel, realtime)
            if started:
                await self._fire("on_call_end", session)

    async def _await_start(self, channel: TelephonyMediaChannel) -> StreamStarted | None:
        """Read until ``start``. Media before it has nowhere to go and is dropped."""
        async for event in channel.events():
            if isinstance(event, StreamStarted):
                return event
            if isinstance(event, StreamStopped):
                return None
            if isinstance(event, MediaReceived):
                logger.debug(f"[{channel.session.session_id}] Dropping media received before start")
        return None

    async def _telephony_loop(
        self,
        channel: TelephonyMediaChannel,
        realtime: RealtimeModelSession,
    ) -> None:
        session = channel.session
        async for event in channel.events():
            if isinstance(event, MediaReceived):
                if session.state != CallState.STREAMING:
                    continue
                session.frames_in += 1
                session.audio_bytes_in += len(event.frame.data)
                try:
                    frame = self.pipeline.decode(event.frame)
                except ValueError as e:
                    logger.warning(f"[{session.session_id}] Dropping undecodable frame: {e}")
                    continue
                await realtime.append_audio(frame)
                await realtime.maybe_auto_flush()

            elif isinstance(event, StreamStopped):
                await realtime.commit_and_respond()

            elif isinstance(event, MarkReceived):
                logger.debug(f"[{session.session_id}] Mark: {event.name}")

    async def _play_to_caller(self, channel: TelephonyMediaChannel, audio: bytes) -> None:
        try:
            frame = self.pipeline.encode(
                AudioFrame(encoding=Encoding.PCM16, sample_rate=16000, data=audio)
            )
            await channel.send_audio(frame)
        except (ValueError, VoiceRelayError) as e:
            logger.error(f"[{channel.session.session_id}] Error sending audio to caller: {e}")

    async def _run_tool(self, session: CallSession, call: ToolCall) -> dict[str, Any]:
        session.tool_calls += 1
        return await self.dispatcher.dispatch(
            call.name,
            call.parsed_arguments(),
            {"callId": session.call_id or None},
        )

    async def _record_model_close(self, session: CallSession, event: SessionClosed) -> None:
        session.model_close_reason = event.reason

    async def _teardown(
        self,
        channel: TelephonyMediaChannel,
        realtime: RealtimeModelSession | None,
    ) -> None:
        """Close both sockets and release the session. Safe to repeat."""
        session = channel.session
        if realtime is not None:
            await realtime.close()
        await channel.close()
        self.sessions.remove(session.session_id)
        logger.info(
            f"Call ended: {session.session_id} "
            f"(frames in/out: {session.frames_in}/{session.frames_out}, "
            f"tools: {session.tool_calls}, model: {session.model_close_reason or '-'}, "
            f"duration: {session.duration_ms}ms)"
        )

    # ------------------------------------------------------------------
    # Standalone serving
    # ------------------------------------------------------------------

    def set_http_handler(self, handler: HttpHandler) -> None:
        """Serve plain HTTP (e.g. TwiML) on the media port via aiohttp.

        The handler receives an ``aiohttp.web.Request`` and returns
        ``(status, content_type, body)``.
        """
        self._http_handler = handler

    async def twiml_http_handler(self, request: Any) -> tuple[int, str, bytes]:
        """HTTP handler answering any request with Connect/Stream TwiML."""
        host = self.config.telephony.public_host or request.host
        url = stream_url(host, self.config.telephony.listen_path)
        return 200, "application/xml", connect_stream_twiml(url).encode()

    def run(self) -> None:
        """Start the bridge (blocking)."""
        try:
            asyncio.run(self.run_async())
        except KeyboardInterrupt:
            logger.info("voicerelay stopped by user")

    async def run_async(self) -> None:
        """Serve until cancelled. Use this if you manage your own event loop."""
        self._server = WebSocketServer(
            host=self.config.telephony.listen_host,
            port=self.config.telephony.listen_port,
            path=self.config.telephony.listen_path,
            handler=self.accept,
            http_handler=self._http_handler,
        )
        try:
            await self._server.serve_forever()
        finally:
            await self.registry.close()
