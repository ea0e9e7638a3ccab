"""Realtime model side of a call: one OpenAI Realtime session.

State machine:

    CONNECTING -> SESSION_CONFIGURED -> ACTIVE -> CLOSING -> CLOSED

The receive loop never waits on tool execution: each tool call runs in its
own task and answers with exactly one ``tool.output`` frame, unless the
session has closed by then, in which case the result is discarded.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Sequence

from loguru import logger

from voicerelay.config import RealtimeConfig
from voicerelay.core.events import (
    AnyRealtimeEvent,
    AudioDelta,
    AudioFrame,
    Encoding,
    RealtimeError,
    ResponseCompleted,
    SessionClosed,
    SessionOpened,
    TextDelta,
    ToolCall,
)
from voicerelay.errors import BridgeConnectionError, ConfigurationError, ParseError, TransportClosed
from voicerelay.serializers.realtime import RealtimeSerializer
from voicerelay.tools.base import ToolSpec
from voicerelay.transports.base import BaseTransport
from voicerelay.transports.websocket import WebSocketClientTransport

AudioCallback = Callable[[bytes], Awaitable[None]]
TextCallback = Callable[[str], Awaitable[None]]
ToolCallCallback = Callable[[ToolCall], Awaitable[Any]]
ClosedCallback = Callable[[SessionClosed], Awaitable[None]]


class SessionState(str, Enum):
    CONNECTING = "connecting"
    SESSION_CONFIGURED = "session_configured"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


_OPEN_STATES = frozenset({SessionState.SESSION_CONFIGURED, SessionState.ACTIVE})


class RealtimeModelSession:
    """Streams caller audio to the model and routes what comes back.

    Usage:
        session = RealtimeModelSession(
            config.realtime,
            voice="alloy",
            instructions="...",
            tools=registry.specs(),
            on_audio=play_to_caller,
            on_tool_call=run_tool,
        )
        await session.connect()
        await session.run()  # until either side closes

    Raises:
        ConfigurationError: At construction when no API key is configured.
    """

    def __init__(
        self,
        config: RealtimeConfig,
        *,
        voice: str | None = None,
        instructions: str | None = None,
        tools: Sequence[ToolSpec] = (),
        transport: BaseTransport | None = None,
        on_audio: AudioCallback | None = None,
        on_text: TextCallback | None = None,
        on_tool_call: ToolCallCallback | None = None,
        on_closed: ClosedCallback | None = None,
        label: str = "",
    ) -> None:
        api_key = config.resolved_api_key()
        if not api_key:
            raise ConfigurationError(
                "Realtime API key missing: set realtime.api_key or OPENAI_API_KEY"
            )

        self.config = config
        self.voice = voice or config.resolved_voice()
        self.instructions = instructions if instructions is not None else config.instructions
        self.tools = list(tools)
        self.transport = transport or WebSocketClientTransport(
            config.endpoint(),
            headers={
                "Authorization": f"Bearer {api_key}",
                "OpenAI-Beta": "realtime=v1",
            },
        )
        self.serializer = RealtimeSerializer()
        self.label = label

        self._on_audio = on_audio
        self._on_text = on_text
        self._on_tool_call = on_tool_call
        self._on_closed = on_closed

        self._state = SessionState.CONNECTING
        self._pending_bytes = 0
        self._keepalive_task: asyncio.Task | None = None
        self._tool_tasks: set[asyncio.Task] = set()
        self._last_inbound = 0.0
        self._close_reason = "normal"
        self.closed = asyncio.Event()

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state in _OPEN_STATES

    @property
    def pending_bytes(self) -> int:
        """Audio bytes appended since the last commit."""
        return self._pending_bytes

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the socket and negotiate the session."""
        if self._state != SessionState.CONNECTING:
            raise RuntimeError(f"connect() called in state {self._state.value}")
        if not self.transport.is_connected():
            await self.transport.connect()
        self._last_inbound = asyncio.get_running_loop().time()

        await self._send(
            self.serializer.session_update(
                voice=self.voice,
                instructions=self.instructions,
                tools=[spec.to_dict() for spec in self.tools],
                sample_rate=self.config.sample_rate,
                turn_detection=self.config.turn_detection,
            )
        )
        self._state = SessionState.SESSION_CONFIGURED
        logger.info(
            f"[{self.label}] Realtime session configured "
            f"(model: {self.config.model}, voice: {self.voice}, tools: {len(self.tools)})"
        )

    async def run(self) -> None:
        """Receive and route model events until the socket closes."""
        if self._state != SessionState.SESSION_CONFIGURED:
            raise RuntimeError(f"run() called in state {self._state.value}")
        self._state = SessionState.ACTIVE
        if self.config.keepalive_interval > 0:
            self._keepalive_task = asyncio.create_task(self._keepalive_loop())

        try:
            while self._state == SessionState.ACTIVE:
                try:
                    raw = await self.transport.recv()
                except TransportClosed:
                    if self._close_reason == "normal":
                        self._close_reason = "remote closed"
                    break
                self._last_inbound = asyncio.get_running_loop().time()

                try:
                    event = self.serializer.deserialize(raw)
                except ParseError as e:
                    logger.warning(f"[{self.label}] Dropping malformed realtime frame: {e}")
                    continue
                if event is not None:
                    await self._route(event)
        finally:
            await self.close(self._close_reason)

    async def close(self, reason: str = "normal") -> None:
        """Cancel keepalive and in-flight tools, then close the socket.

        Idempotent. The first call emits one :class:`SessionClosed` to
        ``on_closed``.
        """
        if self._state in (SessionState.CLOSING, SessionState.CLOSED):
            return
        self._state = SessionState.CLOSING

        current = asyncio.current_task()
        tasks = [t for t in (self._keepalive_task, *self._tool_tasks) if t and t is not current]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tool_tasks.clear()
        self._keepalive_task = None

        try:
            await self.transport.disconnect()
        except (BridgeConnectionError, OSError) as e:
            logger.debug(f"[{self.label}] Error closing realtime socket: {e}")

        self._state = SessionState.CLOSED
        self.closed.set()
        logger.info(f"[{self.label}] Realtime session closed ({reason})")
        await self._route(SessionClosed(reason=reason))

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def append_audio(self, frame: AudioFrame | bytes) -> None:
        """Stream PCM16 16 kHz caller audio. No-op unless the session is open."""
        if isinstance(frame, AudioFrame):
            if frame.encoding != Encoding.PCM16 or frame.sample_rate != self.config.sample_rate:
                raise ValueError(
                    f"append_audio expects pcm16/{self.config.sample_rate}, "
                    f"got {frame.encoding.value}/{frame.sample_rate}"
                )
            data = frame.data
        else:
            data = frame
        if not self.is_open or not data:
            return
        self._pending_bytes += len(data)
        await self._send(self.serializer.audio_append(data))

    async def maybe_auto_flush(self, threshold: int | None = None) -> bool:
        """Commit and request a response once enough audio has piled up.

        Returns True if a flush happened.
        """
        limit = self.config.auto_flush_bytes if threshold is None else threshold
        if limit <= 0 or self._pending_bytes < limit:
            return False
        logger.debug(f"[{self.label}] Auto-flush after {self._pending_bytes} bytes")
        await self.commit_and_respond()
        return True

    async def commit_and_respond(self, modalities: Sequence[str] | None = None) -> None:
        """End the caller's turn and ask the model to answer."""
        if not self.is_open:
            return
        await self._send(self.serializer.audio_commit())
        await self._send(self.serializer.response_create(list(modalities or self.config.modalities)))
        self._pending_bytes = 0

    async def send_tool_output(self, tool_call_id: str, output: Any) -> None:
        await self._send(self.serializer.tool_output(tool_call_id, output))

    async def update_session(self, patch: dict[str, Any]) -> None:
        await self._send(self.serializer.session_patch(patch))

    async def _send(self, message: str) -> None:
        if self._state in (SessionState.CLOSING, SessionState.CLOSED):
            return
        try:
            await self.transport.send(message)
        except TransportClosed:
            logger.debug(f"[{self.label}] Send after realtime socket closed, dropped")

    # ------------------------------------------------------------------
    # Inbound routing
    # ------------------------------------------------------------------

    async def _route(self, event: AnyRealtimeEvent) -> None:
        if isinstance(event, AudioDelta):
            if self._on_audio is not None:
                await self._on_audio(event.audio)
        elif isinstance(event, TextDelta):
            if self._on_text is not None:
                await self._on_text(event.text)
        elif isinstance(event, ToolCall):
            task = asyncio.create_task(self._handle_tool_call(event))
            self._tool_tasks.add(task)
            task.add_done_callback(self._tool_tasks.discard)
        elif isinstance(event, ResponseCompleted):
            logger.debug(f"[{self.label}] Response completed")
        elif isinstance(event, SessionOpened):
            logger.debug(f"[{self.label}] Session created: {event.session_id}")
        elif isinstance(event, SessionClosed):
            if self._on_closed is not None:
                try:
                    await self._on_closed(event)
                except Exception as e:
                    logger.error(f"[{self.label}] on_closed handler error: {e}")
        elif isinstance(event, RealtimeError):
            logger.warning(f"[{self.label}] Realtime error: {event.message}")

    async def _handle_tool_call(self, call: ToolCall) -> None:
        output: Any = {"ok": False, "error": f"Unhandled tool {call.name}"}
        if self._on_tool_call is not None:
            try:
                output = await self._on_tool_call(call)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.exception(f"[{self.label}] Tool callback failed: {e}")
                output = {"ok": False, "error": str(e) or type(e).__name__}

        if not self.is_open:
            logger.debug(f"[{self.label}] Discarding result for {call.call_id}: session closed")
            return
        await self.send_tool_output(call.call_id, output)

    # ------------------------------------------------------------------
    # Keepalive
    # ------------------------------------------------------------------

    async def _keepalive_loop(self) -> None:
        interval = self.config.keepalive_interval
        max_silence = interval * self.config.max_silent_intervals
        loop = asyncio.get_running_loop()
        while self._state == SessionState.ACTIVE:
            await asyncio.sleep(interval)
            if self._state != SessionState.ACTIVE:
                return
            if max_silence > 0 and loop.time() - self._last_inbound > max_silence:
                logger.warning(
                    f"[{self.label}] No model traffic for {max_silence:.0f}s, closing session"
                )
                self._close_reason = "keepalive timeout"
                await self.transport.disconnect()
                return
            await self._send(self.serializer.keepalive())
