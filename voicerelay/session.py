"""Call session tracking for voicerelay.

Each phone call owns exactly one CallSession for its lifetime. The
SessionStore indexes the sessions a bridge currently holds.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from loguru import logger

from voicerelay.config import CallConfig


class CallState(str, Enum):
    IDLE = "idle"
    STARTED = "started"
    STREAMING = "streaming"
    STOPPED = "stopped"
    CLOSED = "closed"


@dataclass
class CallSession:
    """One phone call flowing through the bridge.

    ``stream_id`` is assigned by the telephony provider on ``start``;
    ``call_id`` may arrive with it or not at all.
    """

    session_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    stream_id: str = ""
    call_id: str = ""
    state: CallState = CallState.IDLE
    custom_parameters: dict[str, Any] = field(default_factory=dict)
    # Resolved once the stream starts.
    call_config: CallConfig | None = None

    started_at: float = field(default_factory=time.time)
    ended_at: float | None = None

    frames_in: int = 0
    frames_out: int = 0
    audio_bytes_in: int = 0
    audio_bytes_out: int = 0
    tool_calls: int = 0
    # Reason the realtime model session closed; empty while it is open.
    model_close_reason: str = ""

    @property
    def is_active(self) -> bool:
        return self.state != CallState.CLOSED

    def end(self) -> None:
        """Mark the session closed. Calling it again keeps the first end time."""
        if self.state == CallState.CLOSED:
            return
        self.state = CallState.CLOSED
        self.ended_at = time.time()

    @property
    def duration_ms(self) -> int:
        end = self.ended_at or time.time()
        return int((end - self.started_at) * 1000)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "stream_id": self.stream_id,
            "call_id": self.call_id,
            "state": self.state.value,
            "duration_ms": self.duration_ms,
            "frames_in": self.frames_in,
            "frames_out": self.frames_out,
            "tool_calls": self.tool_calls,
            "model_close_reason": self.model_close_reason,
        }


class SessionStore:
    """In-memory index of live sessions, by session_id or call_id.

    Only touched from the event loop thread.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, CallSession] = {}

    def create(self, **kwargs) -> CallSession:
        session = CallSession(**kwargs)
        self._sessions[session.session_id] = session
        logger.info(f"Session created: {session.session_id}")
        return session

    def get(self, session_id: str) -> CallSession | None:
        return self._sessions.get(session_id)

    def get_by_call_id(self, call_id: str) -> CallSession | None:
        if not call_id:
            return None
        for session in self._sessions.values():
            if session.call_id == call_id:
                return session
        return None

    def remove(self, session_id: str) -> None:
        """Drop a session and mark it ended. Unknown ids are ignored."""
        session = self._sessions.pop(session_id, None)
        if session:
            session.end()
            logger.info(
                f"Session removed: {session.session_id} "
                f"(call: {session.call_id or '-'}, duration: {session.duration_ms}ms)"
            )

    @property
    def active_count(self) -> int:
        return sum(1 for s in self._sessions.values() if s.is_active)

    @property
    def all_sessions(self) -> list[CallSession]:
        return list(self._sessions.values())
