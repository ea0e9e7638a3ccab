"""voicerelay model providers.

Usage:
    from voicerelay.providers import RealtimeModelSession

    session = RealtimeModelSession(config.realtime, tools=registry.specs())
"""

from voicerelay.providers.openai_realtime import RealtimeModelSession, SessionState

__all__ = [
    "RealtimeModelSession",
    "SessionState",
]
