"""Error taxonomy for voicerelay.

Only ConfigurationError is meant to escape to the process; everything else
is handled at the boundary of a single call.
"""

from __future__ import annotations


class VoiceRelayError(Exception):
    """Base class for all voicerelay errors."""


class ParseError(VoiceRelayError):
    """A frame from either socket could not be decoded."""


class ProtocolError(VoiceRelayError):
    """A well-formed frame carried an event type we do not understand."""


class ToolExecutionError(VoiceRelayError):
    """A capability failed with a message that is safe to hand to the model."""


class BridgeConnectionError(VoiceRelayError):
    """Socket-level failure. Fatal to the call it belongs to, never retried."""


class TransportClosed(BridgeConnectionError):
    """The underlying connection is gone."""


class ConfigurationError(VoiceRelayError):
    """Missing credentials or invalid settings, raised at startup."""
