"""voicerelay - realtime voice bridge for phone calls.

Carries a caller's Twilio media stream to a realtime speech-to-speech model
and back, converting mu-law 8 kHz to PCM16 16 kHz on the way in and back on
the way out, and services the model's tool calls without stalling audio.

Quick start (config-driven):
    $ pip install voicerelay
    $ voicerelay init          # generates voicerelay.yaml
    $ voicerelay run --config voicerelay.yaml --tools myapp.tools:registry

Quick start (programmatic):
    from voicerelay import CallBridge, ToolRegistry

    registry = ToolRegistry()

    @registry.tool("getSalonHours", "Opening hours for the salon")
    async def get_hours(args):
        return {"ok": True, "hours": {"mon-sat": "9:00-19:00"}}

    bridge = CallBridge({"voice": "alloy"}, registry=registry)
    bridge.run()
"""

__version__ = "0.1.0"

# Core
from voicerelay.bridge import CallBridge
from voicerelay.channel import TelephonyMediaChannel
from voicerelay.config import (
    BridgeConfig,
    CallConfig,
    ConfigProvider,
    PolicyThresholds,
    StaticConfigProvider,
    load_config,
)
from voicerelay.session import CallSession, CallState, SessionStore

# Events
from voicerelay.core.events import (
    AudioDelta,
    AudioFrame,
    Encoding,
    MediaReceived,
    RealtimeError,
    ResponseCompleted,
    StreamStarted,
    StreamStopped,
    ToolCall,
)

# Audio
from voicerelay.audio.pipeline import AudioCodecPipeline

# Errors
from voicerelay.errors import (
    BridgeConnectionError,
    ConfigurationError,
    ParseError,
    ProtocolError,
    ToolExecutionError,
    TransportClosed,
    VoiceRelayError,
)

# Model session
from voicerelay.providers.openai_realtime import RealtimeModelSession

# Tools
from voicerelay.tools import (
    BackgroundTasks,
    Capability,
    HttpCapability,
    KnowledgeBaseCapability,
    ToolDispatcher,
    ToolRegistry,
    ToolSpec,
)

__all__ = [
    "AudioCodecPipeline",
    "AudioDelta",
    "AudioFrame",
    "BackgroundTasks",
    "BridgeConfig",
    "BridgeConnectionError",
    "CallBridge",
    "CallConfig",
    "CallSession",
    "CallState",
    "Capability",
    "ConfigProvider",
    "ConfigurationError",
    "Encoding",
    "HttpCapability",
    "KnowledgeBaseCapability",
    "MediaReceived",
    "ParseError",
    "PolicyThresholds",
    "ProtocolError",
    "RealtimeError",
    "RealtimeModelSession",
    "ResponseCompleted",
    "SessionStore",
    "StaticConfigProvider",
    "StreamStarted",
    "StreamStopped",
    "TelephonyMediaChannel",
    "ToolCall",
    "ToolDispatcher",
    "ToolExecutionError",
    "ToolRegistry",
    "ToolSpec",
    "TransportClosed",
    "VoiceRelayError",
    "load_config",
]
