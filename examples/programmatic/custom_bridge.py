"""Example: Programmatic bridge with per-call settings and lifecycle hooks.

Shows how to embed voicerelay without a YAML file: pick voice and
instructions per call from the stream's custom parameters, log call
start/end, and wire the knowledge-base policy to each call's settings.

Usage:
    OPENAI_API_KEY=sk-... python custom_bridge.py
"""

from voicerelay import (
    CallBridge,
    CallConfig,
    CallSession,
    ConfigProvider,
    KnowledgeBaseCapability,
    PolicyThresholds,
    ToolRegistry,
)

TENANTS = {
    "downtown": {"voice": "verse", "greeting": "Downtown Cuts", "min_confidence": 0.6},
    "uptown": {"voice": "shimmer", "greeting": "Uptown Studio", "min_confidence": 0.5},
}


class TenantConfigProvider(ConfigProvider):
    """Resolves settings from the ``tenant`` <Parameter> passed in the TwiML."""

    async def get_call_config(self, session: CallSession) -> CallConfig:
        tenant = TENANTS.get(session.custom_parameters.get("tenant", ""), TENANTS["downtown"])
        return CallConfig(
            voice=tenant["voice"],
            instructions=f"You answer the phone for {tenant['greeting']}. Be brief.",
            policy=PolicyThresholds(kb_min_confidence=tenant["min_confidence"]),
        )


registry = ToolRegistry()
bridge = CallBridge(
    {"listen_port": 8010, "public_host": "example.ngrok.app"},
    registry=registry,
    config_provider=TenantConfigProvider(),
)


def lookup(question: str, language: str) -> dict:
    return {"context": "We are open 9 to 7.", "sources": [{"title": "Hours", "score": 0.7}]}


registry.register(
    "answerQuestion",
    KnowledgeBaseCapability(lookup, policy=bridge.policy_for),
    spec={"description": "Answer a general question about the business"},
)


@bridge.on_call_start
async def handle_call_start(session: CallSession):
    """Called once the model session is configured."""
    print("=== New call ===")
    print(f"  Session: {session.session_id}")
    print(f"  Call: {session.call_id}")
    print(f"  Tenant: {session.custom_parameters.get('tenant', '-')}")


@bridge.on_call_end
async def handle_call_end(session: CallSession):
    """Called after both sockets are closed."""
    print("=== Call ended ===")
    print(f"  Duration: {session.duration_ms}ms")
    print(f"  Frames in/out: {session.frames_in}/{session.frames_out}")
    print(f"  Tool calls: {session.tool_calls}")


if __name__ == "__main__":
    bridge.set_http_handler(bridge.twiml_http_handler)
    print("voicerelay listening on :8010 (POST /voice for TwiML, /media for the stream)")
    bridge.run()
