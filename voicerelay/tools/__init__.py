"""voicerelay tools: capabilities the realtime model can call mid-conversation.

Usage:
    from voicerelay.tools import ToolRegistry

    registry = ToolRegistry()

    @registry.tool("getSalonHours", "Opening hours for the salon")
    async def get_hours(args):
        return {"ok": True, "hours": {"mon-fri": "9-19"}}
"""

from voicerelay.tools.background import BackgroundTasks
from voicerelay.tools.base import (
    Capability,
    FunctionCapability,
    ToolCallRequest,
    ToolCallResult,
    ToolSpec,
)
from voicerelay.tools.dispatcher import ToolDispatcher
from voicerelay.tools.http import HttpCapability
from voicerelay.tools.knowledge import KnowledgeBaseCapability
from voicerelay.tools.registry import ToolRegistry

__all__ = [
    "BackgroundTasks",
    "Capability",
    "FunctionCapability",
    "HttpCapability",
    "KnowledgeBaseCapability",
    "ToolCallRequest",
    "ToolCallResult",
    "ToolDispatcher",
    "ToolRegistry",
    "ToolSpec",
]
