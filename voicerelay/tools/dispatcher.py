"""Tool dispatch: one tool-call request in, exactly one JSON-able result out."""

from __future__ import annotations

from typing import Any

from loguru import logger

from voicerelay.errors import ToolExecutionError
from voicerelay.tools.base import ToolCallRequest, ToolCallResult
from voicerelay.tools.registry import ToolRegistry


class ToolDispatcher:
    """Looks up a capability by name, invokes it, and normalizes the outcome.

    ``dispatch`` never raises for tool-level failures. Unknown tools and
    exceptions thrown by capabilities come back as ``{"ok": False, "error": ...}``
    so the model can recover conversationally. Cancellation is propagated.
    """

    def __init__(self, registry: ToolRegistry) -> None:
        self.registry = registry

    async def dispatch(
        self,
        name: str,
        args: dict[str, Any] | None = None,
        context: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Invoke ``name`` with ``args`` merged with call-scoped ``context``.

        Context keys with a value of None are not injected. The caller's
        ``args`` dict is not mutated.
        """
        capability = self.registry.get(name)
        if capability is None:
            logger.warning(f"Model requested unknown tool: {name!r}")
            return {"ok": False, "error": f"unknown tool {name}"}

        call_args = dict(args or {})
        for key, value in (context or {}).items():
            if value is not None and value != "":
                call_args[key] = value

        logger.info(f"Tool call: {name} (keys: {sorted(call_args)})")
        try:
            result = await capability.invoke(call_args)
        except ToolExecutionError as e:
            logger.warning(f"Tool {name} failed: {e}")
            return {"ok": False, "error": str(e)}
        except Exception as e:
            logger.exception(f"Tool {name} raised: {e}")
            return {"ok": False, "error": str(e) or type(e).__name__}

        if not isinstance(result, dict):
            result = {"ok": True, "result": result}
        logger.info(f"Tool call completed: {name} (ok: {result.get('ok', True)})")
        return result

    async def handle(
        self, request: ToolCallRequest, context: dict[str, Any] | None = None
    ) -> ToolCallResult:
        output = await self.dispatch(request.tool_name, request.args, context)
        return ToolCallResult(call_id=request.call_id, output=output)
