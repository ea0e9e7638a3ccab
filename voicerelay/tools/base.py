"""Tool-calling types shared by the registry, dispatcher, and capabilities."""

from __future__ import annotations

import inspect
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable


@dataclass(frozen=True)
class ToolSpec:
    """Static declaration of a tool, announced to the model once per session."""

    name: str
    description: str = ""
    input_schema: dict[str, Any] = field(
        default_factory=lambda: {"type": "object", "properties": {}}
    )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ToolSpec:
        return cls(
            name=data["name"],
            description=data.get("description", ""),
            input_schema=data.get("input_schema") or {"type": "object", "properties": {}},
        )


@dataclass
class ToolCallRequest:
    """One tool invocation requested by the model."""

    call_id: str
    tool_name: str
    args: dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolCallResult:
    """The single outcome produced for a ToolCallRequest."""

    call_id: str
    output: dict[str, Any]

    @property
    def ok(self) -> bool:
        return bool(self.output.get("ok", True))

    def output_json(self) -> str:
        return json.dumps(self.output, default=str)


class Capability(ABC):
    """A named piece of backend logic the model can invoke."""

    @abstractmethod
    async def invoke(self, args: dict[str, Any]) -> Any:
        """Run the capability. Raising is fine; the dispatcher reports it."""
        ...

    async def close(self) -> None:
        """Release any resources. Most capabilities hold none."""


ToolFunction = Callable[[dict[str, Any]], Awaitable[Any] | Any]


class FunctionCapability(Capability):
    """Adapts a plain function (sync or async) taking an args dict."""

    def __init__(self, func: ToolFunction) -> None:
        self._func = func

    async def invoke(self, args: dict[str, Any]) -> Any:
        result = self._func(args)
        if inspect.isawaitable(result):
            result = await result
        return result

    def __repr__(self) -> str:
        return f"FunctionCapability({getattr(self._func, '__name__', self._func)!r})"
