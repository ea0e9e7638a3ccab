"""Tool registry: maps tool names to capabilities and their ToolSpecs.

Example:
    registry = ToolRegistry()

    @registry.tool("getSalonHours", "Opening hours for the salon")
    async def get_hours(args):
        return {"ok": True, "hours": {...}}

    registry.register("bookAppointment", BookingCapability(db), spec=booking_spec)
"""

from __future__ import annotations

from typing import Any, Callable, Iterable

from loguru import logger

from voicerelay.tools.base import Capability, FunctionCapability, ToolFunction, ToolSpec


class ToolRegistry:
    """Name -> Capability lookup, read-only once calls are being served."""

    def __init__(self) -> None:
        self._capabilities: dict[str, Capability] = {}
        self._specs: dict[str, ToolSpec] = {}

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        capability: Capability | ToolFunction,
        spec: ToolSpec | dict[str, Any] | None = None,
    ) -> None:
        """Register a capability (or a bare function) under ``name``.

        Re-registering a name replaces the previous entry.
        """
        if not name:
            raise ValueError("Tool name must not be empty")
        if not isinstance(capability, Capability):
            if not callable(capability):
                raise TypeError(f"Tool '{name}' must be a Capability or a callable")
            capability = FunctionCapability(capability)

        if isinstance(spec, dict):
            spec = ToolSpec.from_dict({"name": name, **spec})
        if spec is not None and spec.name != name:
            raise ValueError(f"ToolSpec name '{spec.name}' does not match '{name}'")

        if name in self._capabilities:
            logger.warning(f"Replacing registered tool: {name}")
        self._capabilities[name] = capability
        if spec is not None:
            self._specs[name] = spec
        logger.debug(f"Registered tool: {name}")

    def tool(
        self,
        name: str,
        description: str = "",
        input_schema: dict[str, Any] | None = None,
    ) -> Callable[[ToolFunction], ToolFunction]:
        """Decorator form of :meth:`register`."""

        def decorator(func: ToolFunction) -> ToolFunction:
            spec = ToolSpec(
                name=name,
                description=description or (func.__doc__ or "").strip(),
                input_schema=input_schema or {"type": "object", "properties": {}},
            )
            self.register(name, func, spec=spec)
            return func

        return decorator

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get(self, name: str) -> Capability | None:
        return self._capabilities.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._capabilities

    def __len__(self) -> int:
        return len(self._capabilities)

    @property
    def names(self) -> list[str]:
        return list(self._capabilities.keys())

    def specs(self, extra: Iterable[ToolSpec | dict[str, Any]] = ()) -> list[ToolSpec]:
        """Registered specs in registration order, then ``extra``; first name wins."""
        seen: set[str] = set()
        result: list[ToolSpec] = []
        for spec in [*self._specs.values(), *extra]:
            if isinstance(spec, dict):
                spec = ToolSpec.from_dict(spec)
            if spec.name in seen:
                continue
            seen.add(spec.name)
            result.append(spec)
        return result

    async def close(self) -> None:
        for name, capability in self._capabilities.items():
            try:
                await capability.close()
            except Exception as e:
                logger.warning(f"Error closing tool '{name}': {e}")
