"""Webhook-backed tools: the capability lives behind an HTTP endpoint."""

from __future__ import annotations

import asyncio
from typing import Any

import aiohttp
from loguru import logger

from voicerelay.config import WebhookToolConfig
from voicerelay.errors import ToolExecutionError
from voicerelay.tools.base import Capability, ToolSpec


class HttpCapability(Capability):
    """Invokes a tool by sending its args as JSON to ``endpoint``.

    GET requests send the args as query parameters instead. A non-2xx
    response is reported as a tool failure; a JSON object body is returned
    as-is; any other JSON body is wrapped as ``{"ok": True, "result": body}``.
    """

    def __init__(
        self,
        endpoint: str,
        method: str = "POST",
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.method = method.upper()
        self.headers = headers or {}
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, config: WebhookToolConfig) -> tuple[HttpCapability, ToolSpec]:
        capability = cls(
            endpoint=config.endpoint,
            method=config.method,
            headers=config.headers,
            timeout=config.timeout,
        )
        spec = ToolSpec(
            name=config.name,
            description=config.description,
            input_schema=config.input_schema,
        )
        return capability, spec

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout),
                headers={"Content-Type": "application/json"},
            )
            self._owns_session = True
        return self._session

    async def invoke(self, args: dict[str, Any]) -> Any:
        session = await self._get_session()
        if self.method == "GET":
            request_kwargs: dict[str, Any] = {
                "params": {k: str(v) for k, v in args.items()}
            }
        else:
            request_kwargs = {"json": args}

        try:
            async with session.request(
                self.method,
                self.endpoint,
                headers=self.headers,
                **request_kwargs,
            ) as resp:
                if resp.status < 200 or resp.status >= 300:
                    body = await resp.text()
                    raise ToolExecutionError(
                        f"{self.endpoint} returned HTTP {resp.status}: {body[:200]}"
                    )
                if resp.status == 204:
                    return {"ok": True}
                data = await resp.json(content_type=None)
        except aiohttp.ClientError as e:
            raise ToolExecutionError(f"{self.endpoint} unreachable: {e}") from e
        except asyncio.TimeoutError as e:
            raise ToolExecutionError(f"{self.endpoint} timed out") from e

        logger.debug(f"Webhook tool {self.endpoint} answered HTTP 2xx")
        if isinstance(data, dict):
            return data
        return {"ok": True, "result": data}

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
