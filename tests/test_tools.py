"""Tests for the tool registry, dispatcher, and bundled capabilities."""

import asyncio

import pytest
import pytest_asyncio
from aiohttp import web
from aiohttp import test_utils

from voicerelay.config import PolicyThresholds, WebhookToolConfig
from voicerelay.errors import ToolExecutionError
from voicerelay.tools import (
    BackgroundTasks,
    Capability,
    HttpCapability,
    KnowledgeBaseCapability,
    ToolCallRequest,
    ToolDispatcher,
    ToolRegistry,
    ToolSpec,
)
from voicerelay.tools.knowledge import normalize_language


class _Recorder(Capability):
    def __init__(self, result=None, error=None):
        self.calls = []
        self.result = result if result is not None else {"ok": True}
        self.error = error
        self.closed = False

    async def invoke(self, args):
        self.calls.append(args)
        if self.error is not None:
            raise self.error
        return self.result

    async def close(self):
        self.closed = True


# ==========================================================================
# Registry
# ==========================================================================


class TestToolRegistry:

    def test_register_capability(self):
        registry = ToolRegistry()
        cap = _Recorder()
        registry.register("getSalonHours", cap, spec={"description": "Hours"})
        assert "getSalonHours" in registry
        assert registry.get("getSalonHours") is cap
        assert registry.specs() == [ToolSpec("getSalonHours", "Hours")]

    def test_decorator(self):
        registry = ToolRegistry()

        @registry.tool("lookupCustomer", input_schema={"type": "object", "properties": {"phone": {"type": "string"}}})
        async def lookup(args):
            """Find a customer by phone number."""
            return {"ok": True}

        (spec,) = registry.specs()
        assert spec.name == "lookupCustomer"
        assert spec.description == "Find a customer by phone number."
        assert "phone" in spec.input_schema["properties"]
        assert len(registry) == 1

    def test_specs_dedupe_extras(self):
        registry = ToolRegistry()
        registry.register("a", _Recorder(), spec=ToolSpec("a", "registered"))
        specs = registry.specs([{"name": "a", "description": "extra"}, {"name": "b"}])
        assert [(s.name, s.description) for s in specs] == [("a", "registered"), ("b", "")]

    def test_spec_name_mismatch(self):
        with pytest.raises(ValueError):
            ToolRegistry().register("a", _Recorder(), spec=ToolSpec("b"))

    def test_empty_name(self):
        with pytest.raises(ValueError):
            ToolRegistry().register("", _Recorder())

    def test_not_callable(self):
        with pytest.raises(TypeError):
            ToolRegistry().register("a", 42)

    @pytest.mark.asyncio
    async def test_close_closes_capabilities(self):
        registry = ToolRegistry()
        cap = _Recorder()
        registry.register("a", cap)
        await registry.close()
        assert cap.closed


# ==========================================================================
# Dispatcher
# ==========================================================================


class TestToolDispatcher:

    @pytest.mark.asyncio
    async def test_unknown_tool(self):
        dispatcher = ToolDispatcher(ToolRegistry())
        assert await dispatcher.dispatch("nope", {}) == {"ok": False, "error": "unknown tool nope"}

    @pytest.mark.asyncio
    async def test_context_injected_without_mutating_args(self):
        registry = ToolRegistry()
        cap = _Recorder()
        registry.register("book", cap)
        args = {"service": "haircut"}

        await ToolDispatcher(registry).dispatch("book", args, {"callId": "CA1", "tenant": None})

        assert cap.calls == [{"service": "haircut", "callId": "CA1"}]
        assert args == {"service": "haircut"}

    @pytest.mark.asyncio
    async def test_empty_context_value_not_injected(self):
        registry = ToolRegistry()
        cap = _Recorder()
        registry.register("book", cap)
        await ToolDispatcher(registry).dispatch("book", {}, {"callId": ""})
        assert cap.calls == [{}]

    @pytest.mark.asyncio
    async def test_exception_becomes_error_result(self):
        registry = ToolRegistry()
        registry.register("boom", _Recorder(error=RuntimeError("db offline")))
        result = await ToolDispatcher(registry).dispatch("boom")
        assert result == {"ok": False, "error": "db offline"}

    @pytest.mark.asyncio
    async def test_tool_execution_error(self):
        registry = ToolRegistry()
        registry.register("boom", _Recorder(error=ToolExecutionError("slot taken")))
        result = await ToolDispatcher(registry).dispatch("boom")
        assert result == {"ok": False, "error": "slot taken"}

    @pytest.mark.asyncio
    async def test_non_dict_result_wrapped(self):
        registry = ToolRegistry()
        registry.register("list", lambda args: ["cut", "color"])
        result = await ToolDispatcher(registry).dispatch("list")
        assert result == {"ok": True, "result": ["cut", "color"]}

    @pytest.mark.asyncio
    async def test_sync_and_async_functions(self):
        registry = ToolRegistry()

        async def async_tool(args):
            return {"ok": True, "kind": "async"}

        registry.register("sync", lambda args: {"ok": True, "kind": "sync"})
        registry.register("async", async_tool)
        dispatcher = ToolDispatcher(registry)
        assert (await dispatcher.dispatch("sync"))["kind"] == "sync"
        assert (await dispatcher.dispatch("async"))["kind"] == "async"

    @pytest.mark.asyncio
    async def test_handle_request(self):
        registry = ToolRegistry()
        registry.register("hours", lambda args: {"ok": True, "open": "9"})
        result = await ToolDispatcher(registry).handle(ToolCallRequest("c1", "hours"))
        assert result.call_id == "c1"
        assert result.ok
        assert result.output_json() == '{"ok": true, "open": "9"}'


# ==========================================================================
# Knowledge base
# ==========================================================================


def _answers(score, context="We open at 9."):
    calls = []

    async def answer(question, language):
        calls.append((question, language))
        return {"context": context, "sources": [{"title": "FAQ", "score": score}]}

    answer.calls = calls
    return answer


class TestKnowledgeBaseCapability:

    @pytest.mark.asyncio
    async def test_confident_answer(self):
        cap = KnowledgeBaseCapability(_answers(0.9))
        result = await cap.invoke({"question": "When do you open?"})
        assert result["ok"] is True
        assert result["confidenceOk"] is True
        assert result["topConfidence"] == 0.9
        assert result["context"] == "We open at 9."

    @pytest.mark.asyncio
    async def test_missing_question(self):
        cap = KnowledgeBaseCapability(_answers(0.9))
        assert await cap.invoke({"question": "  "}) == {"ok": False, "error": "question is required"}

    @pytest.mark.asyncio
    async def test_low_confidence_clarify(self):
        cap = KnowledgeBaseCapability(_answers(0.2))
        result = await cap.invoke({"question": "Parking?"})
        assert result["ok"] is False
        assert result["lowConfidence"] is True
        assert result["action"] == "CLARIFY"
        assert result["partialContext"] == "We open at 9."
        assert result["sources"][0]["title"] == "FAQ"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("action,expected", [("transfer", "TRANSFER"), ("voicemail", "VOICEMAIL")])
    async def test_low_confidence_actions(self, action, expected):
        policy = PolicyThresholds(kb_min_confidence=0.5, low_confidence_action=action)
        cap = KnowledgeBaseCapability(_answers(0.3), policy=policy)
        result = await cap.invoke({"question": "Parking?"})
        assert result["action"] == expected
        assert "partialContext" not in result

    @pytest.mark.asyncio
    async def test_no_sources_is_low_confidence(self):
        async def answer(question, language):
            return {"context": "", "sources": []}

        result = await KnowledgeBaseCapability(answer).invoke({"question": "?"})
        assert result["lowConfidence"] is True

    @pytest.mark.asyncio
    async def test_policy_resolved_per_call(self):
        seen = []

        def policy_for(call_id):
            seen.append(call_id)
            return PolicyThresholds(kb_min_confidence=0.95)

        cap = KnowledgeBaseCapability(_answers(0.9), policy=policy_for)
        result = await cap.invoke({"question": "Hours?", "callId": "CA7"})
        assert seen == ["CA7"]
        assert result["lowConfidence"] is True

    @pytest.mark.asyncio
    async def test_language_normalized(self):
        answer = _answers(0.9)
        await KnowledgeBaseCapability(answer).invoke({"question": "Hola", "language": "ES-MX-x"})
        assert answer.calls == [("Hola", "es-mx")]

    def test_normalize_language_default(self):
        assert normalize_language(None) == "en"


# ==========================================================================
# Webhook tools
# ==========================================================================


class TestHttpCapability:

    @pytest_asyncio.fixture
    async def server(self):
        async def hours(request):
            body = await request.json()
            return web.json_response({"ok": True, "echo": body})

        async def services(request):
            return web.json_response(["cut", request.query.get("lang", "")])

        async def failing(request):
            return web.Response(status=500, text="kaboom")

        async def empty(request):
            return web.Response(status=204)

        app = web.Application()
        app.router.add_post("/hours", hours)
        app.router.add_get("/services", services)
        app.router.add_post("/fail", failing)
        app.router.add_post("/empty", empty)
        server = test_utils.TestServer(app)
        await server.start_server()
        yield server
        await server.close()

    @pytest.mark.asyncio
    async def test_post_json(self, server):
        cap = HttpCapability(str(server.make_url("/hours")))
        try:
            result = await cap.invoke({"day": "mon", "callId": "CA1"})
        finally:
            await cap.close()
        assert result == {"ok": True, "echo": {"day": "mon", "callId": "CA1"}}

    @pytest.mark.asyncio
    async def test_get_query_and_wrapping(self, server):
        cap = HttpCapability(str(server.make_url("/services")), method="GET")
        try:
            result = await cap.invoke({"lang": "en"})
        finally:
            await cap.close()
        assert result == {"ok": True, "result": ["cut", "en"]}

    @pytest.mark.asyncio
    async def test_http_error(self, server):
        cap = HttpCapability(str(server.make_url("/fail")))
        try:
            with pytest.raises(ToolExecutionError):
                await cap.invoke({})
        finally:
            await cap.close()

    @pytest.mark.asyncio
    async def test_no_content(self, server):
        cap = HttpCapability(str(server.make_url("/empty")))
        try:
            assert await cap.invoke({}) == {"ok": True}
        finally:
            await cap.close()

    @pytest.mark.asyncio
    async def test_error_through_dispatcher(self, server):
        registry = ToolRegistry()
        capability, spec = HttpCapability.from_config(
            WebhookToolConfig(name="fail", endpoint=str(server.make_url("/fail")))
        )
        registry.register("fail", capability, spec=spec)
        result = await ToolDispatcher(registry).dispatch("fail", {})
        await registry.close()
        assert result["ok"] is False
        assert "HTTP 500" in result["error"]


# ==========================================================================
# Background tasks
# ==========================================================================


class TestBackgroundTasks:

    @pytest.mark.asyncio
    async def test_failure_does_not_reach_caller(self):
        background = BackgroundTasks()

        async def send_sms():
            raise RuntimeError("sms gateway down")

        class Booking(Capability):
            async def invoke(self, args):
                background.spawn(send_sms(), name="sms")
                return {"ok": True, "booked": True}

        registry = ToolRegistry()
        registry.register("book", Booking())
        result = await ToolDispatcher(registry).dispatch("book", {})
        assert result == {"ok": True, "booked": True}

        await background.drain(timeout=1.0)
        assert background.pending == 0

    @pytest.mark.asyncio
    async def test_close_cancels_pending(self):
        background = BackgroundTasks()
        task = background.spawn(asyncio.sleep(10))
        assert background.pending == 1
        await background.close()
        assert task.cancelled()
        assert background.pending == 0
