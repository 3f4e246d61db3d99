"""
Unit Tests for ToolDispatcher, local handlers and the remote executor
"""

import httpx
import pytest

from freeagent.domain.context.memory.memory_store import MemoryStore
from freeagent.domain.context.context_manager import ContextManager
from freeagent.domain.models.session import (
    BlackboardCategory, SessionFile, SessionMemory, ToolResult,
)
from freeagent.domain.tool.binary_content import sanitize_for_context
from freeagent.domain.tool.local_handlers import LocalOutcome, LocalToolHandlers, ToolContext
from freeagent.domain.tool.mutations import AppendBlackboard, RequestAssistance, SetScratchpad, SpawnChildren
from freeagent.domain.tool.remote_executor import ExecutorResult, RemoteToolExecutor
from freeagent.domain.tool.tool_executor import ToolDispatcher
from freeagent.domain.tool.tool_registry import ToolDefinition, ToolKind, ToolRegistry
from freeagent.infrastructure.observability.logging import MetricsCollector


@pytest.fixture
def context():
    return ToolContext(session_id="s1", prompt="Original prompt", iteration=1)


class TestDispatch:
    """Tests for routing, validation and caching."""

    @pytest.mark.asyncio
    async def test_unknown_tool(self, dispatcher, context):
        result = await dispatcher.dispatch("teleport", {}, context)

        assert not result.success
        assert result.error == "Unknown tool: teleport"

    @pytest.mark.asyncio
    async def test_schema_validation(self, dispatcher, remote_executor, context):
        result = await dispatcher.dispatch("brave_search", {"numResults": 3}, context)

        assert not result.success
        assert result.error.startswith("Schema validation failed")
        remote_executor.execute.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_empty_save_as_is_rejected(self, dispatcher, context):
        result = await dispatcher.dispatch("brave_search", {"query": "x", "saveAs": " "}, context)

        assert result.error == "saveAs must be a non-empty string"

    @pytest.mark.asyncio
    async def test_request_defaults_and_overrides(self, dispatcher, remote_executor, context):
        await dispatcher.dispatch("image_generation", {"prompt": "a fox"}, context)
        assert remote_executor.execute.await_args.args == (
            "run-nano", {"model": "gemini-2.5-flash-image", "prompt": "a fox"}
        )

        await dispatcher.dispatch("post_call_api", {"url": "https://api.test", "method": "GET"}, context)
        _, body = remote_executor.execute.await_args.args
        assert body["method"] == "POST"

    @pytest.mark.asyncio
    async def test_cacheable_tool_is_served_from_cache(self, dispatcher, remote_executor, context):
        remote_executor.execute.return_value = ExecutorResult(success=True, result={"text": "page"})

        first = await dispatcher.dispatch("web_scrape", {"url": "https://a.test"}, context)
        second = await dispatcher.dispatch("web_scrape", {"url": "https://a.test"}, context)

        assert remote_executor.execute.await_count == 1
        assert not first.cached
        assert second.cached
        assert second.result == {"text": "page"}

    @pytest.mark.asyncio
    async def test_failed_results_are_not_cached(self, dispatcher, remote_executor, context):
        remote_executor.execute.return_value = ExecutorResult(success=False, error="timeout")

        await dispatcher.dispatch("web_scrape", {"url": "https://a.test"}, context)
        await dispatcher.dispatch("web_scrape", {"url": "https://a.test"}, context)

        assert remote_executor.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_cache_is_scoped_to_the_root_session(self, dispatcher, remote_executor):
        remote_executor.execute.return_value = ExecutorResult(success=True, result={"text": "page"})
        first = ToolContext(session_id="session-a", prompt="p")
        other = ToolContext(session_id="session-b", prompt="p")
        child = ToolContext(session_id="child-of-a", prompt="p", cache_scope="session-a", is_child=True)

        await dispatcher.dispatch("web_scrape", {"url": "https://a.test"}, first)
        from_other = await dispatcher.dispatch("web_scrape", {"url": "https://a.test"}, other)
        from_child = await dispatcher.dispatch("web_scrape", {"url": "https://a.test"}, child)

        assert remote_executor.execute.await_count == 2
        assert not from_other.cached
        assert from_child.cached

    @pytest.mark.asyncio
    async def test_cleared_scope_is_fetched_again(self, dispatcher, remote_executor, context):
        await dispatcher.dispatch("web_scrape", {"url": "https://a.test"}, context)

        assert await dispatcher.cache.clear_scope("s1") == 1
        assert await dispatcher.cache.clear_scope("s1") == 0

        again = await dispatcher.dispatch("web_scrape", {"url": "https://a.test"}, context)

        assert not again.cached
        assert remote_executor.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_latency_is_counted_per_operation(self, remote_executor, context):
        collector = MetricsCollector()
        dispatcher = ToolDispatcher(remote_executor=remote_executor, metrics_collector=collector)

        await dispatcher.dispatch("get_time", {}, context)
        await dispatcher.dispatch("get_time", {"timezone": "UTC"}, context)

        assert collector.latency_counts == {"tool_dispatch": 2}
        assert collector.latency_totals_ms["tool_dispatch"] >= 0
        assert collector.counters["tool_calls{success=true,tool=get_time}"] == 2

    @pytest.mark.asyncio
    async def test_instance_suffix_resolves_base_tool(self, dispatcher, remote_executor, context):
        result = await dispatcher.dispatch("brave_search:news", {"query": "x"}, context)

        assert result.success
        assert result.tool == "brave_search:news"
        assert remote_executor.execute.await_args.args[0] == "brave-search"


class TestLocalHandlers:
    """Tests for built-in local tools."""

    @pytest.mark.asyncio
    async def test_write_blackboard_returns_mutation(self, dispatcher, context):
        result = await dispatcher.dispatch(
            "write_blackboard", {"category": "insight", "content": "Prices rose"}, context
        )

        assert result.success
        assert result.mutations == [AppendBlackboard(category=BlackboardCategory.INSIGHT, content="Prices rose")]

    @pytest.mark.asyncio
    async def test_write_blackboard_invalid_category(self, dispatcher, context):
        result = await dispatcher.dispatch("write_blackboard", {"category": "gossip", "content": "x"}, context)

        assert not result.success
        assert result.error == "Invalid category: gossip"
        assert result.mutations == []

    @pytest.mark.asyncio
    async def test_write_scratchpad_appends(self, dispatcher):
        memory = MemoryStore(SessionMemory(scratchpad="old"), [])
        context = ToolContext(session_id="s1", prompt="p", view=memory.snapshot())

        result = await dispatcher.dispatch("write_scratchpad", {"content": "new"}, context)

        assert result.mutations == [SetScratchpad(content="old\n\nnew")]

    @pytest.mark.asyncio
    async def test_read_attribute_lists_and_reads(self, dispatcher):
        memory = MemoryStore(SessionMemory(), [])
        await memory.set_attribute("results", "brave_search", {"hits": 2}, iteration=1)
        context = ToolContext(session_id="s1", prompt="p", view=memory.snapshot())

        listing = await dispatcher.dispatch("read_attribute", {}, context)
        values = await dispatcher.dispatch("read_attribute", {"names": ["results", "gone"]}, context)

        assert listing.result["count"] == 1
        assert listing.result["attributes"][0]["name"] == "results"
        assert values.result == {"results": {"hits": 2}, "gone": "Attribute 'gone' not found"}

    @pytest.mark.asyncio
    async def test_read_file(self, dispatcher):
        upload = SessionFile(filename="notes.txt", content="hello", size=5)
        context = ToolContext(session_id="s1", prompt="p", session_files=[upload])

        found = await dispatcher.dispatch("read_file", {"fileId": upload.id}, context)
        missing = await dispatcher.dispatch("read_file", {"fileId": "nope"}, context)

        assert found.result["content"] == "hello"
        assert missing.error == "File not found: nope"

    @pytest.mark.asyncio
    async def test_request_assistance(self, dispatcher, context):
        result = await dispatcher.dispatch(
            "request_assistance", {"question": "Pick one", "inputType": "choice", "choices": ["a", "b"]}, context
        )

        mutation = result.mutations[0]
        assert isinstance(mutation, RequestAssistance)
        assert mutation.request.choices == ["a", "b"]
        assert result.result["request_id"] == mutation.request.id

    @pytest.mark.asyncio
    async def test_spawn_validation(self, dispatcher):
        child_context = ToolContext(session_id="s1", prompt="p", is_child=True)
        parent_context = ToolContext(session_id="s1", prompt="p", child_max_iterations=4)

        refused = await dispatcher.dispatch("spawn", {"children": [{"name": "a", "task": "t"}]}, child_context)
        duplicate = await dispatcher.dispatch(
            "spawn", {"children": [{"name": "a", "task": "t"}, {"name": "a", "task": "u"}]}, parent_context
        )
        accepted = await dispatcher.dispatch("spawn", {"children": [{"name": "a", "task": "t"}]}, parent_context)

        assert refused.error == "Child agents cannot spawn further children"
        assert duplicate.error.startswith("Duplicate child name: a")
        spawn = accepted.mutations[0]
        assert isinstance(spawn, SpawnChildren)
        assert spawn.children[0].max_iterations == 4

    @pytest.mark.asyncio
    async def test_registered_handler_is_dispatched(self, remote_executor, context):
        async def shout(params, tool_context):
            return LocalOutcome(result={"text": params["text"].upper(), "session": tool_context.session_id})

        registry = ToolRegistry()
        registry.register_tool(ToolDefinition(
            name="shout",
            description="Upper-case some text",
            kind=ToolKind.LOCAL,
            parameters={"type": "object", "properties": {"text": {"type": "string"}}, "required": ["text"]},
        ))
        handlers = LocalToolHandlers()
        handlers.register("shout", shout)
        dispatcher = ToolDispatcher(registry=registry, remote_executor=remote_executor, local_handlers=handlers)

        result = await dispatcher.dispatch("shout", {"text": "hi"}, context)

        assert result.success
        assert result.result == {"text": "HI", "session": "s1"}
        assert remote_executor.execute.await_count == 0


class TestBinaryResults:
    """Tests for binary result summaries in model context."""

    def test_image_result_is_summarized(self):
        result = {"imageUrl": "data:image/png;base64," + "A" * 4096, "model": "gemini-2.5-flash-image"}

        summary = sanitize_for_context("image_generation", result)

        assert summary["_binaryContent"] is True
        assert summary["mimeType"] == "image/png"
        assert summary["summary"] == "[Binary image/png - 4KB]"
        assert summary["model"] == "gemini-2.5-flash-image"

    def test_non_binary_tool_is_untouched(self):
        result = {"imageUrl": "https://example.com/a.png"}
        assert sanitize_for_context("web_scrape", result) is result

    def test_context_never_shows_raw_audio(self):
        manager = ContextManager(ToolRegistry())
        data = manager.build_input(
            task="t",
            iteration=2,
            max_iterations=5,
            view=MemoryStore(SessionMemory(), []).snapshot(),
            previous_results=[ToolResult(tool="elevenlabs_tts", success=True, result={"audioContent": "Q" * 3000})],
        )

        prompt = manager.render_system_prompt(data)

        assert "QQQQ" not in prompt
        assert "[Binary audio/mpeg - 3KB]" in prompt


class TestRemoteToolExecutor:
    """Tests for HTTP normalization using httpx.MockTransport."""

    @staticmethod
    def executor_for(handler) -> RemoteToolExecutor:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        return RemoteToolExecutor("http://tools.test/v1/", auth_token="secret", client=client)

    @pytest.mark.asyncio
    async def test_success_envelope_is_unwrapped(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["url"] = str(request.url)
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"success": True, "result": {"items": []}})

        outcome = await self.executor_for(handler).execute("brave-search", {"query": "x"})

        assert outcome.success
        assert outcome.result == {"items": []}
        assert seen == {"url": "http://tools.test/v1/brave-search", "auth": "Bearer secret"}

    @pytest.mark.asyncio
    async def test_bare_payload_is_the_result(self):
        executor = self.executor_for(lambda request: httpx.Response(200, json={"time": "noon"}))

        outcome = await executor.execute("time", {})

        assert outcome.result == {"time": "noon"}

    @pytest.mark.asyncio
    async def test_error_payloads(self):
        reported = self.executor_for(lambda request: httpx.Response(200, json={"success": False, "error": "quota"}))
        http_error = self.executor_for(lambda request: httpx.Response(502, text="bad gateway"))

        first = await reported.execute("brave-search", {})
        second = await http_error.execute("brave-search", {})

        assert (first.success, first.error) == (False, "quota")
        assert not second.success
        assert second.error.startswith("HTTP 502")

    @pytest.mark.asyncio
    async def test_transport_failure_becomes_error_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        outcome = await self.executor_for(handler).execute("brave-search", {})

        assert not outcome.success
        assert outcome.error.startswith("Tool request failed")
