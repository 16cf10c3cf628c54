"""Tests for the tool registry, result normalization and the catalog tools."""

import pytest

from gateway.catalog_tools import RestaurantCatalog, build_tool_registry
from gateway.errors import ToolExecutionError
from gateway.tool_registry import StreamingTool, ToolRegistry, to_tool_result
from models.tools import ToolCallResult


class CountdownTool(StreamingTool):
    name = "countdown"
    description = "Counts down"

    async def stream(self, arguments):
        for n in range(arguments.get("start", 3), 0, -1):
            yield {"type": "text", "text": str(n)}


class BrokenStreamTool(StreamingTool):
    name = "broken_stream"
    description = "Fails halfway"

    async def stream(self, arguments):
        yield "first"
        raise RuntimeError("disk on fire")


@pytest.fixture
def registry():
    registry = ToolRegistry([CountdownTool(), BrokenStreamTool()])
    registry.register_function("echo", "Echo arguments", lambda args: args)
    registry.register_function("shout", "Upper-case text", lambda args: args["text"].upper())

    async def explode(args):
        raise ValueError("kaboom")

    registry.register_function("explode", "Always fails", explode)
    return registry


class TestDiscovery:
    def test_list_tools_carries_streaming_flag(self, registry):
        tools = {t.name: t for t in registry.list_tools()}
        assert tools["countdown"].streaming is True
        assert tools["echo"].streaming is False
        assert tools["echo"].model_dump(by_alias=True)["inputSchema"]["type"] == "object"

    def test_is_streaming(self, registry):
        assert registry.is_streaming("countdown")
        assert not registry.is_streaming("echo")
        assert not registry.is_streaming("missing")


class TestInvoke:
    @pytest.mark.asyncio
    async def test_sync_handler_returning_string(self, registry):
        result = await registry.invoke("shout", {"text": "hi"})
        assert result.content[0].text == "HI"
        assert not result.is_error

    @pytest.mark.asyncio
    async def test_dict_result_is_structured(self, registry):
        result = await registry.invoke("echo", {"a": 1})
        assert result.structured_content == {"a": 1}
        assert '"a": 1' in result.content[0].text

    @pytest.mark.asyncio
    async def test_unknown_tool_is_error_result(self, registry):
        result = await registry.invoke("nope", {})
        assert result.is_error
        assert "Unknown tool: nope" in result.content[0].text

    @pytest.mark.asyncio
    async def test_exception_becomes_error_result(self, registry):
        result = await registry.invoke("explode", {})
        assert result.is_error
        assert "kaboom" in result.content[0].text

    @pytest.mark.asyncio
    async def test_streaming_tool_aggregated(self, registry):
        result = await registry.invoke("countdown", {"start": 2})
        assert result.content[0].text == "2\n1"
        assert len(result.structured_content["items"]) == 2


class TestInvokeStreaming:
    @pytest.mark.asyncio
    async def test_yields_fragments(self, registry):
        items = [f async for f in registry.invoke_streaming("countdown", {"start": 3})]
        assert [i["text"] for i in items] == ["3", "2", "1"]

    @pytest.mark.asyncio
    async def test_non_streaming_tool_rejected(self, registry):
        with pytest.raises(ToolExecutionError):
            async for _ in registry.invoke_streaming("echo", {}):
                pass

    @pytest.mark.asyncio
    async def test_failure_is_logged_and_raised(self, registry):
        received = []
        with pytest.raises(RuntimeError):
            async for fragment in registry.invoke_streaming("broken_stream", {}):
                received.append(fragment)
        assert received == ["first"]
        assert registry.get_call_log(limit=1)[0]["status"] == "error"


class TestCallLog:
    @pytest.mark.asyncio
    async def test_most_recent_first(self, registry):
        await registry.invoke("echo", {"n": 1})
        await registry.invoke("explode", {})

        log = registry.get_call_log()
        assert [entry["toolName"] for entry in log] == ["explode", "echo"]
        assert log[0]["status"] == "error"
        assert log[1]["status"] == "success"
        assert log[1]["elapsedMs"] is not None

    @pytest.mark.asyncio
    async def test_bounded(self, registry):
        registry.MAX_CALL_LOG = 3
        for i in range(5):
            await registry.invoke("echo", {"n": i})
        log = registry.get_call_log(limit=10)
        assert len(log) == 3
        assert log[0]["arguments"] == {"n": 4}


def test_to_tool_result_passthrough():
    original = ToolCallResult.text("done")
    assert to_tool_result(original) is original


def test_to_tool_result_list():
    result = to_tool_result([1, 2])
    assert result.structured_content == {"items": [1, 2]}


class TestCatalogTools:
    @pytest.fixture
    def catalog_registry(self):
        return build_tool_registry(RestaurantCatalog(), item_delay=0)

    @pytest.mark.asyncio
    async def test_get_restaurants(self, catalog_registry):
        result = await catalog_registry.invoke("get_restaurants", {})
        assert result.structured_content["total"] == 10

    @pytest.mark.asyncio
    async def test_add_restaurant_validates(self, catalog_registry):
        result = await catalog_registry.invoke("add_restaurant", {"name": "Taco Spot"})
        assert result.is_error
        assert "location" in result.content[0].text

    @pytest.mark.asyncio
    async def test_add_then_list(self, catalog_registry):
        added = await catalog_registry.invoke(
            "add_restaurant", {"name": "Taco Spot", "location": "1 Main St", "foodType": "Mexican"}
        )
        assert not added.is_error
        listed = await catalog_registry.invoke("get_restaurants", {})
        assert listed.structured_content["total"] == 11

    @pytest.mark.asyncio
    async def test_duplicate_name_rejected(self, catalog_registry):
        result = await catalog_registry.invoke(
            "add_restaurant", {"name": "the ivy", "location": "x", "foodType": "y"}
        )
        assert result.is_error

    @pytest.mark.asyncio
    async def test_pick_random_counts_visit(self, catalog_registry):
        picked = await catalog_registry.invoke("pick_random_restaurant", {})
        stats = await catalog_registry.invoke("get_visit_statistics", {})
        assert stats.structured_content["totalVisits"] == 1
        assert stats.structured_content["statistics"][0]["restaurant"] == picked.structured_content["restaurant"]["name"]

    @pytest.mark.asyncio
    async def test_restaurants_stream_one_fragment_per_item(self, catalog_registry):
        items = [f async for f in catalog_registry.invoke_streaming("get_restaurants_stream", {})]
        assert len(items) == 10
        assert items[0]["restaurant"]["name"] == "Guelaguetza"

    @pytest.mark.asyncio
    async def test_search_stream(self, catalog_registry):
        items = [f async for f in catalog_registry.invoke_streaming("search_restaurants_stream", {"query": "mexican"})]
        assert items[-1]["matches"] == 2
        assert len(items) == 3

    @pytest.mark.asyncio
    async def test_analyze_stream_rejects_unknown_type(self, catalog_registry):
        with pytest.raises(ToolExecutionError):
            async for _ in catalog_registry.invoke_streaming("analyze_restaurants_stream", {"type": "vibes"}):
                pass
