"""Tests for merging tools across servers."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from mcp.types import CallToolResult, ImageContent, TextContent

from openera_mcp.config import MCPServerSettings
from openera_mcp.mcp.aggregator import (
    NO_CLIENT_ERROR,
    ServerStatusReport,
    ToolAggregator,
    ToolCatalogEntry,
    format_tool_result,
)
from openera_mcp.mcp.session_factory import INVALID_CONFIG_ERROR

from conftest import stdio_server


@pytest.fixture
def aggregator(registry, factory) -> ToolAggregator:
    return ToolAggregator(registry, factory)


class TestAggregate:
    @pytest.mark.asyncio
    async def test_two_servers_merge_in_order(self, aggregator, fake_servers):
        fake_servers.add("A", tools=["search"])
        fake_servers.add("B", tools=["read_file", "write_file"])

        catalog, statuses = await aggregator.aggregate([stdio_server("A"), stdio_server("B")])

        assert list(catalog) == ["search", "read_file", "write_file"]
        assert [s.name for s in statuses] == ["A", "B"]
        assert all(s.connected for s in statuses)
        assert statuses[1].tools == ["read_file", "write_file"]

    @pytest.mark.asyncio
    async def test_last_writer_wins_on_name_collision(self, aggregator, fake_servers):
        fake_servers.add("A", tools=["search", "a_only"])
        fake_servers.add("B", tools=["search"])

        catalog, _ = await aggregator.aggregate([stdio_server("A"), stdio_server("B")])

        assert len(catalog) == 2
        assert catalog["search"].server_name == "B"
        assert catalog["search"].session is fake_servers.sessions["B"][0]
        assert catalog["a_only"].server_name == "A"

    @pytest.mark.asyncio
    async def test_failure_does_not_stop_later_servers(self, aggregator, fake_servers):
        fake_servers.add("A", start_error=FileNotFoundError("spawn npx ENOENT"))
        fake_servers.add("B", tools=["read_file"])

        catalog, statuses = await aggregator.aggregate([stdio_server("A"), stdio_server("B")])

        assert [s.status for s in statuses] == ["failed", "connected"]
        assert statuses[0].error == "spawn npx ENOENT"
        assert list(catalog) == ["read_file"]

    @pytest.mark.asyncio
    async def test_invalid_config_error_is_reported_verbatim(self, aggregator):
        catalog, statuses = await aggregator.aggregate(
            [MCPServerSettings(name="broken", transport="stdio")]
        )

        assert len(catalog) == 0
        assert statuses[0].status == "failed"
        assert statuses[0].error == INVALID_CONFIG_ERROR

    @pytest.mark.asyncio
    async def test_tool_fetch_failure_after_connect(self, aggregator, fake_servers):
        # The connection probe succeeds, the per-turn listing does not.
        fake_servers.add("flaky", tools=["t"], list_fails_after=1)

        catalog, statuses = await aggregator.aggregate([stdio_server("flaky")])

        assert len(catalog) == 0
        assert statuses[0].status == "failed"
        assert statuses[0].error == "Tool fetch failed: server went away"
        assert statuses[0].failure_kind == "ToolFetchFailed"

    @pytest.mark.asyncio
    async def test_unconvertible_tool_fails_only_its_server(self, aggregator, fake_servers):
        fake_servers.add("A", start_error=FileNotFoundError("spawn npx ENOENT"))
        fake_servers.add("B", tools=["read_file"])
        broken = AttributeError("'Tool' object has no attribute 'inputSchema'")

        with patch.object(ToolCatalogEntry, "from_tool", side_effect=broken):
            catalog, statuses = await aggregator.aggregate(
                [stdio_server("A", command="npx"), stdio_server("B")]
            )

        assert len(catalog) == 0
        assert [s.name for s in statuses] == ["A", "B"]
        assert statuses[0].error == "spawn npx ENOENT"
        assert statuses[1].status == "failed"
        assert statuses[1].error.startswith("Tool fetch failed: ")
        assert statuses[1].failure_kind == "ToolFetchFailed"

    @pytest.mark.asyncio
    async def test_tools_are_listed_again_every_turn(self, aggregator, fake_servers):
        fake_servers.add("A", tools=["t"])
        config = stdio_server("A")

        await aggregator.aggregate([config])
        await aggregator.aggregate([config])

        session = fake_servers.sessions["A"][0]
        assert fake_servers.builds["A"] == 1
        assert session.list_calls == 3

    @pytest.mark.asyncio
    async def test_unexpected_registry_error_is_contained(self, factory):
        registry = MagicMock()
        registry.get_or_create = AsyncMock(side_effect=RuntimeError("boom"))
        aggregator = ToolAggregator(registry, factory)

        catalog, statuses = await aggregator.aggregate([stdio_server("A"), stdio_server("B")])

        assert len(catalog) == 0
        assert [s.error for s in statuses] == [f"{NO_CLIENT_ERROR}: boom"] * 2

    @pytest.mark.asyncio
    async def test_empty_config_list(self, aggregator):
        catalog, statuses = await aggregator.aggregate([])

        assert len(catalog) == 0
        assert statuses == []


class TestCatalogEntries:
    @pytest.mark.asyncio
    async def test_invoke_routes_to_owning_session(self, aggregator, fake_servers):
        fake_servers.add("A", tools=["search"])

        catalog, _ = await aggregator.aggregate([stdio_server("A")])
        result = await catalog["search"].invoke({"q": "weather"})

        assert fake_servers.sessions["A"][0].calls == [("search", {"q": "weather"})]
        assert format_tool_result(result) == "A:search ok"

    @pytest.mark.asyncio
    async def test_function_definitions(self, aggregator, fake_servers):
        fake_servers.add("A", tools=["search"])

        catalog, _ = await aggregator.aggregate([stdio_server("A")])

        assert catalog.to_function_definitions() == [
            {
                "type": "function",
                "function": {
                    "name": "search",
                    "description": "search from A",
                    "parameters": {"type": "object", "properties": {}},
                },
            }
        ]


def test_status_report_dict():
    connected = ServerStatusReport(name="A", status="connected", tools=["t"])
    failed = ServerStatusReport(name="B", status="failed", error="nope")

    assert connected.to_dict() == {"name": "A", "status": "connected", "tools": ["t"]}
    assert failed.to_dict() == {"name": "B", "status": "failed", "error": "nope"}


def test_format_tool_result_keeps_non_text_content():
    result = CallToolResult(
        content=[
            TextContent(type="text", text="first"),
            ImageContent(type="image", data="aGk=", mimeType="image/png"),
        ]
    )

    lines = format_tool_result(result).split("\n")

    assert lines[0] == "first"
    assert '"mimeType": "image/png"' in lines[1]
