import asyncio
from itertools import permutations

import pytest

from errors import DispatchError
from session.settings import MCPServerDescriptor, MCPSettings, TransportKind
from tests.mocking import StubMCPTool, StubServerFactory, http_descriptor, stdio_descriptor
from tools.mcp_integration import ToolMapping, ToolSourceAggregator


def _aggregator(factory: StubServerFactory, **settings) -> ToolSourceAggregator:
    return ToolSourceAggregator(
        settings=MCPSettings(**settings),
        connection_factory=factory.connection_factory(),
    )


def _tools(prefix: str, count: int):
    return [StubMCPTool(f"{prefix}_{index}", f"{prefix} tool {index}") for index in range(count)]


def test_one_failing_server_does_not_block_the_others(stub_servers: StubServerFactory):
    stub_servers.add("alpha", tools=_tools("alpha", 2))
    stub_servers.add("beta", tools=_tools("beta", 5))
    stub_servers.fail("gamma", RuntimeError("connection refused"))
    aggregator = _aggregator(stub_servers)
    progress = []

    async def scenario():
        outcomes = await aggregator.connect_all(
            [stdio_descriptor("alpha"), stdio_descriptor("beta"), stdio_descriptor("gamma")],
            on_progress=progress.append,
        )
        snapshot = (aggregator.connected_servers(), len(aggregator.all_tools()))
        await aggregator.disconnect_all()
        return outcomes, snapshot

    outcomes, (connected, tool_count) = asyncio.run(scenario())

    by_name = {outcome.server_name: outcome for outcome in outcomes}
    assert by_name["alpha"].success is True and by_name["alpha"].tool_count == 2
    assert by_name["beta"].success is True and by_name["beta"].tool_count == 5
    assert by_name["gamma"].success is False
    assert by_name["gamma"].error == 'Failed to connect to MCP server "gamma": connection refused'
    assert sorted(connected) == ["alpha", "beta"]
    assert tool_count == 7
    assert progress == outcomes


def test_outcomes_arrive_in_completion_order(stub_servers: StubServerFactory):
    stub_servers.add("slow", tools=_tools("slow", 1), delay=0.1)
    stub_servers.add("fast", tools=_tools("fast", 1))
    aggregator = _aggregator(stub_servers)

    async def scenario():
        outcomes = await aggregator.connect_all([stdio_descriptor("slow"), stdio_descriptor("fast")])
        await aggregator.disconnect_all()
        return outcomes

    assert [outcome.server_name for outcome in asyncio.run(scenario())] == ["fast", "slow"]


def test_invalid_descriptor_fails_before_connecting(stub_servers: StubServerFactory):
    aggregator = _aggregator(stub_servers)
    descriptor = MCPServerDescriptor(name="remote", transport=TransportKind.WEBSOCKET, url="https://x.test")

    (outcome,) = asyncio.run(aggregator.connect_all([descriptor]))

    assert outcome.success is False
    assert outcome.error == (
        'Invalid MCP server configuration for "remote": websocket URL must use ws:// or wss:// protocol'
    )
    assert stub_servers.opened == []


def test_disabled_servers_are_skipped(stub_servers: StubServerFactory):
    stub_servers.add("on", tools=_tools("on", 1))
    aggregator = _aggregator(stub_servers)

    async def scenario():
        outcomes = await aggregator.connect_all([stdio_descriptor("on"), stdio_descriptor("off", enabled=False)])
        await aggregator.disconnect_all()
        return outcomes

    assert [outcome.server_name for outcome in asyncio.run(scenario())] == ["on"]


def test_progress_callback_errors_are_contained(stub_servers: StubServerFactory):
    stub_servers.add("alpha", tools=_tools("alpha", 1))
    aggregator = _aggregator(stub_servers)

    def broken(_outcome):
        raise RuntimeError("display failed")

    async def scenario():
        outcomes = await aggregator.connect_all([stdio_descriptor("alpha")], on_progress=broken)
        await aggregator.disconnect_all()
        return outcomes

    (outcome,) = asyncio.run(scenario())
    assert outcome.success is True


def test_connect_timeout_comes_from_descriptor(stub_servers: StubServerFactory):
    stub_servers.add("slow", delay=5.0)
    aggregator = _aggregator(stub_servers)

    (outcome,) = asyncio.run(aggregator.connect_all([stdio_descriptor("slow", timeout_seconds=0.05)]))

    assert outcome.success is False
    assert outcome.error == 'Timed out after 0.05s connecting to MCP server "slow"'


def test_resolve_tool_supports_legacy_prefixed_names(stub_servers: StubServerFactory):
    stub_servers.add("fs", tools=[StubMCPTool("read_text")])
    stub_servers.add("fs_extra", tools=[StubMCPTool("list")])
    aggregator = _aggregator(stub_servers)

    async def scenario():
        await aggregator.connect_all([stdio_descriptor("fs"), stdio_descriptor("fs_extra")])
        resolved = (
            aggregator.resolve_tool("read_text"),
            aggregator.resolve_tool("mcp_fs_read_text"),
            aggregator.resolve_tool("mcp_fs_extra_list"),
            aggregator.resolve_tool("mcp_fs_missing"),
        )
        await aggregator.disconnect_all()
        return resolved

    direct, legacy, nested, missing = asyncio.run(scenario())

    assert direct == ToolMapping("fs", "read_text")
    assert legacy == ToolMapping("fs", "read_text")
    assert nested == ToolMapping("fs_extra", "list")
    assert missing is None


def test_call_tool_routes_to_owning_server(stub_servers: StubServerFactory):
    docs = stub_servers.add("docs", tools=[StubMCPTool("search")], responses={"search": "3 hits"})
    aggregator = _aggregator(stub_servers)

    async def scenario():
        await aggregator.connect_all([stdio_descriptor("docs")])
        result = await aggregator.call_tool("mcp_docs_search", {"q": "retry"})
        await aggregator.disconnect_all()
        with pytest.raises(DispatchError):
            await aggregator.call_tool("search", {})
        return result

    assert asyncio.run(scenario()) == "3 hits"
    assert docs.calls == [("search", {"q": "retry"})]


def test_server_info_and_auto_approval(stub_servers: StubServerFactory):
    stub_servers.add("api", tools=[StubMCPTool("query"), StubMCPTool("mutate")])
    aggregator = _aggregator(stub_servers)
    descriptor = http_descriptor(
        "api",
        description="Internal API",
        tags=("remote",),
        auto_approved_tools=("query",),
        auth={"type": "oauth"},
    )

    async def scenario():
        await aggregator.connect_all([descriptor])
        info = aggregator.server_info("api")
        approvals = (aggregator.auto_approved("api", "query"), aggregator.auto_approved("api", "mutate"))
        await aggregator.disconnect_all()
        return info, approvals, aggregator.server_info("api")

    info, approvals, after = asyncio.run(scenario())

    assert info.transport == "http"
    assert info.url == "http://127.0.0.1:8931/mcp"
    assert info.tool_count == 2
    assert info.connected is True
    assert info.description == "Internal API"
    assert info.tags == ("remote",)
    assert len(info.warnings) == 1
    assert approvals == (True, False)
    assert after is None


def test_remote_tool_specs_carry_server_prefix(stub_servers: StubServerFactory):
    stub_servers.add("docs", tools=[StubMCPTool("search", "Search docs"), StubMCPTool("ping")])
    aggregator = _aggregator(stub_servers)

    async def scenario():
        await aggregator.connect_all([stdio_descriptor("docs")])
        specs = aggregator.all_tools()
        await aggregator.disconnect_all()
        return specs

    search, ping = asyncio.run(scenario())

    assert search.description == "[MCP:docs] Search docs"
    assert ping.description == "MCP tool from docs"
    assert ping.input_schema == {"type": "object", "properties": {}}


def test_disconnect_all_closes_every_session(stub_servers: StubServerFactory):
    alpha = stub_servers.add("alpha", tools=_tools("alpha", 1))
    beta = stub_servers.add("beta", tools=_tools("beta", 1))
    aggregator = _aggregator(stub_servers)

    async def scenario():
        await aggregator.connect_all([stdio_descriptor("alpha"), stdio_descriptor("beta")])
        await aggregator.disconnect_all()
        await aggregator.disconnect_all()

    asyncio.run(scenario())

    assert alpha.closed and beta.closed
    assert aggregator.connected_servers() == []
    assert aggregator.remote_tools() == []


MISSING_COMMAND = "/nonexistent/indubitably-missing-mcp-server"


@pytest.mark.parametrize("order", list(permutations(["alpha", "beta", "gamma"])))
def test_missing_executable_fails_alone_in_any_order(stub_servers: StubServerFactory, order):
    stub_servers.add("alpha", tools=_tools("alpha", 2))
    stub_servers.add("beta", tools=_tools("beta", 5))
    descriptors = {
        "alpha": stdio_descriptor("alpha"),
        "beta": stdio_descriptor("beta"),
        "gamma": stdio_descriptor("gamma", command=MISSING_COMMAND),
    }
    aggregator = _aggregator(stub_servers)

    async def scenario():
        outcomes = await aggregator.connect_all([descriptors[name] for name in order])
        tool_count = len(aggregator.all_tools())
        await aggregator.disconnect_all()
        return outcomes, tool_count

    outcomes, tool_count = asyncio.run(scenario())

    by_name = {outcome.server_name: outcome for outcome in outcomes}
    assert sorted(by_name) == ["alpha", "beta", "gamma"]
    assert by_name["alpha"].success and by_name["alpha"].tool_count == 2
    assert by_name["beta"].success and by_name["beta"].tool_count == 5
    assert by_name["gamma"].success is False
    assert "not found" in by_name["gamma"].error
    assert MISSING_COMMAND in by_name["gamma"].error
    assert tool_count == 7
    assert "gamma" not in stub_servers.opened
