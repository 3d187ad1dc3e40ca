import asyncio

from errors import ErrorType
from session.settings import MCPSettings
from tests.mocking import StubMCPTool, StubServerFactory, stdio_descriptor
from tools.handler import ToolInvocation, ToolKind, ToolOutput
from tools.mcp_integration import ToolSourceAggregator
from tools.registry import ToolEntry, ToolRegistry
from tools.spec import ToolSpec


class _EchoHandler:
    def __init__(self) -> None:
        self.calls: list[dict] = []

    @property
    def kind(self) -> ToolKind:
        return ToolKind.FUNCTION

    async def __call__(self, arguments):
        self.calls.append(arguments)
        return ToolOutput(content=str(arguments.get("text", "")).upper(), success=True)


def _entry(name: str, handler=None) -> ToolEntry:
    return ToolEntry(name=name, spec=ToolSpec(name, f"{name} tool", {"type": "object"}), handler=handler or _EchoHandler())


def _aggregator(factory: StubServerFactory) -> ToolSourceAggregator:
    return ToolSourceAggregator(settings=MCPSettings(), connection_factory=factory.connection_factory())


def test_registry_dispatches_to_registered_handler():
    handler = _EchoHandler()
    registry = ToolRegistry([_entry("echo", handler)])

    output = asyncio.run(registry.dispatch(ToolInvocation(call_id="call-1", tool_name="echo", arguments={"text": "hi"})))

    assert output.success is True
    assert output.content == "HI"
    assert handler.calls == [{"text": "hi"}]


def test_registry_reports_missing_tool():
    registry = ToolRegistry()

    output = asyncio.run(registry.dispatch(ToolInvocation(call_id="c", tool_name="missing")))

    assert output.success is False
    assert output.content == "tool 'missing' not found"
    assert output.metadata == {"error_type": ErrorType.DISPATCH.value}


def test_register_overwrites_existing_entry():
    registry = ToolRegistry([_entry("echo")])
    replacement = _entry("echo")

    registry.register(replacement)

    assert registry.get_entry("echo") is replacement
    assert registry.tool_count == 1


def test_merge_remote_adds_entries_with_origin(stub_servers: StubServerFactory):
    stub_servers.add("docs", tools=[StubMCPTool("search", "Search docs")], responses={"search": "hit"})
    aggregator = _aggregator(stub_servers)
    registry = ToolRegistry([_entry("read_file")])

    async def scenario():
        await aggregator.connect_all([stdio_descriptor("docs", auto_approved_tools=("search",))])
        merged = registry.merge_remote(aggregator)
        output = await registry.dispatch(ToolInvocation(call_id="c1", tool_name="search", arguments={"q": "x"}))
        await aggregator.disconnect_all()
        return merged, output

    merged, output = asyncio.run(scenario())

    assert merged == ["search"]
    entry = registry.get_entry("search")
    assert entry.origin_server == "docs"
    assert entry.is_remote is True
    assert entry.auto_approved is True
    assert entry.handler.kind is ToolKind.MCP
    assert entry.spec.description == "[MCP:docs] Search docs"
    assert output.success is True
    assert output.content == "hit"
    assert registry.remote_names() == ["search"]


def test_remote_override_is_restored_on_unmerge(stub_servers: StubServerFactory):
    stub_servers.add("fs", tools=[StubMCPTool("read_file")])
    aggregator = _aggregator(stub_servers)
    builtin = _entry("read_file")
    registry = ToolRegistry([builtin])

    async def scenario():
        await aggregator.connect_all([stdio_descriptor("fs")])
        registry.merge_remote(aggregator)
        overridden = registry.get_entry("read_file")
        removed = registry.unmerge_remote()
        await aggregator.disconnect_all()
        return overridden, removed

    overridden, removed = asyncio.run(scenario())

    assert overridden.origin_server == "fs"
    assert removed == ["read_file"]
    assert registry.get_entry("read_file") is builtin


def test_merging_twice_does_not_stack(stub_servers: StubServerFactory):
    stub_servers.add("fs", tools=[StubMCPTool("read_file"), StubMCPTool("list_dir")])
    aggregator = _aggregator(stub_servers)
    builtin = _entry("read_file")
    registry = ToolRegistry([builtin, _entry("echo")])

    async def scenario():
        await aggregator.connect_all([stdio_descriptor("fs")])
        registry.merge_remote(aggregator)
        registry.merge_remote(aggregator)
        names = sorted(registry.list_names())
        registry.unmerge_remote()
        await aggregator.disconnect_all()
        return names

    assert asyncio.run(scenario()) == ["echo", "list_dir", "read_file"]
    assert sorted(registry.list_names()) == ["echo", "read_file"]
    assert registry.get_entry("read_file") is builtin


def test_dropped_server_surfaces_as_dispatch_error(stub_servers: StubServerFactory):
    stub_servers.add("docs", tools=[StubMCPTool("search")], responses={"search": "hit"})
    aggregator = _aggregator(stub_servers)
    registry = ToolRegistry()

    async def scenario():
        await aggregator.connect_all([stdio_descriptor("docs")])
        registry.merge_remote(aggregator)
        await aggregator.get_connection("docs").close()
        output = await registry.dispatch(ToolInvocation(call_id="c1", tool_name="search"))
        await aggregator.disconnect_all()
        return output

    output = asyncio.run(scenario())

    assert output.success is False
    assert output.metadata["error_type"] == ErrorType.DISPATCH.value
    assert output.content == "MCP server 'docs' is not connected; tool 'search' is unavailable"


def test_tool_definitions_follow_registry_order():
    registry = ToolRegistry([_entry("b"), _entry("a")])

    definitions = registry.tool_definitions()

    assert [definition["name"] for definition in definitions] == ["b", "a"]
    assert definitions[0] == {"name": "b", "description": "b tool", "input_schema": {"type": "object"}}


def test_three_server_scenario_merges_seven_remote_tools(stub_servers: StubServerFactory):
    stub_servers.add("alpha", tools=[StubMCPTool(f"alpha_{i}") for i in range(2)])
    stub_servers.add("beta", tools=[StubMCPTool(f"beta_{i}") for i in range(5)])
    missing = "/nonexistent/indubitably-missing-mcp-server"
    aggregator = _aggregator(stub_servers)
    registry = ToolRegistry([_entry("read_file"), _entry("create_file")])

    async def scenario():
        outcomes = await aggregator.connect_all(
            [stdio_descriptor("alpha"), stdio_descriptor("beta"), stdio_descriptor("gamma", command=missing)]
        )
        merged = registry.merge_remote(aggregator)
        await aggregator.disconnect_all()
        return outcomes, merged

    outcomes, merged = asyncio.run(scenario())

    assert sum(1 for outcome in outcomes if outcome.success) == 2
    (failed,) = [outcome for outcome in outcomes if not outcome.success]
    assert failed.server_name == "gamma" and "not found" in failed.error
    assert len(merged) == 7
    assert registry.tool_count == 9
    assert {registry.get_entry(name).origin_server for name in merged} == {"alpha", "beta"}
