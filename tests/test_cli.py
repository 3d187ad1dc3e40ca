import argparse
import io
import json
import sys
import textwrap

import pytest

import cli
from session import load_session_settings
from tests.mocking import MockAnthropic, StubMCPTool, StubServerFactory, tool_use_block


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def stubbed_servers(monkeypatch) -> StubServerFactory:
    stubs = StubServerFactory()
    monkeypatch.setattr("tools.mcp_integration.create_connection", stubs.connection_factory())
    return stubs


def _write_mcp_json(path, servers):
    path.write_text(json.dumps({"mcpServers": servers}), encoding="utf-8")


def test_cli_json_output(workspace, capsys):
    client = MockAnthropic()
    client.add_text("done")

    exit_code = cli.main(["--prompt", "Summarise the repository layout", "--json"], client=client)

    assert exit_code == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["final_response"] == "done"
    assert payload["stopped_reason"] == "completed"
    assert payload["tools"] == []
    assert [tool["name"] for tool in client.requests[0]["tools"]] == ["read_file", "create_file", "run_terminal_cmd"]


def test_cli_human_output_with_tool_call(workspace, capsys):
    (workspace / "README.md").write_text("# Demo\n", encoding="utf-8")
    client = MockAnthropic()
    client.add_response_from_blocks([tool_use_block("read_file", {"path": "README.md"}, tool_use_id="t1")])
    client.add_text("The README has a single heading.")

    exit_code = cli.main(["--prompt", "What does the README say?", "--no-color"], client=client)

    assert exit_code == 0
    out = capsys.readouterr().out
    assert "read_file (ok)" in out
    assert "The README has a single heading." in out
    assert "Stopped reason: completed" in out


def test_cli_tool_calling_flag(workspace, capsys):
    client = MockAnthropic()
    client.add_text("done")

    cli.main(["--prompt", "Summarise the repository layout", "--json", "--tool-calling", "fallback"], client=client)

    payload = json.loads(capsys.readouterr().out)
    assert payload["tool_calling_mode"] == "fallback"
    assert "tools" not in client.requests[0]


def test_cli_rejects_writes_without_a_terminal(workspace, capsys, monkeypatch):
    monkeypatch.setattr(sys, "stdin", io.StringIO())
    client = MockAnthropic()
    client.add_response_from_blocks([tool_use_block("create_file", {"path": "x.txt"}, tool_use_id="t1")])
    client.add_text("Skipped.")

    cli.main(["--prompt", "Create x.txt please, thank you", "--json"], client=client)

    payload = json.loads(capsys.readouterr().out)
    (event,) = payload["tools"]
    assert event["skipped"] is True
    assert not (workspace / "x.txt").exists()


def test_cli_auto_accept_runs_writes(workspace, capsys):
    client = MockAnthropic()
    client.add_response_from_blocks(
        [tool_use_block("create_file", {"path": "x.txt", "content": "hi"}, tool_use_id="t1")]
    )
    client.add_text("Created.")

    cli.main(["--prompt", "Create x.txt please, thank you", "--json", "--mode", "auto-accept"], client=client)

    payload = json.loads(capsys.readouterr().out)
    assert payload["tools"][0]["is_error"] is False
    assert (workspace / "x.txt").read_text(encoding="utf-8") == "hi"


def test_cli_list_servers_json(workspace, capsys, stubbed_servers):
    stubbed_servers.add("docs", tools=[StubMCPTool("search"), StubMCPTool("fetch")])
    _write_mcp_json(
        workspace / ".mcp.json",
        {
            "docs": {
                "command": sys.executable,
                "description": "Project docs",
                "autoApprovedCommands": ["search"],
            },
            "live": {"transport": "websocket", "url": "http://localhost:9000"},
        },
    )

    exit_code = cli.main(["--list-servers", "--json"], client=MockAnthropic())

    assert exit_code == 0
    entries = {entry["name"]: entry for entry in json.loads(capsys.readouterr().out)}
    assert entries["docs"]["success"] is True
    assert entries["docs"]["toolCount"] == 2
    assert entries["docs"]["transport"] == "stdio"
    assert entries["docs"]["autoApprovedCommands"] == ["search"]
    assert entries["live"]["success"] is False
    assert "ws:// or wss://" in entries["live"]["error"]
    assert stubbed_servers.sessions["docs"].closed is True


def test_cli_list_servers_table(workspace, capsys, stubbed_servers):
    stubbed_servers.add("docs", tools=[StubMCPTool("search")])
    _write_mcp_json(workspace / "mcp.json", {"docs": {"command": sys.executable}})

    exit_code = cli.main(["--list-servers", "--no-color"], client=MockAnthropic())

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "docs: 1 tools" in out
    assert "MCP servers" in out
    assert "connected" in out


def test_load_mcp_servers_prefers_json_on_clash(tmp_path):
    config = tmp_path / "config.toml"
    config.write_text(
        textwrap.dedent(
            """
            [[mcp.definitions]]
            name = "docs"
            command = "old-docs"

            [[mcp.definitions]]
            name = "tickets"
            command = "tickets-server"
            """
        ),
        encoding="utf-8",
    )
    servers_json = tmp_path / "servers.json"
    _write_mcp_json(servers_json, {"docs": {"command": "new-docs"}, "search": {"command": "search-server"}})
    settings = load_session_settings(config)

    servers = cli.load_mcp_servers(argparse.Namespace(mcp_config=servers_json), settings)

    by_name = {server.name: server for server in servers}
    assert sorted(by_name) == ["docs", "search", "tickets"]
    assert by_name["docs"].command == "new-docs"


def test_load_mcp_servers_reports_bad_file(tmp_path):
    bad = tmp_path / "broken.json"
    bad.write_text("{", encoding="utf-8")

    with pytest.raises(SystemExit):
        cli.load_mcp_servers(argparse.Namespace(mcp_config=bad), load_session_settings())
