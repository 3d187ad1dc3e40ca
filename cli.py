"""Command-line interface for running the agent headlessly."""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.markup import escape
from rich.prompt import Confirm
from rich.table import Table
from rich.text import Text

from agent_runner import AgentRunOptions, AgentRunResult, AgentRunner, ToolEvent
from config import TOOL_CALLING_CHOICES
from policies import Mode, ModeState
from run import build_default_tools
from session import (
    MCPServerDescriptor,
    SessionSettings,
    discover_project_mcp_servers,
    load_mcp_servers_json,
    load_session_settings,
)
from tools import ConnectionOutcome, ToolCall, ToolEntry

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the Indubitably agent in headless mode")
    prompt_group = parser.add_mutually_exclusive_group(required=False)
    prompt_group.add_argument("--prompt", help="User prompt to start the session with")
    prompt_group.add_argument("--prompt-file", type=Path, help="File containing the initial prompt")

    parser.add_argument("--config", type=Path, help="Path to a TOML session settings file")
    parser.add_argument(
        "--mcp-config",
        type=Path,
        help="JSON file with MCP server definitions (defaults to the project's .mcp.json or mcp.json)",
    )
    parser.add_argument(
        "--mode",
        choices=[mode.value for mode in Mode],
        default=Mode.NORMAL.value,
        help="Approval mode; auto-accept runs tools without confirmation",
    )
    parser.add_argument(
        "--tool-calling",
        choices=TOOL_CALLING_CHOICES,
        default=None,
        help="Use native tool calls, prompt-injected JSON calls, or detect automatically",
    )
    parser.add_argument("--max-turns", type=int, default=8, help="Maximum model response turns to allow")
    parser.add_argument("--allowed-tools", help="Comma-separated list of tool names to allow (defaults to all)")
    parser.add_argument("--blocked-tools", help="Comma-separated list of tool names to block")
    parser.add_argument(
        "--exit-on-tool-error",
        action="store_true",
        help="Stop immediately if a tool returns an error",
    )
    parser.add_argument("--list-servers", action="store_true", help="Connect to MCP servers, list them and exit")
    parser.add_argument("--json", action="store_true", help="Emit machine-readable JSON summary")
    parser.add_argument("--no-color", action="store_true", help="Disable ANSI color output")
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")

    return parser.parse_args(argv)


def configure_logging(verbose: bool, *, use_color: bool = True) -> None:
    console = Console(stderr=True, no_color=not use_color)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, show_path=False, rich_tracebacks=verbose)],
        force=True,
    )


def load_prompt(args: argparse.Namespace) -> str:
    if args.prompt_file:
        return args.prompt_file.read_text(encoding="utf-8")
    if args.prompt:
        return args.prompt
    if not sys.stdin.isatty():
        return sys.stdin.read()
    raise SystemExit("No prompt provided. Use --prompt, --prompt-file, or pipe input via stdin.")


def load_mcp_servers(args: argparse.Namespace, settings: SessionSettings) -> List[MCPServerDescriptor]:
    """Combine TOML definitions with JSON ones; JSON wins on name clashes."""

    servers: Dict[str, MCPServerDescriptor] = {
        descriptor.name: descriptor for descriptor in settings.mcp.definitions
    }
    if args.mcp_config:
        try:
            extra = load_mcp_servers_json(args.mcp_config)
        except (OSError, ValueError) as exc:
            raise SystemExit(f"Failed to load MCP config {args.mcp_config}: {exc}")
    else:
        extra = discover_project_mcp_servers()
    for descriptor in extra:
        servers[descriptor.name] = descriptor
    return list(servers.values())


def main(argv: Optional[list[str]] = None, *, client: Any = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose, use_color=not args.no_color)
    return asyncio.run(_main_async(args, client=client))


async def _main_async(args: argparse.Namespace, *, client: Any = None) -> int:
    console = Console(no_color=args.no_color, highlight=False)

    try:
        settings = load_session_settings(args.config)
    except (OSError, ValueError) as exc:
        raise SystemExit(f"Failed to load config {args.config}: {exc}")

    options = AgentRunOptions(
        max_turns=args.max_turns,
        exit_on_tool_error=args.exit_on_tool_error,
        allowed_tools=_parse_name_set(args.allowed_tools),
        blocked_tools=_parse_name_set(args.blocked_tools) or set(),
        tool_calling=args.tool_calling,
    )

    prompt = None if args.list_servers else load_prompt(args)

    runner = AgentRunner(
        build_default_tools(),
        options,
        client=client,
        session_settings=settings,
        mcp_servers=load_mcp_servers(args, settings),
        mode_state=ModeState(Mode.parse(args.mode)),
        confirm=_confirm_tool_call,
        on_event=None if args.json else lambda event: _print_event(console, event),
    )

    try:
        await runner.start(on_progress=None if args.json else lambda outcome: _print_outcome(console, outcome))
        if args.list_servers:
            if args.json:
                console.print_json(json.dumps(_servers_to_json(runner)))
            else:
                _print_servers(console, runner)
            return 0

        assert prompt is not None
        result = await runner.run(prompt)
    finally:
        await runner.aclose()

    if args.json:
        print(_result_to_json(result))
    else:
        _print_human_summary(console, result)
    return 0


async def _confirm_tool_call(call: ToolCall, entry: ToolEntry) -> bool:
    if not sys.stdin.isatty():
        logger.warning("Cannot confirm %s without an interactive terminal; rejecting", call.tool_name)
        return False
    origin = f" from {entry.origin_server}" if entry.origin_server else ""
    summary = escape(json.dumps(call.arguments, ensure_ascii=False))
    question = f"Run [bold]{call.tool_name}[/bold]{origin} with {summary}?"
    return await asyncio.to_thread(Confirm.ask, question, default=False)


def _parse_name_set(raw: Optional[str]) -> Optional[set[str]]:
    if not raw:
        return None
    names = {name.strip() for name in raw.split(",") if name.strip()}
    return names or None


def _print_outcome(console: Console, outcome: ConnectionOutcome) -> None:
    if outcome.success:
        console.print(Text(f"✓ {outcome.server_name}: {outcome.tool_count} tools", style="green"))
    else:
        console.print(Text(f"✗ {outcome.server_name}: {outcome.error}", style="red"))


def _print_event(console: Console, event: ToolEvent) -> None:
    status = "skipped" if event.skipped else ("error" if event.is_error else "ok")
    style = "yellow" if event.skipped else ("red" if event.is_error else "cyan")
    origin = f" [{event.origin_server}]" if event.origin_server else ""
    console.print(Text(f"• {event.tool_name}{origin} ({status})", style=style))
    if event.display:
        console.print(Text(f"  {event.display}", style="dim"))


def _servers_to_json(runner: AgentRunner) -> List[Dict[str, Any]]:
    payload: List[Dict[str, Any]] = []
    for outcome in runner.connection_outcomes:
        info = runner.aggregator.server_info(outcome.server_name)
        entry: Dict[str, Any] = {"name": outcome.server_name, "success": outcome.success}
        if info is not None:
            entry.update(
                {
                    "transport": info.transport,
                    "url": info.url,
                    "toolCount": info.tool_count,
                    "connected": info.connected,
                    "description": info.description,
                    "tags": list(info.tags),
                    "autoApprovedCommands": list(info.auto_approved_tools),
                }
            )
        else:
            entry["error"] = outcome.error
        payload.append(entry)
    return payload


def _print_servers(console: Console, runner: AgentRunner) -> None:
    table = Table(title="MCP servers")
    table.add_column("Server")
    table.add_column("Transport")
    table.add_column("Tools", justify="right")
    table.add_column("Status")
    for outcome in runner.connection_outcomes:
        info = runner.aggregator.server_info(outcome.server_name)
        if info is None:
            table.add_row(outcome.server_name, "-", "-", Text(outcome.error or "failed", style="red"))
            continue
        status = Text("connected", style="green") if info.connected else Text("disconnected", style="yellow")
        table.add_row(info.name, info.transport, str(info.tool_count), status)
    console.print(table)


def _result_to_json(result: AgentRunResult) -> str:
    payload: Dict[str, Any] = {
        "final_response": result.final_response,
        "stopped_reason": result.stopped_reason,
        "turns_used": result.turns_used,
        "tool_calling_mode": result.tool_calling_mode,
        "tools": [event.to_dict() for event in result.tool_events],
    }
    return json.dumps(payload, ensure_ascii=False, indent=2)


def _print_human_summary(console: Console, result: AgentRunResult) -> None:
    console.print(Markdown(result.final_response or "_no final response_"))
    console.print()
    console.print(
        Text(
            f"Stopped reason: {result.stopped_reason} (turns: {result.turns_used}, "
            f"tool calling: {result.tool_calling_mode})",
            style="dim",
        )
    )


if __name__ == "__main__":
    raise SystemExit(main())
