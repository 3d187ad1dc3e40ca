"""Aggregates tools from every configured MCP server."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from errors import ConfigurationError, DispatchError
from session.settings import MCPServerDescriptor, MCPSettings, TransportKind
from tools.mcp_client import MCPConnection, create_connection, describe_error
from tools.mcp_validation import normalize_descriptor, validate_descriptor
from tools.spec import RemoteTool, ToolSpec

logger = logging.getLogger(__name__)

LEGACY_TOOL_PREFIX = "mcp_"

ConnectionFactory = Callable[..., MCPConnection]
ProgressCallback = Callable[["ConnectionOutcome"], Any]


@dataclass(frozen=True)
class ConnectionOutcome:
    """Result of one server's connection attempt."""

    server_name: str
    success: bool
    tool_count: int = 0
    error: Optional[str] = None


@dataclass(frozen=True)
class ToolMapping:
    server_name: str
    original_name: str


@dataclass(frozen=True)
class ServerInfo:
    name: str
    transport: str
    url: Optional[str]
    tool_count: int
    connected: bool
    description: Optional[str] = None
    tags: tuple[str, ...] = ()
    auto_approved_tools: tuple[str, ...] = ()
    warnings: tuple[str, ...] = field(default_factory=tuple)


class ToolSourceAggregator:
    """Owns one :class:`MCPConnection` per server and exposes their tools."""

    def __init__(
        self,
        *,
        settings: Optional[MCPSettings] = None,
        connection_factory: Optional[ConnectionFactory] = None,
    ) -> None:
        self.settings = settings or MCPSettings()
        self._connection_factory = connection_factory or create_connection
        self._connections: Dict[str, MCPConnection] = {}
        self._tools: Dict[str, List[RemoteTool]] = {}
        self._descriptors: Dict[str, MCPServerDescriptor] = {}

    async def connect_all(
        self,
        descriptors: Iterable[MCPServerDescriptor],
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[ConnectionOutcome]:
        """Connect to every enabled server concurrently.

        Each attempt settles on its own; outcomes are returned in the order the
        attempts finished.
        """

        pending = [descriptor for descriptor in descriptors if descriptor.enabled]
        outcomes: List[ConnectionOutcome] = []
        if not pending:
            return outcomes

        async def attempt(descriptor: MCPServerDescriptor) -> None:
            outcome = await self._connect_one(descriptor)
            outcomes.append(outcome)
            if on_progress is not None:
                try:
                    result = on_progress(outcome)
                    if asyncio.iscoroutine(result):
                        await result
                except Exception:
                    logger.exception("MCP progress callback failed for %s", outcome.server_name)

        await asyncio.gather(*(attempt(descriptor) for descriptor in pending))

        succeeded = sum(1 for outcome in outcomes if outcome.success)
        logger.info("Connected to %d of %d MCP server(s)", succeeded, len(outcomes))
        return outcomes

    async def _connect_one(self, descriptor: MCPServerDescriptor) -> ConnectionOutcome:
        name = descriptor.name
        connection: Optional[MCPConnection] = None
        try:
            normalized = normalize_descriptor(descriptor)
            validation = validate_descriptor(normalized)
            if not validation.valid:
                raise ConfigurationError(name, validation.errors)
            connection = self._connection_factory(normalized, settings=self.settings)
            logger.info("Connecting to MCP server %s", name)
            await connection.connect()
            tools = await connection.list_tools()
        except Exception as exc:
            if connection is not None:
                await connection.close()
            message = getattr(exc, "message", None) or describe_error(exc)
            logger.warning("MCP server %s failed to connect: %s", name, message)
            return ConnectionOutcome(server_name=name, success=False, error=message)

        previous = self._connections.get(name)
        if previous is not None and previous is not connection:
            await previous.close()
        self._connections[name] = connection
        self._tools[name] = tools
        self._descriptors[name] = normalized
        logger.info("Connected to MCP server %s (%d tools)", name, len(tools))
        return ConnectionOutcome(server_name=name, success=True, tool_count=len(tools))

    def remote_tools(self) -> List[RemoteTool]:
        tools: List[RemoteTool] = []
        for server_tools in self._tools.values():
            tools.extend(server_tools)
        return tools

    def all_tools(self) -> List[ToolSpec]:
        return [tool.to_spec() for tool in self.remote_tools()]

    def tool_name_to_server(self) -> Dict[str, ToolMapping]:
        mapping: Dict[str, ToolMapping] = {}
        for server_name, server_tools in self._tools.items():
            for tool in server_tools:
                mapping[tool.name] = ToolMapping(server_name=server_name, original_name=tool.name)
        return mapping

    def resolve_tool(self, name: str) -> Optional[ToolMapping]:
        """Map a tool name, including ``mcp_<server>_<tool>`` legacy names, to its server."""

        mapping = self.tool_name_to_server()
        if name in mapping:
            return mapping[name]
        if name.startswith(LEGACY_TOOL_PREFIX):
            remainder = name[len(LEGACY_TOOL_PREFIX):]
            # Longest server name first so "a_b" beats "a" for "mcp_a_b_tool".
            for server_name in sorted(self._tools, key=len, reverse=True):
                prefix = f"{server_name}_"
                if remainder.startswith(prefix):
                    tool_name = remainder[len(prefix):]
                    if any(tool.name == tool_name for tool in self._tools[server_name]):
                        return ToolMapping(server_name=server_name, original_name=tool_name)
        return None

    def server_info(self, name: str) -> Optional[ServerInfo]:
        descriptor = self._descriptors.get(name)
        connection = self._connections.get(name)
        if descriptor is None or connection is None:
            return None
        transport = descriptor.transport or TransportKind.STDIO
        return ServerInfo(
            name=name,
            transport=transport.value,
            url=descriptor.url,
            tool_count=len(self._tools.get(name, [])),
            connected=connection.connected,
            description=descriptor.description,
            tags=tuple(descriptor.tags),
            auto_approved_tools=tuple(descriptor.auto_approved_tools),
            warnings=tuple(connection.warnings),
        )

    def connected_servers(self) -> List[str]:
        return [name for name, connection in self._connections.items() if connection.connected]

    def get_connection(self, name: str) -> Optional[MCPConnection]:
        return self._connections.get(name)

    def auto_approved(self, server_name: str, tool_name: str) -> bool:
        descriptor = self._descriptors.get(server_name)
        return bool(descriptor and tool_name in descriptor.auto_approved_tools)

    async def call_tool(self, name: str, arguments: Optional[Mapping[str, Any]] = None) -> str:
        mapping = self.resolve_tool(name)
        if mapping is None:
            raise DispatchError(f"MCP tool '{name}' not found on any connected server")
        connection = self._connections.get(mapping.server_name)
        if connection is None or not connection.connected:
            raise DispatchError(f"MCP server '{mapping.server_name}' is not connected")
        return await connection.call_tool(mapping.original_name, arguments)

    async def disconnect_all(self) -> None:
        connections = list(self._connections.items())
        self._connections.clear()
        self._tools.clear()
        self._descriptors.clear()
        for name, connection in connections:
            try:
                await connection.close()
            except Exception as exc:
                logger.warning("Error disconnecting MCP server %s: %s", name, describe_error(exc))
        if connections:
            logger.info("Disconnected %d MCP server(s)", len(connections))


__all__ = [
    "ConnectionOutcome",
    "LEGACY_TOOL_PREFIX",
    "RemoteTool",
    "ServerInfo",
    "ToolMapping",
    "ToolSourceAggregator",
]
