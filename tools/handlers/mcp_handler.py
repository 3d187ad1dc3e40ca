"""Handler that delegates tool calls to MCP servers."""
from __future__ import annotations

from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

from errors import DispatchError
from tools.handler import ToolHandler, ToolKind

if TYPE_CHECKING:  # pragma: no cover
    from tools.mcp_client import MCPConnection


class MCPHandler(ToolHandler):
    """Proxies one remote tool to whichever connection owns its server.

    The connection is looked up on every call so a server dropped after the
    merge surfaces as a dispatch error instead of a stale reference.
    """

    def __init__(
        self,
        server_name: str,
        tool_name: str,
        resolve_connection: Callable[[str], Optional["MCPConnection"]],
    ) -> None:
        self.server_name = server_name
        self.tool_name = tool_name
        self._resolve_connection = resolve_connection

    @property
    def kind(self) -> ToolKind:
        return ToolKind.MCP

    async def __call__(self, arguments: Dict[str, Any]) -> str:
        connection = self._resolve_connection(self.server_name)
        if connection is None or not connection.connected:
            raise DispatchError(
                f"MCP server '{self.server_name}' is not connected; tool '{self.tool_name}' is unavailable"
            )
        return await connection.call_tool(self.tool_name, arguments)


__all__ = ["MCPHandler"]
