"""Registry of built-in and remote tools keyed by tool name."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Mapping, Optional

from errors import ErrorType
from .handler import ToolHandler, ToolInvocation, ToolOutput, execute_handler
from .handlers.mcp_handler import MCPHandler
from .spec import ToolSpec

if TYPE_CHECKING:  # pragma: no cover
    from .mcp_integration import ToolSourceAggregator

logger = logging.getLogger(__name__)

ToolFormatter = Callable[[Mapping[str, Any]], str]
ToolValidator = Callable[[Mapping[str, Any]], Optional[str]]


@dataclass
class ToolEntry:
    """A tool specification coupled with its handler and dispatch metadata.

    ``validator`` returns an error message for bad arguments or ``None``.
    ``origin_server`` is ``None`` for built-in tools.
    """

    name: str
    spec: ToolSpec
    handler: ToolHandler
    formatter: Optional[ToolFormatter] = None
    validator: Optional[ToolValidator] = None
    origin_server: Optional[str] = None
    requires_approval: bool = True
    auto_approved: bool = False

    @property
    def is_remote(self) -> bool:
        return self.origin_server is not None


class ToolRegistry:
    """Central registry mapping tool names to entries.

    Mutating methods are synchronous so a merge is never observed half done.
    """

    def __init__(self, builtins: Iterable[ToolEntry] = ()) -> None:
        self._entries: Dict[str, ToolEntry] = {}
        self._remote_names: List[str] = []
        self._shadowed: Dict[str, ToolEntry] = {}
        self.register_builtins(builtins)

    def register_builtins(self, entries: Iterable[ToolEntry]) -> None:
        for entry in entries:
            self.register(entry)

    def register(self, entry: ToolEntry) -> None:
        if entry.name in self._entries:
            logger.warning("Overwriting handler for tool '%s'", entry.name)
        self._entries[entry.name] = entry

    def unregister(self, name: str) -> Optional[ToolEntry]:
        return self._entries.pop(name, None)

    def merge_remote(self, aggregator: "ToolSourceAggregator") -> List[str]:
        """Install an entry for every tool the aggregator currently exposes.

        A previous merge is undone first, so merging twice never stacks.
        """

        self.unmerge_remote()
        merged: List[str] = []
        for tool in aggregator.remote_tools():
            existing = self._entries.get(tool.name)
            if existing is not None:
                if not existing.is_remote and tool.name not in self._shadowed:
                    self._shadowed[tool.name] = existing
                logger.warning(
                    "Remote tool '%s' from %s overrides an existing tool", tool.name, tool.server_name
                )
            self._entries[tool.name] = ToolEntry(
                name=tool.name,
                spec=tool.to_spec(),
                handler=MCPHandler(tool.server_name, tool.name, aggregator.get_connection),
                origin_server=tool.server_name,
                requires_approval=True,
                auto_approved=aggregator.auto_approved(tool.server_name, tool.name),
            )
            if tool.name not in merged:
                merged.append(tool.name)
        self._remote_names = merged
        if merged:
            logger.info("Merged %d remote tool(s) into the registry", len(merged))
        return list(merged)

    def unmerge_remote(self) -> List[str]:
        """Remove the last merge's entries and restore any built-ins they shadowed."""

        removed: List[str] = []
        for name in self._remote_names:
            entry = self._entries.get(name)
            if entry is not None and entry.is_remote:
                del self._entries[name]
                removed.append(name)
        for name, entry in self._shadowed.items():
            self._entries.setdefault(name, entry)
        self._remote_names = []
        self._shadowed = {}
        return removed

    def has_tool(self, name: str) -> bool:
        return name in self._entries

    def get_entry(self, name: str) -> Optional[ToolEntry]:
        return self._entries.get(name)

    def get_handler(self, name: str) -> Optional[ToolHandler]:
        entry = self._entries.get(name)
        return entry.handler if entry else None

    def get_formatter(self, name: str) -> Optional[ToolFormatter]:
        entry = self._entries.get(name)
        return entry.formatter if entry else None

    def list_names(self) -> List[str]:
        return list(self._entries)

    def remote_names(self) -> List[str]:
        return list(self._remote_names)

    def get_all_tools(self) -> Dict[str, ToolSpec]:
        return {name: entry.spec for name, entry in self._entries.items()}

    def tool_definitions(self) -> List[Dict[str, Any]]:
        return [entry.spec.to_anthropic_definition() for entry in self._entries.values()]

    @property
    def tool_count(self) -> int:
        return len(self._entries)

    async def dispatch(self, invocation: ToolInvocation) -> ToolOutput:
        handler = self.get_handler(invocation.tool_name)
        if handler is None:
            return ToolOutput(
                content=f"tool '{invocation.tool_name}' not found",
                success=False,
                metadata={"error_type": ErrorType.DISPATCH.value},
            )
        return await execute_handler(handler, invocation)


__all__ = [
    "ToolEntry",
    "ToolFormatter",
    "ToolRegistry",
    "ToolValidator",
]
