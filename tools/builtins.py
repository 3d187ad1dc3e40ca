"""Bridges plain ``Tool`` definitions into registry entries."""
from __future__ import annotations

from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from .handlers.function import FunctionToolHandler
from .registry import ToolEntry, ToolFormatter
from .schemas import schema_validator
from .spec import ToolSpec

ToolFunc = Callable[[Any], Any]


class Tool:
    def __init__(
        self,
        name: str,
        description: str,
        input_schema: Dict[str, Any],
        fn: ToolFunc,
        *,
        capabilities: Optional[Iterable[str]] = None,
        formatter: Optional[ToolFormatter] = None,
        requires_approval: Optional[bool] = None,
    ):
        self.name = name
        self.description = description
        self.input_schema = input_schema
        self.fn = fn
        self.capabilities: Set[str] = set(capabilities or [])
        self.formatter = formatter
        # Read-only tools run without confirmation unless told otherwise.
        if requires_approval is None:
            requires_approval = self.capabilities != {"read_fs"}
        self.requires_approval = requires_approval


def build_entries(tools: Iterable[Tool]) -> List[ToolEntry]:
    """Create registry entries for built-in ``Tool`` instances."""
    return [
        ToolEntry(
            name=tool.name,
            spec=ToolSpec(name=tool.name, description=tool.description, input_schema=tool.input_schema),
            handler=FunctionToolHandler(tool),
            formatter=tool.formatter,
            validator=schema_validator(tool.name),
            requires_approval=tool.requires_approval,
        )
        for tool in tools
    ]


__all__ = ["Tool", "ToolFunc", "build_entries"]
