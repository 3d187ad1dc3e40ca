"""Tool specification models."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional

MCP_DESCRIPTION_PREFIX = "[MCP:{server}]"


@dataclass(slots=True)
class ToolSpec:
    """Describes a tool in the registry."""

    name: str
    description: str
    input_schema: Dict[str, Any] = field(default_factory=dict)

    def to_anthropic_definition(self) -> Dict[str, Any]:
        """Return a dict compatible with Anthropic tool definitions."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.input_schema,
        }


@dataclass(frozen=True, slots=True)
class RemoteTool:
    """A tool advertised by a connected tool server."""

    name: str
    server_name: str
    description: Optional[str] = None
    input_schema: Dict[str, Any] = field(default_factory=dict)

    def to_spec(self) -> ToolSpec:
        if self.description:
            description = f"{MCP_DESCRIPTION_PREFIX.format(server=self.server_name)} {self.description}"
        else:
            description = f"MCP tool from {self.server_name}"
        schema = dict(self.input_schema) if self.input_schema else {"type": "object", "properties": {}}
        return ToolSpec(name=self.name, description=description, input_schema=schema)


__all__ = ["MCP_DESCRIPTION_PREFIX", "RemoteTool", "ToolSpec"]
