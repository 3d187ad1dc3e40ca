"""Function-based tool handler wrapping synchronous built-in tools."""
from __future__ import annotations

import asyncio
from typing import Any, Dict, TYPE_CHECKING

from errors import ValidationToolError
from ..handler import ToolHandler, ToolKind, ToolOutput
from ..schemas import parse_tool_input

if TYPE_CHECKING:  # pragma: no cover
    from tools.builtins import Tool


class FunctionToolHandler(ToolHandler):
    """Adapter that lets a synchronous ``Tool`` run as an async registry handler."""

    def __init__(self, tool: "Tool") -> None:
        self._tool = tool

    @property
    def kind(self) -> ToolKind:
        return ToolKind.FUNCTION

    async def __call__(self, arguments: Dict[str, Any]) -> str | ToolOutput:
        try:
            params = parse_tool_input(self._tool.name, arguments)
        except ValueError as exc:
            raise ValidationToolError(str(exc)) from exc

        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, self._tool.fn, params)

        if isinstance(result, (ToolOutput, str)):
            return result
        return str(result)

    @property
    def tool(self) -> "Tool":  # pragma: no cover - convenience for callers
        return self._tool


__all__ = ["FunctionToolHandler"]
