"""Core tool handler protocol and supporting data structures."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Protocol

from errors import ErrorType, ToolError

logger = logging.getLogger(__name__)


class ToolKind(Enum):
    """Types of tools supported by the registry."""

    FUNCTION = "function"
    MCP = "mcp"


@dataclass
class ToolInvocation:
    """Context for a single tool invocation."""

    call_id: str
    tool_name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ToolOutput:
    """Result of tool execution."""

    content: str
    success: bool
    metadata: Dict[str, Any] | None = None


class ToolHandler(Protocol):
    """Callable taking the tool's arguments and returning its result text."""

    @property
    def kind(self) -> ToolKind:
        ...

    async def __call__(self, arguments: Dict[str, Any]) -> str | ToolOutput:
        ...


async def execute_handler(handler: ToolHandler, invocation: ToolInvocation) -> ToolOutput:
    """Run a handler, converting any exception into a failed ``ToolOutput``."""
    start = time.monotonic()
    try:
        raw = await handler(dict(invocation.arguments))
        if isinstance(raw, ToolOutput):
            result = raw
        else:
            result = ToolOutput(content="" if raw is None else str(raw), success=True)
    except ToolError as exc:
        result = ToolOutput(
            content=exc.message,
            success=False,
            metadata={"error_type": exc.error_type.value},
        )
    except Exception as exc:
        logger.exception("Tool %s raised unexpectedly", invocation.tool_name)
        result = ToolOutput(
            content=f"tool execution failed: {exc}",
            success=False,
            metadata={"error_type": ErrorType.FATAL.value},
        )

    duration_ms = int((time.monotonic() - start) * 1000)
    logger.debug(
        "Tool %s (%s) finished in %dms success=%s",
        invocation.tool_name,
        invocation.call_id,
        duration_ms,
        result.success,
    )

    if not result.success:
        metadata = result.metadata or {}
        if "error_type" not in metadata:
            metadata["error_type"] = ErrorType.RECOVERABLE.value
            result.metadata = metadata

    return result


__all__ = [
    "ToolHandler",
    "ToolInvocation",
    "ToolKind",
    "ToolOutput",
    "execute_handler",
]
