"""Tool routing utilities for translating model outputs into handler calls."""
from __future__ import annotations

import inspect
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from errors import ErrorType
from policies import ApprovalGate
from .handler import ToolInvocation, ToolOutput
from .registry import ToolEntry, ToolRegistry

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[["ToolCall", ToolEntry], Union[bool, Awaitable[bool]]]


@dataclass
class ToolCall:
    """Represents a parsed tool call emitted by the model."""

    tool_name: str
    call_id: str
    arguments: Dict[str, Any] = field(default_factory=dict)


class ToolRouter:
    """Validates, gates and dispatches tool calls, returning tool_result blocks."""

    def __init__(
        self,
        registry: ToolRegistry,
        *,
        gate: Optional[ApprovalGate] = None,
        confirm: Optional[ConfirmCallback] = None,
    ) -> None:
        self._registry = registry
        self._gate = gate
        self._confirm = confirm

    async def execute(self, call: ToolCall) -> ToolOutput:
        entry = self._registry.get_entry(call.tool_name)
        if entry is None:
            available = ", ".join(sorted(self._registry.list_names())) or "none"
            return ToolOutput(
                content=f"Unknown tool '{call.tool_name}'. Available tools: {available}",
                success=False,
                metadata={"error_type": ErrorType.DISPATCH.value},
            )

        if entry.validator is not None:
            problem = entry.validator(call.arguments)
            if problem:
                return ToolOutput(
                    content=problem,
                    success=False,
                    metadata={"error_type": ErrorType.VALIDATION.value},
                )

        if self._gate is not None and self._gate.requires_approval(entry):
            approved = await self._ask(call, entry)
            if not approved:
                logger.info("Tool call %s (%s) rejected", call.tool_name, call.call_id)
                return ToolOutput(
                    content=f"Tool call '{call.tool_name}' was rejected by the user.",
                    success=False,
                    metadata={"error_type": ErrorType.RECOVERABLE.value, "rejected": True},
                )

        invocation = ToolInvocation(
            call_id=call.call_id,
            tool_name=call.tool_name,
            arguments=call.arguments,
        )
        return await self._registry.dispatch(invocation)

    @staticmethod
    def to_tool_result(call: ToolCall, output: ToolOutput) -> Dict[str, Any]:
        return {
            "type": "tool_result",
            "tool_use_id": call.call_id,
            "content": output.content,
            "is_error": not output.success,
        }

    async def _ask(self, call: ToolCall, entry: ToolEntry) -> bool:
        if self._confirm is None:
            return False
        answer = self._confirm(call, entry)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)


__all__ = ["ConfirmCallback", "ToolCall", "ToolRouter"]
