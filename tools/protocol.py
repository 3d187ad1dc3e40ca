"""Normalises native and free-text tool calls and filters repeats."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Collection, Dict, Iterable, List, Mapping, Optional, Sequence

from session.call_history import CallHistory
from .spec import ToolSpec
from .tool_call_parser import parse_tool_calls
from .tool_prompt import build_fallback_prompt, latest_user_request

logger = logging.getLogger(__name__)

DUPLICATE_CALL_MESSAGE = (
    "I already ran that exact tool call a moment ago, so I skipped running it again. "
    "The earlier result is above; ask me to run it again if something has changed."
)


class ToolCallingMode(Enum):
    NATIVE = "native"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class ToolCallRequest:
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ModelResponse:
    """What the model said: prose plus any structured tool calls."""

    text: str = ""
    tool_calls: List[ToolCallRequest] = field(default_factory=list)

    @classmethod
    def from_content(cls, blocks: Iterable[Mapping[str, Any]]) -> "ModelResponse":
        texts: List[str] = []
        calls: List[ToolCallRequest] = []
        for block in blocks:
            block_type = block.get("type")
            if block_type == "text":
                texts.append(str(block.get("text", "")))
            elif block_type == "tool_use":
                arguments = block.get("input") or {}
                calls.append(
                    ToolCallRequest(
                        id=str(block.get("id", "")),
                        name=str(block.get("name", "")),
                        arguments=dict(arguments) if isinstance(arguments, Mapping) else {},
                    )
                )
        return cls(text="\n".join(part for part in texts if part), tool_calls=calls)


@dataclass
class ExtractionResult:
    calls: List[ToolCallRequest] = field(default_factory=list)
    reasoning_text: str = ""
    duplicates_removed: int = 0
    all_duplicates: bool = False


class ToolCallProtocolHandler:
    """Turns a model response into the tool calls that should actually run."""

    def __init__(self, mode: ToolCallingMode = ToolCallingMode.NATIVE) -> None:
        self.mode = mode

    def extract_calls(
        self,
        response: ModelResponse,
        history: CallHistory,
        tool_names: Optional[Collection[str]] = None,
    ) -> ExtractionResult:
        """Return accepted calls and the prose to keep.

        *tool_names* limits which XML-style tags count as calls in fallback mode.

        Synchronous on purpose: the duplicate check and the history append
        happen in one step.
        """

        if self.mode is ToolCallingMode.FALLBACK:
            parsed = parse_tool_calls(response.text, tool_names)
            candidates = [
                ToolCallRequest(id=call.id, name=call.name, arguments=dict(call.arguments))
                for call in parsed.calls
            ]
            # A model in fallback mode may still emit structured calls.
            candidates.extend(response.tool_calls)
            reasoning = parsed.text
        else:
            candidates = list(response.tool_calls)
            reasoning = response.text

        accepted: List[ToolCallRequest] = []
        for call in candidates:
            if history.check_and_record(call.name, call.arguments):
                accepted.append(call)

        removed = len(candidates) - len(accepted)
        all_duplicates = bool(candidates) and not accepted
        if all_duplicates:
            logger.info("All %d tool call(s) in response were recent duplicates", removed)
            reasoning = DUPLICATE_CALL_MESSAGE
        return ExtractionResult(
            calls=accepted,
            reasoning_text=reasoning,
            duplicates_removed=removed,
            all_duplicates=all_duplicates,
        )

    def build_system_prompt(
        self,
        base_prompt: Optional[str],
        tools: Sequence[ToolSpec],
        messages: Sequence[Mapping[str, Any]] = (),
    ) -> str:
        base = base_prompt or ""
        if self.mode is not ToolCallingMode.FALLBACK:
            return base
        block = build_fallback_prompt(tools, latest_user_request(messages))
        if not block:
            return base
        return f"{base}\n\n{block}" if base else block


__all__ = [
    "DUPLICATE_CALL_MESSAGE",
    "ExtractionResult",
    "ModelResponse",
    "ToolCallProtocolHandler",
    "ToolCallRequest",
    "ToolCallingMode",
]
