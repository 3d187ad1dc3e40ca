"""Headless agent runner: model turns, tool-server tools, approval and duplicate control."""
from __future__ import annotations

import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set

from anthropic import Anthropic, BadRequestError, RateLimitError, UnprocessableEntityError

from config import load_anthropic_config, load_tool_calling_preference
from policies import ApprovalGate, ModeState
from session import CallHistory, MCPServerDescriptor, SessionSettings, load_session_settings
from tools import (
    DUPLICATE_CALL_MESSAGE,
    ConnectionOutcome,
    ModelResponse,
    Tool,
    ToolCall,
    ToolCallingMode,
    ToolCallProtocolHandler,
    ToolCallRequest,
    ToolOutput,
    ToolRegistry,
    ToolRouter,
    ToolSourceAggregator,
    build_entries,
)
from tools.router import ConfirmCallback
from tools.tool_prompt import TOOL_RESULTS_MARKER

logger = logging.getLogger(__name__)

DEFAULT_SYSTEM_PROMPT = (
    "You are a coding assistant working inside the user's project. Use the available tools to inspect "
    "files, make changes and run commands, then answer the user's request directly."
)

# Errors that mean the provider refuses tool-bound requests outright.
_NATIVE_REJECTIONS = (BadRequestError, UnprocessableEntityError)


@dataclass
class ToolEvent:
    turn: int
    tool_name: str
    raw_input: Any
    result: str
    is_error: bool
    skipped: bool
    origin_server: Optional[str] = None
    display: Optional[str] = None
    reasoning: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "turn": self.turn,
            "tool": self.tool_name,
            "input": _jsonable(self.raw_input),
            "result": self.result,
            "is_error": self.is_error,
            "skipped": self.skipped,
            "server": self.origin_server,
            "display": self.display,
            "reasoning": self.reasoning,
            "metadata": dict(self.metadata),
        }


@dataclass
class AgentRunOptions:
    max_turns: int = 8
    exit_on_tool_error: bool = False
    allowed_tools: Optional[Set[str]] = None
    blocked_tools: Set[str] = field(default_factory=set)
    tool_calling: Optional[str] = None
    system_prompt: Optional[str] = None


@dataclass
class AgentRunResult:
    final_response: str
    tool_events: List[ToolEvent]
    turns_used: int
    stopped_reason: str
    conversation: List[Dict[str, Any]]
    tool_calling_mode: str


class AgentRunner:
    """Drives one conversation against the model with built-in and remote tools."""

    def __init__(
        self,
        tools: Sequence[Tool],
        options: AgentRunOptions,
        *,
        client: Optional[Any] = None,
        session_settings: Optional[SessionSettings] = None,
        mcp_servers: Optional[Sequence[MCPServerDescriptor]] = None,
        aggregator: Optional[ToolSourceAggregator] = None,
        mode_state: Optional[ModeState] = None,
        confirm: Optional[ConfirmCallback] = None,
        on_event: Optional[Callable[[ToolEvent], None]] = None,
    ) -> None:
        self.options = options
        self.session_settings = session_settings or load_session_settings()
        self.config = load_anthropic_config(
            self.session_settings.model.name, self.session_settings.model.max_tokens
        )
        self.client = client or Anthropic()
        self.mode_state = mode_state or ModeState()
        self._on_event = on_event

        self.active_tools = self._filter_tools(tools)
        self.registry = ToolRegistry(build_entries(self.active_tools))
        self.aggregator = aggregator or ToolSourceAggregator(settings=self.session_settings.mcp)
        self.router = ToolRouter(self.registry, gate=ApprovalGate(self.mode_state), confirm=confirm)

        calling = self.session_settings.tool_calling
        self.call_history = CallHistory(
            window_seconds=calling.duplicate_window_seconds,
            limit=calling.history_limit,
        )
        self.tool_calling = (
            options.tool_calling or load_tool_calling_preference() or calling.mode
        )
        # None means "auto" has not seen a definitive native success or failure yet.
        self._native_supported: Optional[bool] = {"native": True, "fallback": False}.get(self.tool_calling)
        self.protocol = ToolCallProtocolHandler(
            ToolCallingMode.FALLBACK if self._native_supported is False else ToolCallingMode.NATIVE
        )

        if mcp_servers is not None:
            self._mcp_servers = list(mcp_servers)
        else:
            self._mcp_servers = list(self.session_settings.mcp.definitions)
        self.messages: List[Dict[str, Any]] = []
        self.connection_outcomes: List[ConnectionOutcome] = []
        self._started = False

    async def __aenter__(self) -> "AgentRunner":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    @property
    def native_supported(self) -> Optional[bool]:
        return self._native_supported

    async def start(
        self,
        on_progress: Optional[Callable[[ConnectionOutcome], Any]] = None,
    ) -> List[ConnectionOutcome]:
        """Connect configured tool servers and merge their tools into the registry."""

        if self._started:
            return list(self.connection_outcomes)
        self._started = True
        if not (self.session_settings.mcp.enable and self._mcp_servers):
            return []

        self.connection_outcomes = await self.aggregator.connect_all(self._mcp_servers, on_progress)
        merged = self.registry.merge_remote(self.aggregator)
        for name in merged:
            if not self._is_tool_allowed(name):
                self.registry.unregister(name)
        return list(self.connection_outcomes)

    async def aclose(self) -> None:
        self.registry.unmerge_remote()
        await self.aggregator.disconnect_all()
        self._started = False

    def clear_context(self) -> None:
        """Forget the conversation and the recent-call history."""

        self.messages.clear()
        self.call_history.clear()

    async def run(self, prompt: str) -> AgentRunResult:
        if not prompt.strip():
            raise ValueError("prompt must contain text")
        await self.start()

        self.messages.append({"role": "user", "content": prompt.strip()})
        events: List[ToolEvent] = []
        text_outputs: List[str] = []
        stopped_reason = "completed"
        turns_used = 0

        for turn_idx in range(1, self.options.max_turns + 1):
            turns_used = turn_idx
            blocks = await self._request_model()
            response = ModelResponse.from_content(blocks)
            extraction = self.protocol.extract_calls(response, self.call_history, self.registry.list_names())
            fallback = self.protocol.mode is ToolCallingMode.FALLBACK

            if extraction.all_duplicates:
                # Replace the looping response so the transcript never holds unanswered calls.
                self.messages.append(
                    {"role": "assistant", "content": [{"type": "text", "text": DUPLICATE_CALL_MESSAGE}]}
                )
                text_outputs.append(DUPLICATE_CALL_MESSAGE)
                stopped_reason = "duplicate_calls"
                break

            if fallback:
                self.messages.append(
                    {"role": "assistant", "content": [{"type": "text", "text": response.text or "(tool call)"}]}
                )
            else:
                self.messages.append({"role": "assistant", "content": blocks})
            if extraction.reasoning_text:
                text_outputs.append(extraction.reasoning_text)

            if not extraction.calls:
                break

            results: List[Dict[str, Any]] = []
            tool_error = False
            fatal = False
            for call in extraction.calls:
                event, block = await self._execute_call(turn_idx, call, extraction.reasoning_text)
                events.append(event)
                results.append(block)
                tool_error = tool_error or event.is_error
                if event.metadata.get("error_type") == "fatal":
                    fatal = True

            if not fallback:
                accepted = {call.id for call in extraction.calls}
                for call in response.tool_calls:
                    if call.id not in accepted:
                        results.append(
                            {
                                "type": "tool_result",
                                "tool_use_id": call.id,
                                "content": DUPLICATE_CALL_MESSAGE,
                                "is_error": True,
                            }
                        )
                self.messages.append({"role": "user", "content": results})
            else:
                self.messages.append(
                    {
                        "role": "user",
                        "content": _format_fallback_results(extraction.calls, results),
                        TOOL_RESULTS_MARKER: True,
                    }
                )

            if fatal:
                stopped_reason = "fatal_tool_error"
                break
            if tool_error and self.options.exit_on_tool_error:
                stopped_reason = "tool_error"
                break
        else:
            stopped_reason = "max_turns"

        return AgentRunResult(
            final_response="\n".join(text for text in text_outputs if text).strip(),
            tool_events=events,
            turns_used=turns_used,
            stopped_reason=stopped_reason,
            conversation=list(self.messages),
            tool_calling_mode=self.protocol.mode.value,
        )

    async def _execute_call(
        self,
        turn_idx: int,
        call: ToolCallRequest,
        reasoning: str,
    ) -> tuple[ToolEvent, Dict[str, Any]]:
        tool_call = ToolCall(tool_name=call.name, call_id=call.id, arguments=dict(call.arguments))
        entry = self.registry.get_entry(call.name)

        if not self._is_tool_allowed(call.name):
            output = ToolOutput(
                content=f"tool '{call.name}' not permitted",
                success=False,
                metadata={"error_type": "dispatch"},
            )
        else:
            output = await self.router.execute(tool_call)

        display: Optional[str] = None
        formatter = self.registry.get_formatter(call.name)
        if formatter is not None:
            try:
                display = formatter(call.arguments)
            except Exception:
                logger.exception("Formatter for %s failed", call.name)

        metadata = dict(output.metadata or {})
        event = ToolEvent(
            turn=turn_idx,
            tool_name=call.name,
            raw_input=dict(call.arguments),
            result=output.content,
            is_error=not output.success,
            skipped=bool(metadata.get("rejected")),
            origin_server=entry.origin_server if entry else None,
            display=display,
            reasoning=reasoning,
            metadata=metadata,
        )
        if self._on_event is not None:
            self._on_event(event)
        return event, ToolRouter.to_tool_result(tool_call, output)

    async def _request_model(self) -> List[Dict[str, Any]]:
        if self._native_supported is None:
            try:
                blocks = await self._call_with_backoff(native=True)
            except _NATIVE_REJECTIONS as exc:
                logger.warning("Native tool calling rejected (%s); switching this session to fallback mode", exc)
                self._native_supported = False
                self.protocol.mode = ToolCallingMode.FALLBACK
                return await self._call_with_backoff(native=False)
            self._native_supported = True
            return blocks
        return await self._call_with_backoff(native=self._native_supported)

    async def _call_with_backoff(self, *, native: bool, backoff_seconds: float = 2.0) -> List[Dict[str, Any]]:
        system = self.protocol.build_system_prompt(
            self.options.system_prompt or DEFAULT_SYSTEM_PROMPT,
            list(self.registry.get_all_tools().values()),
            self.messages,
        )
        request: Dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "messages": [_wire_message(message) for message in self.messages],
        }
        if system:
            request["system"] = system
        if native and self.registry.tool_count:
            request["tools"] = self.registry.tool_definitions()

        wait = backoff_seconds
        retries = 0
        while True:
            try:
                response = await self._create(request)
                return _normalize_content(getattr(response, "content", None) or [])
            except RateLimitError:  # pragma: no cover - live API scenario
                retries += 1
                if retries > 5:
                    raise
                delay = min(wait, 30.0)
                logger.warning("Anthropic rate limit hit; retry %d/5 in %.1fs", retries, delay)
                await asyncio.sleep(delay)
                wait = min(wait * 2, 60.0)

    async def _create(self, request: Dict[str, Any]) -> Any:
        create = self.client.messages.create
        if inspect.iscoroutinefunction(create):
            return await create(**request)
        result = await asyncio.to_thread(create, **request)
        if inspect.isawaitable(result):
            result = await result
        return result

    def _filter_tools(self, tools: Iterable[Tool]) -> List[Tool]:
        return [tool for tool in tools if self._is_tool_allowed(tool.name)]

    def _is_tool_allowed(self, name: str) -> bool:
        allowed = self.options.allowed_tools
        if allowed and name not in allowed:
            return False
        return name not in self.options.blocked_tools


def _format_fallback_results(calls: Sequence[ToolCallRequest], results: Sequence[Dict[str, Any]]) -> str:
    sections: List[str] = []
    for call, block in zip(calls, results):
        label = "Tool error" if block.get("is_error") else "Tool result"
        sections.append(f"{label} for {call.name} (id: {call.id}):\n{block.get('content', '')}")
    sections.append("Use these results to continue with the task.")
    return "\n\n".join(sections)


def _wire_message(message: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in message.items() if not key.startswith("_")}


def _jsonable(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    if isinstance(value, Path):
        return str(value)
    return value


def _normalize_content(blocks: Iterable[Any]) -> List[Dict[str, Any]]:
    return [_normalize_block(block) for block in blocks]


def _normalize_block(block: Any) -> Dict[str, Any]:
    if isinstance(block, dict):
        return dict(block)
    btype = getattr(block, "type", None)
    if btype == "text":
        return {"type": "text", "text": getattr(block, "text", "")}
    if btype == "tool_use":
        return {
            "type": "tool_use",
            "id": getattr(block, "id", getattr(block, "tool_use_id", "")),
            "name": getattr(block, "name", ""),
            "input": getattr(block, "input", {}),
        }
    data = {"type": btype or "text"}
    for attr in ("id", "name", "text", "content", "input"):
        if hasattr(block, attr):
            data[attr] = getattr(block, attr)
    return data


__all__ = [
    "AgentRunOptions",
    "AgentRunResult",
    "AgentRunner",
    "DEFAULT_SYSTEM_PROMPT",
    "ToolEvent",
]
