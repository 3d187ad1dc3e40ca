"""Lenient parser for tool calls embedded in model prose.

Used when a model cannot emit structured tool calls. The expected shape is a
fenced block holding ``{"tool_calls": [{"id", "function": {"name", "arguments"}}]}``.
Also accepted: ``{"name", "arguments"}`` objects (fenced or written straight
into the prose) and XML-style calls such as
``<read_file><path>setup.cfg</path></read_file>``. Nothing here raises:
unreadable blocks are logged and left in the prose.
"""
from __future__ import annotations

import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Any, Collection, Dict, List, Optional, Tuple

from errors import ToolCallParseError

logger = logging.getLogger(__name__)

_OPEN_FENCE_RE = re.compile(r"```[ \t]*([A-Za-z0-9_+-]*)[ \t]*\n?")
_CLOSE_FENCE_RE = re.compile(r"\s*(?:```|\Z)")
_EMBEDDED_OBJECT_RE = re.compile(r'\{\s*"(?:name|tool_calls)"\s*:')
_XML_CALL_RE = re.compile(r"<([A-Za-z_][\w-]*)>(.*?)</\1>", re.DOTALL)
_XML_PARAM_RE = re.compile(r"<([A-Za-z_][\w-]*)>(.*?)</\1>", re.DOTALL)
_TOOL_CALL_WRAPPER_RE = re.compile(r"</?tool_call>")
_EMPTY_FENCE_RE = re.compile(r"(?m)^```(?:xml)?[ \t]*\n\s*```[ \t]*$")
_EXTRA_BLANK_LINES_RE = re.compile(r"\n\s*\n\s*\n+")

_DECODER = json.JSONDecoder()

# Markup a model may write in prose that never names a tool.
HTML_TAGS = frozenset(
    {
        "a", "article", "aside", "blockquote", "br", "code", "div", "em", "footer",
        "h1", "h2", "h3", "h4", "h5", "h6", "header", "hr", "img", "li", "nav", "ol",
        "p", "pre", "section", "span", "strong", "table", "tbody", "td", "th",
        "thead", "tr", "ul",
    }
)

# (end of scanned region, calls or None when not a tool call, error message)
_Scan = Tuple[int, Optional[List["ParsedToolCall"]], Optional[str]]


@dataclass(frozen=True)
class ParsedToolCall:
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ParseResult:
    calls: List[ParsedToolCall] = field(default_factory=list)
    text: str = ""
    skipped_blocks: int = 0


def parse_tool_calls(text: str, tool_names: Optional[Collection[str]] = None) -> ParseResult:
    """Extract tool calls from *text* and return them with the remaining prose.

    JSON calls are read first. XML-style calls are then read from whatever
    prose is left; when *tool_names* is given only those tags count as calls.
    """

    if not text:
        return ParseResult()

    calls, remaining, skipped = _extract_json_calls(text)
    xml_calls, remaining = _extract_xml_calls(remaining, tool_names)
    calls.extend(xml_calls)
    return ParseResult(calls=calls, text=clean_text(remaining), skipped_blocks=skipped)


def parse_block(body: str) -> Optional[List[ParsedToolCall]]:
    """Parse one JSON block.

    Returns ``None`` when the JSON is valid but is not a tool call, and raises
    :class:`ToolCallParseError` when the JSON itself is unreadable.
    """

    try:
        data = json.loads(body)
    except json.JSONDecodeError as exc:
        raise ToolCallParseError(f"invalid JSON ({exc.msg} at line {exc.lineno} column {exc.colno})") from exc
    return _calls_from_data(data)


def clean_text(text: str) -> str:
    return _EXTRA_BLANK_LINES_RE.sub("\n\n", text).strip()


def _extract_json_calls(text: str) -> Tuple[List[ParsedToolCall], str, int]:
    calls: List[ParsedToolCall] = []
    pieces: List[str] = []
    skipped = 0
    cursor = 0
    pos = 0

    while pos < len(text):
        fence = _OPEN_FENCE_RE.search(text, pos)
        embedded = _EMBEDDED_OBJECT_RE.search(text, pos)
        if fence is None and embedded is None:
            break
        if fence is not None and (embedded is None or fence.start() <= embedded.start()):
            start = fence.start()
            end, recognised, error = _scan_fenced(text, fence)
        else:
            start = embedded.start()
            end, recognised, error = _scan_object(text, start)

        if error is not None:
            skipped += 1
            logger.warning("Skipping malformed tool call block: %s", error)
        elif recognised is not None:
            calls.extend(recognised)
            pieces.append(text[cursor:start])
            cursor = end
        pos = end

    pieces.append(text[cursor:])
    return calls, "".join(pieces), skipped


def _scan_fenced(text: str, fence: "re.Match[str]") -> _Scan:
    body_start = fence.end()
    language = fence.group(1).lower()
    brace = len(text) - len(text[body_start:].lstrip())
    if language not in ("", "json") or not text.startswith("{", brace):
        return _after_closing_fence(text, body_start), None, None

    # raw_decode keeps fences inside JSON strings from ending the block early.
    try:
        data, end = _DECODER.raw_decode(text, brace)
    except json.JSONDecodeError as exc:
        return _after_closing_fence(text, body_start), None, f"invalid JSON ({exc.msg})"

    closing = _CLOSE_FENCE_RE.match(text, end)
    if closing is None:
        return _after_closing_fence(text, end), None, None
    try:
        return closing.end(), _calls_from_data(data), None
    except ToolCallParseError as exc:
        return closing.end(), None, exc.message


def _scan_object(text: str, start: int) -> _Scan:
    try:
        data, end = _DECODER.raw_decode(text, start)
    except json.JSONDecodeError as exc:
        return start + 1, None, f"invalid JSON ({exc.msg})"
    try:
        return end, _calls_from_data(data), None
    except ToolCallParseError as exc:
        return end, None, exc.message


def _after_closing_fence(text: str, pos: int) -> int:
    closing = text.find("```", pos)
    return len(text) if closing == -1 else closing + 3


def _calls_from_data(data: Any) -> Optional[List[ParsedToolCall]]:
    if not isinstance(data, dict):
        return None

    if "tool_calls" in data:
        entries = data["tool_calls"]
        if not isinstance(entries, list):
            raise ToolCallParseError("'tool_calls' must be a list")
    elif "name" in data and "arguments" in data:
        entries = [data]
    else:
        return None

    calls: List[ParsedToolCall] = []
    for index, entry in enumerate(entries):
        try:
            calls.append(_parse_entry(entry))
        except ToolCallParseError as exc:
            logger.warning("Skipping tool call #%d: %s", index, exc.message)
    return calls


def _extract_xml_calls(
    text: str, tool_names: Optional[Collection[str]]
) -> Tuple[List[ParsedToolCall], str]:
    working = _TOOL_CALL_WRAPPER_RE.sub("", text)
    calls: List[ParsedToolCall] = []
    pieces: List[str] = []
    cursor = 0
    pos = 0

    while True:
        match = _XML_CALL_RE.search(working, pos)
        if match is None:
            break
        name, inner = match.group(1), match.group(2)
        if not _is_xml_tool_call(match.group(0), name, inner, tool_names):
            pos = match.start() + 1
            continue
        calls.append(ParsedToolCall(id=_new_call_id(), name=name, arguments=_xml_parameters(inner)))
        pieces.append(working[cursor:match.start()])
        cursor = pos = match.end()

    if not calls:
        return [], text
    pieces.append(working[cursor:])
    return calls, _EMPTY_FENCE_RE.sub("", "".join(pieces))


def _is_xml_tool_call(
    full_match: str, name: str, inner: str, tool_names: Optional[Collection[str]]
) -> bool:
    if tool_names is not None:
        return name in tool_names
    if name.lower() in HTML_TAGS or "=" in full_match:
        return False
    return "_" in name or _XML_PARAM_RE.search(inner) is not None


def _xml_parameters(inner: str) -> Dict[str, Any]:
    arguments: Dict[str, Any] = {}
    for match in _XML_PARAM_RE.finditer(inner):
        value = match.group(2).strip()
        try:
            arguments[match.group(1)] = json.loads(value)
        except json.JSONDecodeError:
            arguments[match.group(1)] = value
    return arguments


def _parse_entry(entry: Any) -> ParsedToolCall:
    if not isinstance(entry, dict):
        raise ToolCallParseError("entry must be an object")

    function = entry.get("function", entry)
    if not isinstance(function, dict):
        raise ToolCallParseError("'function' must be an object")

    name = function.get("name")
    if not isinstance(name, str) or not name.strip():
        raise ToolCallParseError("missing tool name")

    arguments = _parse_arguments(function.get("arguments"))
    call_id = entry.get("id")
    if not isinstance(call_id, str) or not call_id.strip():
        call_id = _new_call_id()
    return ParsedToolCall(id=call_id, name=name.strip(), arguments=arguments)


def _parse_arguments(raw: Any) -> Dict[str, Any]:
    if raw is None:
        return {}
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        if not raw.strip():
            return {}
        try:
            decoded = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ToolCallParseError(f"arguments string is not valid JSON ({exc.msg})") from exc
        if not isinstance(decoded, dict):
            raise ToolCallParseError("arguments must decode to an object")
        return decoded
    raise ToolCallParseError("arguments must be an object or a JSON string")


def _new_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:12]}"


__all__ = [
    "HTML_TAGS",
    "ParseResult",
    "ParsedToolCall",
    "clean_text",
    "parse_block",
    "parse_tool_calls",
]
