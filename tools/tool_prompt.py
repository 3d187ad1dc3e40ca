"""System-prompt block that teaches a model the JSON tool-call envelope."""
from __future__ import annotations

import json
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from .spec import ToolSpec

SUBSTANTIVE_MIN_LENGTH = 20

# Set on user messages that carry fallback tool results; never sent to the model.
TOOL_RESULTS_MARKER = "_tool_results"

ACKNOWLEDGEMENTS = frozenset(
    {
        "ok",
        "okay",
        "k",
        "yes",
        "y",
        "yep",
        "yeah",
        "no",
        "n",
        "nope",
        "thanks",
        "thank you",
        "thx",
        "sure",
        "continue",
        "go ahead",
        "go on",
        "sounds good",
        "great",
        "cool",
        "done",
    }
)

ENVELOPE_EXAMPLE = {
    "tool_calls": [
        {
            "id": "call_1",
            "function": {
                "name": "tool_name",
                "arguments": {"param": "value"},
            },
        }
    ]
}


def is_substantive_request(text: str) -> bool:
    stripped = (text or "").strip()
    if len(stripped) <= SUBSTANTIVE_MIN_LENGTH:
        return False
    return stripped.lower().rstrip(".!? ") not in ACKNOWLEDGEMENTS


def latest_user_request(messages: Sequence[Mapping[str, Any]]) -> Optional[str]:
    """Return the most recent substantive user text, skipping tool results."""

    for message in reversed(messages):
        if message.get("role") != "user" or message.get(TOOL_RESULTS_MARKER):
            continue
        for text in reversed(_text_parts(message.get("content"))):
            if is_substantive_request(text):
                return text.strip()
    return None


def format_tools_for_prompt(tools: Iterable[ToolSpec]) -> str:
    sections: List[str] = []
    for tool in tools:
        lines = [f"### {tool.name}", ""]
        if tool.description:
            lines.extend([tool.description, ""])
        schema = tool.input_schema or {}
        properties = schema.get("properties") or {}
        required = set(schema.get("required") or [])
        if properties:
            lines.append("Parameters:")
            for param, param_schema in properties.items():
                param_schema = param_schema if isinstance(param_schema, Mapping) else {}
                type_name = param_schema.get("type", "any")
                marker = "required" if param in required else "optional"
                description = param_schema.get("description", "")
                lines.append(f"- `{param}` ({type_name}, {marker}): {description}".rstrip())
        else:
            lines.append("Parameters: none")
        sections.append("\n".join(lines))
    return "\n\n".join(sections)


def build_fallback_prompt(tools: Sequence[ToolSpec], current_task: Optional[str] = None) -> str:
    if not tools:
        return ""

    envelope = json.dumps(ENVELOPE_EXAMPLE, indent=2)
    parts = [
        "## AVAILABLE TOOLS",
        "",
        format_tools_for_prompt(tools),
        "",
        "## CALLING TOOLS",
        "",
        "To call one or more tools, reply with a fenced JSON block in exactly this format:",
        "",
        f"```json\n{envelope}\n```",
        "",
        "- Use the exact tool name.",
        "- `arguments` is an object matching the tool's parameters.",
        "- Give each call a unique `id`.",
        "- Write any explanation outside the JSON block.",
        "",
        "## RULES",
        "",
        "- Calling a tool is never the final action. After you receive a tool result, "
        "use it to continue working toward the user's original request.",
        "- Do not repeat a tool call that already returned a result.",
    ]
    if current_task:
        parts.extend(["", "## CURRENT TASK", "", current_task])
    return "\n".join(parts)


def _text_parts(content: Any) -> List[str]:
    if isinstance(content, str):
        return [content]
    parts: List[str] = []
    if isinstance(content, list):
        for block in content:
            if isinstance(block, Mapping):
                if block.get("type") == "text" and isinstance(block.get("text"), str):
                    parts.append(block["text"])
            elif getattr(block, "type", None) == "text":
                parts.append(str(getattr(block, "text", "")))
    return parts


__all__ = [
    "ACKNOWLEDGEMENTS",
    "ENVELOPE_EXAMPLE",
    "SUBSTANTIVE_MIN_LENGTH",
    "TOOL_RESULTS_MARKER",
    "build_fallback_prompt",
    "format_tools_for_prompt",
    "is_substantive_request",
    "latest_user_request",
]
