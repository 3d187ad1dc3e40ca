"""Test doubles for the Anthropic client and MCP tool servers."""
from .client import MockAnthropic, MockAnthropicMessages
from .mcp_stub import (
    StubMCPSession,
    StubMCPTool,
    StubServerFactory,
    http_descriptor,
    stdio_descriptor,
)
from .responses import (
    MockAnthropicResponse,
    fenced_tool_calls,
    text_block,
    tool_result_block,
    tool_use_block,
)

__all__ = [
    "MockAnthropic",
    "MockAnthropicMessages",
    "MockAnthropicResponse",
    "StubMCPSession",
    "StubMCPTool",
    "StubServerFactory",
    "fenced_tool_calls",
    "http_descriptor",
    "stdio_descriptor",
    "text_block",
    "tool_result_block",
    "tool_use_block",
]
