"""Structured error types for tools and tool servers."""
from __future__ import annotations

from enum import Enum


class ErrorType(Enum):
    """Classification of tool errors."""

    FATAL = "fatal"
    RECOVERABLE = "recoverable"
    VALIDATION = "validation"
    CONFIGURATION = "configuration"
    CONNECTION = "connection"
    DISPATCH = "dispatch"
    PARSE = "parse"


class ToolError(Exception):
    """Base class for tool execution errors."""

    def __init__(self, message: str, error_type: ErrorType = ErrorType.RECOVERABLE) -> None:
        super().__init__(message)
        self.message = message
        self.error_type = error_type

    def __str__(self) -> str:  # pragma: no cover - convenience
        return self.message


class FatalToolError(ToolError):
    """Error indicating the agent should abort execution."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorType.FATAL)


class ValidationToolError(ToolError):
    """Error indicating invalid tool input supplied by the model."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorType.VALIDATION)


class ConfigurationError(ToolError):
    """A tool-server descriptor failed validation before any connection attempt."""

    def __init__(self, server_name: str, errors: list[str]) -> None:
        self.server_name = server_name
        self.errors = list(errors)
        joined = ", ".join(self.errors) or "unknown error"
        super().__init__(
            f'Invalid MCP server configuration for "{server_name}": {joined}',
            ErrorType.CONFIGURATION,
        )


class ServerConnectionError(ToolError):
    """Transport-level failure to establish or keep a tool-server connection."""

    def __init__(self, server_name: str, message: str) -> None:
        self.server_name = server_name
        super().__init__(message, ErrorType.CONNECTION)


class DispatchError(ToolError):
    """A tool call could not be routed to a live handler."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorType.DISPATCH)


class ToolCallParseError(ToolError):
    """A fallback-mode tool call block could not be parsed."""

    def __init__(self, message: str) -> None:
        super().__init__(message, ErrorType.PARSE)


__all__ = [
    "ConfigurationError",
    "DispatchError",
    "ErrorType",
    "FatalToolError",
    "ServerConnectionError",
    "ToolCallParseError",
    "ToolError",
    "ValidationToolError",
]
