"""Tool system abstractions for the indubitably agent."""

from .builtins import Tool, build_entries
from .handler import ToolHandler, ToolInvocation, ToolKind, ToolOutput, execute_handler
from .handlers import FunctionToolHandler, MCPHandler
from .mcp_client import ConnectionState, MCPConnection, create_connection
from .mcp_integration import ConnectionOutcome, ServerInfo, ToolMapping, ToolSourceAggregator
from .mcp_validation import ValidationResult, normalize_descriptor, transport_tips, validate_descriptor
from .protocol import (
    DUPLICATE_CALL_MESSAGE,
    ExtractionResult,
    ModelResponse,
    ToolCallingMode,
    ToolCallProtocolHandler,
    ToolCallRequest,
)
from .registry import ToolEntry, ToolRegistry
from .router import ToolCall, ToolRouter
from .schemas import (
    CreateFileInput,
    ReadFileInput,
    RunTerminalCmdInput,
    ToolSchema,
    validate_tool_input,
)
from .spec import RemoteTool, ToolSpec
from errors import ErrorType, ToolError, FatalToolError, ValidationToolError

__all__ = [
    "ConnectionOutcome",
    "ConnectionState",
    "DUPLICATE_CALL_MESSAGE",
    "ExtractionResult",
    "FunctionToolHandler",
    "MCPConnection",
    "MCPHandler",
    "ModelResponse",
    "RemoteTool",
    "ServerInfo",
    "Tool",
    "ToolCall",
    "ToolCallProtocolHandler",
    "ToolCallRequest",
    "ToolCallingMode",
    "ToolEntry",
    "ToolHandler",
    "ToolInvocation",
    "ToolKind",
    "ToolMapping",
    "ToolOutput",
    "ToolRegistry",
    "ToolRouter",
    "ToolSchema",
    "ToolSourceAggregator",
    "ToolSpec",
    "ValidationResult",
    "ReadFileInput",
    "RunTerminalCmdInput",
    "CreateFileInput",
    "build_entries",
    "create_connection",
    "execute_handler",
    "normalize_descriptor",
    "transport_tips",
    "validate_descriptor",
    "validate_tool_input",
    "ToolError",
    "FatalToolError",
    "ValidationToolError",
    "ErrorType",
]
