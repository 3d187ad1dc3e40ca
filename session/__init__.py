"""Session state: configuration and per-session call history."""
from .call_history import CallHistory, CallHistoryRecord
from .settings import (
    MCPServerDescriptor,
    MCPSettings,
    ModelSettings,
    SessionSettings,
    ToolCallingSettings,
    TransportKind,
    discover_project_mcp_servers,
    load_mcp_servers_json,
    load_session_settings,
)

__all__ = [
    "CallHistory",
    "CallHistoryRecord",
    "SessionSettings",
    "ModelSettings",
    "MCPSettings",
    "MCPServerDescriptor",
    "ToolCallingSettings",
    "TransportKind",
    "discover_project_mcp_servers",
    "load_mcp_servers_json",
    "load_session_settings",
]
