"""Tool handler implementations."""
from .function import FunctionToolHandler
from .mcp_handler import MCPHandler

__all__ = ["FunctionToolHandler", "MCPHandler"]
