"""Normalisation and validation of tool-server descriptors."""
from __future__ import annotations

import shutil
from dataclasses import dataclass, field, replace
from typing import Callable, List, Optional
from urllib.parse import urlsplit

from session.settings import MCPServerDescriptor, TransportKind

COMMAND_INSTALL_HINTS = {
    "uvx": (
        "'uvx' is part of the 'uv' Python package manager.\n"
        "\n"
        "Install uv:\n"
        "  • macOS/Linux: curl -LsSf https://astral.sh/uv/install.sh | sh\n"
        '  • Windows: powershell -c "irm https://astral.sh/uv/install.ps1 | iex"\n'
        "  • pip: pip install uv\n"
        "  • Homebrew: brew install uv\n"
        "\n"
        "After installation, restart your terminal and try again."
    ),
    "npx": (
        "'npx' is part of Node.js.\n"
        "\n"
        "Install Node.js from: https://nodejs.org/\n"
        "Or use a version manager like nvm, fnm, or volta."
    ),
    "node": (
        "'node' is not installed.\n"
        "\n"
        "Install Node.js from: https://nodejs.org/\n"
        "Or use a version manager like nvm, fnm, or volta."
    ),
    "python": (
        "'python' is not installed.\n"
        "\n"
        "Install Python from: https://python.org/downloads/\n"
        "Or use a version manager like pyenv."
    ),
    "python3": (
        "'python3' is not installed.\n"
        "\n"
        "Install Python from: https://python.org/downloads/\n"
        "Or use a version manager like pyenv."
    ),
}

_TRANSPORT_TIPS = {
    TransportKind.STDIO: (
        "Stdio transport spawns a local process",
        "Requires a command and optional arguments",
        "Environment variables can be passed to the process",
        "Best for local MCP servers and tools",
    ),
    TransportKind.WEBSOCKET: (
        "WebSocket transport connects to remote MCP servers",
        "Requires a ws:// or wss:// URL",
        "Supports real-time bidirectional communication",
        "Best for interactive remote services",
        "Note: custom headers and auth are not supported over WebSocket and will be ignored",
    ),
    TransportKind.HTTP: (
        "HTTP transport connects to remote MCP servers using streamable HTTP",
        "Requires an http:// or https:// URL",
        "Custom headers are sent with every request",
        "Best for stateless remote services and APIs",
    ),
}


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    errors: List[str] = field(default_factory=list)


def install_hint(command: str) -> str:
    return COMMAND_INSTALL_HINTS.get(command, f"'{command}' is not installed or not in your PATH.")


def command_exists(command: str) -> bool:
    return shutil.which(command) is not None


def normalize_descriptor(descriptor: MCPServerDescriptor) -> MCPServerDescriptor:
    """Return *descriptor* with the stdio default applied to a missing transport."""

    if descriptor.transport is not None:
        return descriptor
    return replace(descriptor, transport=TransportKind.STDIO)


def validate_descriptor(
    descriptor: MCPServerDescriptor,
    *,
    which: Optional[Callable[[str], bool]] = None,
) -> ValidationResult:
    """Check a normalised descriptor for the fields its transport needs.

    ``which`` replaces the PATH lookup for stdio commands.
    """

    exists = which or command_exists
    errors: List[str] = []
    transport = descriptor.transport or TransportKind.STDIO

    if transport is TransportKind.STDIO:
        command = (descriptor.command or "").strip()
        if not command:
            errors.append("stdio transport requires a command")
        elif not exists(command):
            errors.append(f"Command '{command}' not found.\n\n{install_hint(command)}")
    elif transport is TransportKind.WEBSOCKET:
        error = _check_url(descriptor.url, "websocket", ("ws", "wss"), "ws:// or wss://")
        if error:
            errors.append(error)
    elif transport is TransportKind.HTTP:
        error = _check_url(descriptor.url, "http", ("http", "https"), "http:// or https://")
        if error:
            errors.append(error)

    return ValidationResult(valid=not errors, errors=errors)


def transport_tips(kind: TransportKind) -> List[str]:
    return list(_TRANSPORT_TIPS.get(kind, ("Unknown transport type",)))


def _check_url(url: Optional[str], label: str, schemes: tuple[str, ...], expected: str) -> Optional[str]:
    if not url or not url.strip():
        return f"{label} transport requires a URL"
    try:
        parts = urlsplit(url.strip())
        # Raises ValueError on a malformed port.
        parts.port
    except ValueError:
        return f"{label} URL is invalid"
    if not parts.scheme:
        return f"{label} URL is invalid"
    if parts.scheme.lower() not in schemes:
        return f"{label} URL must use {expected} protocol"
    if not parts.netloc:
        return f"{label} URL is invalid"
    return None


__all__ = [
    "COMMAND_INSTALL_HINTS",
    "ValidationResult",
    "command_exists",
    "install_hint",
    "normalize_descriptor",
    "transport_tips",
    "validate_descriptor",
]
