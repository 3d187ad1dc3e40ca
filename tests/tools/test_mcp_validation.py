import pytest

from session.settings import MCPServerDescriptor, TransportKind
from tools.mcp_validation import (
    COMMAND_INSTALL_HINTS,
    install_hint,
    normalize_descriptor,
    transport_tips,
    validate_descriptor,
)


def _always(_command):
    return True


def _never(_command):
    return False


def test_missing_transport_defaults_to_stdio():
    descriptor = MCPServerDescriptor(name="legacy", command="node")

    normalized = normalize_descriptor(descriptor)

    assert normalized.transport is TransportKind.STDIO
    assert normalize_descriptor(normalized) is normalized


def test_stdio_requires_command():
    result = validate_descriptor(normalize_descriptor(MCPServerDescriptor(name="x")), which=_always)

    assert result.valid is False
    assert result.errors == ["stdio transport requires a command"]


def test_stdio_missing_command_carries_install_hint():
    descriptor = MCPServerDescriptor(name="x", transport=TransportKind.STDIO, command="uvx")

    result = validate_descriptor(descriptor, which=_never)

    assert result.valid is False
    (message,) = result.errors
    assert message.startswith("Command 'uvx' not found.\n\n")
    assert "https://astral.sh/uv/install.sh" in message


def test_unknown_command_gets_generic_hint():
    assert install_hint("frobnicate") == "'frobnicate' is not installed or not in your PATH."
    assert install_hint("npx") == COMMAND_INSTALL_HINTS["npx"]


def test_stdio_with_existing_command_is_valid():
    descriptor = MCPServerDescriptor(name="x", transport=TransportKind.STDIO, command="node")
    assert validate_descriptor(descriptor, which=_always).valid is True


@pytest.mark.parametrize(
    "transport, url, expected",
    [
        (TransportKind.WEBSOCKET, "ws://localhost:8080/mcp", None),
        (TransportKind.WEBSOCKET, "wss://tools.example.test", None),
        (TransportKind.WEBSOCKET, None, "websocket transport requires a URL"),
        (TransportKind.WEBSOCKET, "https://tools.example.test", "websocket URL must use ws:// or wss:// protocol"),
        (TransportKind.WEBSOCKET, "not a url", "websocket URL is invalid"),
        (TransportKind.HTTP, "https://tools.example.test/mcp", None),
        (TransportKind.HTTP, "", "http transport requires a URL"),
        (TransportKind.HTTP, "ws://localhost:8080", "http URL must use http:// or https:// protocol"),
        (TransportKind.HTTP, "http://localhost:notaport/mcp", "http URL is invalid"),
        (TransportKind.HTTP, "http://", "http URL is invalid"),
    ],
)
def test_remote_url_checks(transport, url, expected):
    result = validate_descriptor(MCPServerDescriptor(name="remote", transport=transport, url=url))

    if expected is None:
        assert result.valid is True
        assert result.errors == []
    else:
        assert result.errors == [expected]


def test_transport_tips_mention_websocket_header_limit():
    tips = transport_tips(TransportKind.WEBSOCKET)
    assert any("headers" in tip for tip in tips)
    assert transport_tips(TransportKind.STDIO)[0] == "Stdio transport spawns a local process"
