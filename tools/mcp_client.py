"""Live connections to MCP tool servers over stdio, WebSocket or streamable HTTP."""
from __future__ import annotations

import asyncio
import json
import logging
import shlex
from contextlib import AsyncExitStack, asynccontextmanager
from enum import Enum
from typing import Any, AsyncContextManager, AsyncIterator, Callable, List, Mapping, Optional

import anyio
from mcp.client.session import ClientSession
from mcp.client.stdio import StdioServerParameters, stdio_client
from mcp.client.streamable_http import streamablehttp_client
from mcp.client.websocket import websocket_client
from mcp.shared.exceptions import McpError
from mcp.types import CONNECTION_CLOSED

from errors import ServerConnectionError, ToolError
from session.settings import MCPServerDescriptor, MCPSettings, TransportKind
from tools.spec import RemoteTool

logger = logging.getLogger(__name__)

NO_OUTPUT_MESSAGE = "Tool executed successfully (no output)"
CLOSE_TIMEOUT_SECONDS = 5.0

SessionFactory = Callable[[MCPServerDescriptor], AsyncContextManager[Any]]

_TRANSPORT_ERRORS = (
    anyio.ClosedResourceError,
    anyio.BrokenResourceError,
    anyio.EndOfStream,
    ConnectionError,
)


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


@asynccontextmanager
async def open_client_session(descriptor: MCPServerDescriptor) -> AsyncIterator[ClientSession]:
    """Open the SDK transport for *descriptor* and yield an initialised session."""

    async with AsyncExitStack() as stack:
        transport = descriptor.transport or TransportKind.STDIO
        if transport is TransportKind.STDIO:
            parameters = StdioServerParameters(
                command=descriptor.command or "",
                args=list(descriptor.args),
                env=descriptor.env_map or None,
                cwd=str(descriptor.cwd) if descriptor.cwd else None,
            )
            read_stream, write_stream = await stack.enter_async_context(stdio_client(parameters))
        elif transport is TransportKind.WEBSOCKET:
            read_stream, write_stream = await stack.enter_async_context(
                websocket_client(descriptor.url or "")
            )
        elif transport is TransportKind.HTTP:
            read_stream, write_stream, _get_session_id = await stack.enter_async_context(
                streamablehttp_client(descriptor.url or "", headers=descriptor.header_map or None)
            )
        else:  # pragma: no cover - closed enum
            raise ValueError(f"Unsupported transport type: {transport}")

        session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
        await session.initialize()
        yield session


def unwrap_error(exc: BaseException) -> BaseException:
    while isinstance(exc, BaseExceptionGroup) and exc.exceptions:
        exc = exc.exceptions[0]
    return exc


def describe_error(exc: BaseException) -> str:
    """Return a one-line description, unwrapping task-group exception groups."""

    exc = unwrap_error(exc)
    return str(exc) or type(exc).__name__


def is_connection_closed(exc: BaseException) -> bool:
    exc = unwrap_error(exc)
    if isinstance(exc, McpError):
        return exc.error.code == CONNECTION_CLOSED
    return isinstance(exc, _TRANSPORT_ERRORS)


def format_tool_result(result: Any) -> str:
    content = list(getattr(result, "content", None) or [])
    if not content:
        return NO_OUTPUT_MESSAGE
    first = content[0]
    text = getattr(first, "text", None)
    item_type = getattr(first, "type", "text" if text is not None else None)
    if item_type == "text" and isinstance(text, str):
        return text
    return json.dumps(_to_jsonable(first), ensure_ascii=False, default=str)


def _to_jsonable(item: Any) -> Any:
    if isinstance(item, Mapping):
        return dict(item)
    dump = getattr(item, "model_dump", None)
    if callable(dump):
        return dump(mode="json", exclude_none=True)
    if hasattr(item, "__dict__"):
        return dict(vars(item))
    return item


class MCPConnection:
    """One tool server reached through a single transport.

    The SDK context managers are entered and exited inside a dedicated
    background task; :meth:`connect` waits for that task to report the
    handshake and :meth:`close` signals it to unwind.
    """

    def __init__(
        self,
        descriptor: MCPServerDescriptor,
        *,
        session_factory: Optional[SessionFactory] = None,
        connect_timeout: float = 30.0,
        call_timeout: float = 120.0,
        warnings: Optional[List[str]] = None,
    ) -> None:
        self.descriptor = descriptor
        self.name = descriptor.name
        self.connect_timeout = connect_timeout
        self.call_timeout = call_timeout
        self.warnings: List[str] = list(warnings or [])
        self.state = ConnectionState.DISCONNECTED
        self._session_factory = session_factory or open_client_session
        self._session: Any = None
        self._runner: Optional[asyncio.Task[None]] = None
        self._closing: Optional[asyncio.Event] = None
        self._tools: List[RemoteTool] = []

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED and self._session is not None

    @property
    def tools(self) -> List[RemoteTool]:
        return list(self._tools)

    async def connect(self) -> None:
        if self.state is ConnectionState.CONNECTED:
            return
        if self.state is ConnectionState.CONNECTING:
            raise ServerConnectionError(self.name, f'MCP server "{self.name}" is already connecting')

        self.state = ConnectionState.CONNECTING
        logger.debug("Connecting to MCP server %s over %s", self.name, self._transport_label())
        loop = asyncio.get_running_loop()
        ready: asyncio.Future[None] = loop.create_future()
        self._closing = asyncio.Event()
        runner = loop.create_task(self._run(ready), name=f"mcp-connection:{self.name}")
        self._runner = runner

        try:
            await asyncio.wait(
                {ready, runner},
                timeout=self.connect_timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            await self._abort_runner()
            raise

        error: Optional[BaseException] = None
        if ready.done() and not ready.cancelled():
            error = ready.exception()
            if error is None:
                return

        await self._abort_runner()
        self.state = ConnectionState.DISCONNECTED
        if error is None:
            raise ServerConnectionError(
                self.name,
                f'Timed out after {self.connect_timeout:g}s connecting to MCP server "{self.name}"',
            )
        raise ServerConnectionError(
            self.name,
            f'Failed to connect to MCP server "{self.name}": {describe_error(error)}{self._startup_hint(error)}',
        ) from error

    async def list_tools(self) -> List[RemoteTool]:
        session = self._require_session()
        try:
            response = await asyncio.wait_for(session.list_tools(), timeout=self.call_timeout)
        except asyncio.TimeoutError:
            raise ServerConnectionError(
                self.name, f'Timed out listing tools from MCP server "{self.name}"'
            ) from None
        except _TRANSPORT_ERRORS as exc:
            self._mark_lost()
            raise ServerConnectionError(
                self.name, f'MCP server "{self.name}" disconnected: {describe_error(exc)}'
            ) from exc
        except Exception as exc:
            raise ServerConnectionError(
                self.name, f'Failed to list tools from MCP server "{self.name}": {describe_error(exc)}'
            ) from exc

        tools: List[RemoteTool] = []
        for tool in getattr(response, "tools", None) or []:
            schema = getattr(tool, "inputSchema", None) or {}
            tools.append(
                RemoteTool(
                    name=tool.name,
                    server_name=self.name,
                    description=getattr(tool, "description", None) or None,
                    input_schema=dict(schema),
                )
            )
        self._tools = tools
        return list(tools)

    async def call_tool(self, name: str, arguments: Optional[Mapping[str, Any]] = None) -> str:
        session = self._require_session()
        try:
            result = await asyncio.wait_for(
                session.call_tool(name, dict(arguments or {})),
                timeout=self.call_timeout,
            )
        except asyncio.TimeoutError:
            raise ToolError(
                f"MCP tool execution failed: '{name}' timed out after {self.call_timeout:g}s"
            ) from None
        except _TRANSPORT_ERRORS as exc:
            self._mark_lost()
            raise ServerConnectionError(
                self.name, f'MCP server "{self.name}" disconnected: {describe_error(exc)}'
            ) from exc
        except Exception as exc:
            raise ToolError(f"MCP tool execution failed: {describe_error(exc)}") from exc

        if getattr(result, "isError", False):
            logger.debug("MCP tool %s on %s reported an error result", name, self.name)
        return format_tool_result(result)

    async def close(self) -> None:
        """Release the transport; safe to call repeatedly."""

        if self._closing is not None:
            self._closing.set()
        runner = self._runner
        if runner is not None and not runner.done():
            await asyncio.wait({runner}, timeout=CLOSE_TIMEOUT_SECONDS)
        await self._abort_runner()
        self._session = None
        self.state = ConnectionState.DISCONNECTED

    async def _run(self, ready: asyncio.Future[None]) -> None:
        closing = self._closing
        assert closing is not None
        try:
            async with self._session_factory(self.descriptor) as session:
                self._session = session
                self.state = ConnectionState.CONNECTED
                ready.set_result(None)
                await closing.wait()
        except Exception as exc:
            if not ready.done():
                ready.set_exception(exc)
            elif closing.is_set():
                logger.warning("Error while closing MCP server %s: %s", self.name, describe_error(exc))
            else:
                logger.warning("MCP server %s transport closed unexpectedly: %s", self.name, describe_error(exc))
        finally:
            self._session = None
            self.state = ConnectionState.DISCONNECTED
            if not ready.done():
                ready.cancel()

    async def _abort_runner(self) -> None:
        runner = self._runner
        self._runner = None
        if runner is None:
            return
        if not runner.done():
            runner.cancel()
        results = await asyncio.gather(runner, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.warning("Error while closing MCP server %s: %s", self.name, describe_error(result))

    def _require_session(self) -> Any:
        if not self.connected:
            raise ServerConnectionError(self.name, f'MCP server "{self.name}" is not connected')
        return self._session

    def _mark_lost(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        self._session = None
        if self._closing is not None:
            self._closing.set()

    def _transport_label(self) -> str:
        transport = self.descriptor.transport or TransportKind.STDIO
        return transport.value

    def _startup_hint(self, error: BaseException) -> str:
        if not is_connection_closed(error):
            return ""
        if (self.descriptor.transport or TransportKind.STDIO) is TransportKind.STDIO:
            command = shlex.join([self.descriptor.command or "", *self.descriptor.args])
            return f" (the server process exited during startup; check that '{command}' runs on its own)"
        return f" (the connection to {self.descriptor.url} closed during the handshake)"


def create_connection(
    descriptor: MCPServerDescriptor,
    *,
    settings: Optional[MCPSettings] = None,
    session_factory: Optional[SessionFactory] = None,
) -> MCPConnection:
    """Build a connection for a validated descriptor without doing any I/O.

    Hints the chosen transport cannot honour become warnings on the connection.
    """

    settings = settings or MCPSettings()
    warnings: List[str] = []
    transport = descriptor.transport or TransportKind.STDIO
    if transport is TransportKind.WEBSOCKET:
        if descriptor.headers:
            warnings.append(
                f'WebSocket transport does not support custom headers; headers for "{descriptor.name}" will be ignored'
            )
        if descriptor.auth:
            warnings.append(
                f'WebSocket transport has unsupported auth config; auth for "{descriptor.name}" will be ignored'
            )
    elif transport is TransportKind.HTTP and descriptor.auth:
        warnings.append(
            f'HTTP transport has unsupported auth config for "{descriptor.name}"; send credentials as headers instead'
        )
    for message in warnings:
        logger.warning(message)

    return MCPConnection(
        descriptor,
        session_factory=session_factory,
        connect_timeout=descriptor.timeout_seconds or settings.connect_timeout_seconds,
        call_timeout=settings.call_timeout_seconds,
        warnings=warnings,
    )


__all__ = [
    "ConnectionState",
    "MCPConnection",
    "NO_OUTPUT_MESSAGE",
    "SessionFactory",
    "create_connection",
    "describe_error",
    "format_tool_result",
    "is_connection_closed",
    "open_client_session",
    "unwrap_error",
]
