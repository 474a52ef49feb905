"""
Establishes tool-server sessions from declarative server configurations.
"""

import asyncio
from typing import Callable, List, Optional

import anyio
import httpx
from mcp.types import Tool

from openera_mcp.config import MCPServerSettings
from openera_mcp.errors import (
    ConfigInvalid,
    ConnectionFailed,
    ConnectionRefused,
    ConnectionTimeout,
    ExecutableNotFound,
    PermissionDenied,
    ServerConnectionError,
    SpawnFailure,
)
from openera_mcp.mcp.connection_registry import ConnectionRegistry, SessionHandle
from openera_mcp.mcp.session import SESSION_TYPES, ToolServerSession
from openera_mcp.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_CONNECT_TIMEOUT_SECONDS = 30.0

INVALID_CONFIG_ERROR = "Invalid configuration: missing command or URL"
TIMEOUT_ERROR = "Client creation timeout"

SessionBuilder = Callable[[MCPServerSettings], ToolServerSession]


def default_session_builder(config: MCPServerSettings) -> ToolServerSession:
    """Pick the session type for the configured transport."""
    return SESSION_TYPES[config.transport](config)


def _root_cause(exc: BaseException) -> BaseException:
    # Transport failures often arrive wrapped in task-group exception groups.
    while getattr(exc, "exceptions", None):
        exc = exc.exceptions[0]
    return exc


class SessionFactory:
    """
    Connects to a tool server and records the outcome in the registry.

    ``connect`` never raises for server-local failures: the transport must
    come up and answer a tools/list probe within the timeout, otherwise the
    handle is marked failed with the error message and an operator
    diagnostic. Either way the handle is written to the registry before
    returning, so later turns short-circuit on it.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        connect_timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT_SECONDS,
        session_builder: Optional[SessionBuilder] = None,
    ):
        self.registry = registry
        self.connect_timeout_seconds = connect_timeout_seconds
        self._session_builder = session_builder or default_session_builder

    @staticmethod
    def validate(config: MCPServerSettings) -> None:
        """
        Check that the transport-specific fields are present.

        Raises:
            ConfigInvalid: For an unknown transport or missing command/URL.
        """
        if config.transport not in SESSION_TYPES:
            raise ConfigInvalid(
                f"Invalid configuration: unsupported transport '{config.transport}'"
            )
        if config.transport == "stdio" and not config.command:
            raise ConfigInvalid(INVALID_CONFIG_ERROR)
        if config.transport == "sse" and not config.url:
            raise ConfigInvalid(INVALID_CONFIG_ERROR)

    async def connect(self, config: MCPServerSettings) -> SessionHandle:
        """
        Establish a session for ``config`` and probe it by listing its tools.

        Args:
            config: The server to connect to.

        Returns:
            A connected or failed SessionHandle, already stored in the registry.
        """
        handle = SessionHandle(identity=config.identity, config=config)
        logger.info(
            f"Creating new MCP client for {config.name}",
            data={
                "transport": config.transport,
                "command": config.command,
                "args": list(config.args),
                "env": sorted(config.env),
                "url": config.url,
            },
        )

        session: Optional[ToolServerSession] = None
        try:
            self.validate(config)
            session = self._session_builder(config)
            timeout = self.effective_timeout(config)
            try:
                with anyio.fail_after(timeout):
                    tools = await self._start_and_probe(session)
            except TimeoutError as exc:
                raise ConnectionTimeout(TIMEOUT_ERROR) from exc

            tool_names = [tool.name for tool in tools]
            handle.mark_connected(session, tool_names)
            logger.info(
                f"Successfully connected to {config.name}, got {len(tool_names)} tools:",
                data=tool_names,
            )
        except asyncio.CancelledError:
            if session is not None:
                await session.close()
            raise
        except Exception as exc:
            error = self.classify(exc, config)
            diagnostic = error.diagnostic(config.name, config.command)
            handle.mark_failed(str(error), diagnostic, type(error).__name__)
            logger.error(f"Failed to create MCP client for {config.name}: {error}")
            logger.error(diagnostic)
            if session is not None:
                await session.close()

        self.registry.put(handle)
        return handle

    def effective_timeout(self, config: MCPServerSettings) -> float:
        """A per-server timeout may shorten the connect bound, never extend it."""
        if config.timeout_seconds and config.timeout_seconds > 0:
            return min(config.timeout_seconds, self.connect_timeout_seconds)
        return self.connect_timeout_seconds

    async def _start_and_probe(self, session: ToolServerSession) -> List[Tool]:
        await session.start()
        logger.info(f"Testing connection for {session.server_name} by fetching tools...")
        return await session.list_tools()

    @staticmethod
    def classify(exc: BaseException, config: MCPServerSettings) -> ServerConnectionError:
        """Map a raw connection failure onto the error taxonomy."""
        if isinstance(exc, ServerConnectionError):
            return exc

        cause = _root_cause(exc)
        if isinstance(cause, ServerConnectionError):
            return cause

        message = str(cause) or type(cause).__name__
        if isinstance(cause, TimeoutError):
            return ConnectionTimeout(TIMEOUT_ERROR)
        if isinstance(cause, FileNotFoundError):
            return ExecutableNotFound(message)
        if isinstance(cause, PermissionError):
            return PermissionDenied(message)
        if isinstance(cause, (ConnectionRefusedError, httpx.ConnectError)):
            return ConnectionRefused(message)
        if isinstance(cause, OSError) and config.transport == "stdio":
            return SpawnFailure(message)
        return ConnectionFailed(message)
