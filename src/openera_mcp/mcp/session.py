"""
Tool-server session capabilities.

A session owns one live connection to an MCP server. The transport and the
client session are entered and exited inside a dedicated lifecycle task that
keeps the connection open until shutdown is requested, so a session created
during one turn can serve every later turn of the process.
"""

import asyncio
import os
from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Any, AsyncContextManager, Callable, Dict, List, Optional, Type

from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp import ClientSession
from mcp.client.sse import sse_client
from mcp.client.stdio import StdioServerParameters, stdio_client
from mcp.types import CallToolResult, Tool

from openera_mcp.config import MCPServerSettings
from openera_mcp.errors import ConnectionFailed
from openera_mcp.mcp.client_session import OpeneraClientSession
from openera_mcp.utils.logging import get_logger

logger = get_logger(__name__)

ClientSessionFactory = Callable[
    [MemoryObjectReceiveStream, MemoryObjectSendStream, Optional[timedelta]],
    ClientSession,
]


class ToolServerSession(ABC):
    """
    Capability for one tool server: ``list_tools`` and ``call_tool``.

    Subclasses only decide how the transport is opened.
    """

    transport: str = ""

    def __init__(
        self,
        config: MCPServerSettings,
        client_session_factory: ClientSessionFactory = OpeneraClientSession,
    ):
        self.config = config
        self.server_name = config.name
        self.session: Optional[ClientSession] = None
        self.error: Optional[BaseException] = None
        self._client_session_factory = client_session_factory
        self._task: Optional[asyncio.Task] = None
        self._closed = False
        # Set once the session is initialized or the lifecycle task has ended
        self._initialized_event = asyncio.Event()
        self._shutdown_event = asyncio.Event()

    @abstractmethod
    def _transport_context(self) -> AsyncContextManager[Any]:
        """Open the transport; yields at least (read_stream, write_stream)."""

    @property
    def is_alive(self) -> bool:
        return self.session is not None and not self._closed

    async def start(self) -> None:
        """
        Launch the lifecycle task and wait until the session is initialized.

        Raises:
            The transport or handshake error if the session did not come up.
        """
        if self._task is None:
            self._task = asyncio.create_task(
                self._lifecycle(), name=f"mcp-session:{self.transport}:{self.server_name}"
            )

        await self._initialized_event.wait()

        if self.error is not None:
            raise self.error
        if self.session is None:
            raise ConnectionFailed("Session closed during initialization")

    async def _lifecycle(self) -> None:
        try:
            async with self._transport_context() as streams:
                read_stream, write_stream = streams[0], streams[1]
                async with self._create_client_session(read_stream, write_stream) as session:
                    await session.initialize()
                    self.session = session
                    logger.info(f"{self.server_name}: Initialized over {self.transport}.")
                    self._initialized_event.set()

                    await self._shutdown_event.wait()
        except Exception as exc:
            logger.error(f"{self.server_name}: Lifecycle task encountered an error: {exc}")
            if self.error is None:
                self.error = exc
        finally:
            self.session = None
            self._closed = True
            self._initialized_event.set()
            logger.debug(f"{self.server_name}: Session ended.")

    def _create_client_session(
        self,
        read_stream: MemoryObjectReceiveStream,
        write_stream: MemoryObjectSendStream,
    ) -> ClientSession:
        read_timeout = (
            timedelta(seconds=self.config.read_timeout_seconds)
            if self.config.read_timeout_seconds
            else None
        )
        session = self._client_session_factory(read_stream, write_stream, read_timeout)
        if hasattr(session, "server_name"):
            session.server_name = self.server_name
        return session

    def _require_session(self) -> ClientSession:
        if not self.is_alive:
            reason = f": {self.error}" if self.error is not None else ""
            raise ConnectionFailed(f"Session to {self.server_name} is closed{reason}")
        return self.session

    async def list_tools(self) -> List[Tool]:
        """List the tools the server currently exposes. Never cached."""
        result = await self._require_session().list_tools()
        return list(result.tools or [])

    async def call_tool(
        self, name: str, arguments: Optional[Dict[str, Any]] = None
    ) -> CallToolResult:
        return await self._require_session().call_tool(name=name, arguments=arguments or {})

    async def close(self) -> None:
        """Ask the lifecycle task to exit and wait for it."""
        self._shutdown_event.set()
        task = self._task
        if task is None or task.done():
            return
        if self.session is None:
            # Still connecting; there is no session to shut down gracefully.
            task.cancel()
        await asyncio.gather(task, return_exceptions=True)


class StdioToolSession(ToolServerSession):
    """Session to a server spawned as a subprocess speaking over stdin/stdout."""

    transport = "stdio"

    def server_parameters(self) -> StdioServerParameters:
        env = {**os.environ, "NODE_ENV": "production", **self.config.env}
        return StdioServerParameters(
            command=self.config.command,
            args=list(self.config.args),
            env=env,
        )

    def _transport_context(self) -> AsyncContextManager[Any]:
        return stdio_client(self.server_parameters())


class SSEToolSession(ToolServerSession):
    """Session to a remote server over an HTTP server-sent-events stream."""

    transport = "sse"

    def _transport_context(self) -> AsyncContextManager[Any]:
        return sse_client(self.config.url, headers=dict(self.config.headers) or None)


SESSION_TYPES: Dict[str, Type[ToolServerSession]] = {
    StdioToolSession.transport: StdioToolSession,
    SSEToolSession.transport: SSEToolSession,
}
