"""
Process-wide cache of tool-server sessions.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from openera_mcp.config import MCPServerSettings, SessionIdentity
from openera_mcp.mcp.session import ToolServerSession
from openera_mcp.utils.logging import get_logger

if TYPE_CHECKING:
    from openera_mcp.mcp.session_factory import SessionFactory

logger = get_logger(__name__)


class SessionStatus(str, Enum):
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


@dataclass
class SessionHandle:
    """
    Registry entry for one (transport, name) identity.

    A handle leaves ``connecting`` exactly once, either to ``connected``
    (with a live session and its tool names) or to ``failed`` (with the
    error message and an operator diagnostic).
    """

    identity: SessionIdentity
    config: MCPServerSettings
    status: SessionStatus = SessionStatus.CONNECTING
    session: Optional[ToolServerSession] = None
    tool_names: List[str] = field(default_factory=list)
    last_error: Optional[str] = None
    diagnostic: Optional[str] = None
    failure_kind: Optional[str] = None
    created_at: float = field(default_factory=time.monotonic)
    resolved_at: Optional[float] = None

    def mark_connected(self, session: ToolServerSession, tool_names: List[str]) -> None:
        self._leave_connecting()
        self.status = SessionStatus.CONNECTED
        self.session = session
        self.tool_names = list(tool_names)

    def mark_failed(
        self,
        error: str,
        diagnostic: Optional[str] = None,
        failure_kind: Optional[str] = None,
    ) -> None:
        self._leave_connecting()
        self.status = SessionStatus.FAILED
        self.session = None
        self.last_error = error
        self.diagnostic = diagnostic
        self.failure_kind = failure_kind

    def _leave_connecting(self) -> None:
        if self.status is not SessionStatus.CONNECTING:
            raise RuntimeError(
                f"{self.identity}: handle already resolved as {self.status.value}"
            )
        self.resolved_at = time.monotonic()

    def snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.identity.name,
            "transport": self.identity.transport,
            "status": self.status.value,
            "tools": list(self.tool_names),
            "error": self.last_error,
            "diagnostic": self.diagnostic,
            "failure_kind": self.failure_kind,
        }


class ConnectionRegistry:
    """
    Caches one SessionHandle per session identity for the process lifetime.

    Failed handles are cached and returned like connected ones; a failed
    server is not retried unless ``failure_cooldown_seconds`` is set and has
    elapsed. Concurrent requests for an identity that is still being created
    share a single creation task. Creation is shielded from the caller, so a
    turn that is aborted mid-connection still leaves a populated entry.
    """

    def __init__(self, failure_cooldown_seconds: Optional[float] = None):
        self.failure_cooldown_seconds = failure_cooldown_seconds
        self._handles: Dict[SessionIdentity, SessionHandle] = {}
        self._pending: Dict[SessionIdentity, asyncio.Task] = {}

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close_all()

    def get(self, identity: SessionIdentity) -> Optional[SessionHandle]:
        return self._handles.get(identity)

    def put(self, handle: SessionHandle) -> None:
        self._handles[handle.identity] = handle

    def handles(self) -> List[SessionHandle]:
        return list(self._handles.values())

    def __len__(self) -> int:
        return len(self._handles)

    def _cooldown_elapsed(self, handle: SessionHandle) -> bool:
        if handle.status is not SessionStatus.FAILED or self.failure_cooldown_seconds is None:
            return False
        failed_at = handle.resolved_at or handle.created_at
        return time.monotonic() - failed_at >= self.failure_cooldown_seconds

    async def get_or_create(
        self, config: MCPServerSettings, factory: "SessionFactory"
    ) -> SessionHandle:
        """
        Return the cached handle for ``config.identity`` or create one.

        Args:
            config: The server configuration.
            factory: Creates the session and writes the handle back here.

        Returns:
            The handle, in whatever status it resolved to.
        """
        identity = config.identity

        handle = self._handles.get(identity)
        if handle is not None:
            if not self._cooldown_elapsed(handle):
                logger.debug(
                    f"Reusing existing MCP client for {identity.name}, status: {handle.status.value}"
                )
                return handle
            logger.info(f"{identity.name}: Failure cooldown elapsed, retrying connection.")
            self._handles.pop(identity, None)

        task = self._pending.get(identity)
        if task is None:
            task = asyncio.create_task(
                factory.connect(config), name=f"mcp-connect:{identity}"
            )
            self._pending[identity] = task

            def _forget(done: asyncio.Task, identity: SessionIdentity = identity) -> None:
                if self._pending.get(identity) is done:
                    del self._pending[identity]

            task.add_done_callback(_forget)
        else:
            logger.debug(f"{identity.name}: Joining in-flight connection attempt.")

        return await asyncio.shield(task)

    async def close_all(self) -> None:
        """Stop every in-flight creation and live session, then clear the cache."""
        pending = list(self._pending.values())
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._pending.clear()

        handles = list(self._handles.values())
        self._handles.clear()
        sessions = [h.session for h in handles if h.session is not None]
        if sessions:
            logger.info(f"Closing {len(sessions)} MCP session(s)...")
            await asyncio.gather(*(s.close() for s in sessions), return_exceptions=True)
