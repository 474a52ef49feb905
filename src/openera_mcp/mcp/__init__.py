"""
MCP connectivity for the Openera MCP service.

This package owns the client side of tool-server sessions: creating them,
caching them for the process lifetime, and merging their tools into one
catalog per turn.
"""

from .client_session import OpeneraClientSession
from .session import ToolServerSession, StdioToolSession, SSEToolSession, SESSION_TYPES
from .connection_registry import ConnectionRegistry, SessionHandle, SessionStatus
from .session_factory import SessionFactory
from .aggregator import (
    ToolAggregator,
    ToolCatalog,
    ToolCatalogEntry,
    ServerStatusReport,
    format_tool_result,
)

__all__ = [
    "OpeneraClientSession",
    "ToolServerSession",
    "StdioToolSession",
    "SSEToolSession",
    "SESSION_TYPES",
    "ConnectionRegistry",
    "SessionHandle",
    "SessionStatus",
    "SessionFactory",
    "ToolAggregator",
    "ToolCatalog",
    "ToolCatalogEntry",
    "ServerStatusReport",
    "format_tool_result",
]
