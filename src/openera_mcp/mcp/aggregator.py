"""
Aggregates the tools of several MCP servers into one flat catalog.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from mcp.types import CallToolResult, Tool

from openera_mcp.config import MCPServerSettings
from openera_mcp.errors import ToolFetchFailed
from openera_mcp.mcp.connection_registry import ConnectionRegistry, SessionStatus
from openera_mcp.mcp.session import ToolServerSession
from openera_mcp.mcp.session_factory import SessionFactory
from openera_mcp.utils.logging import get_logger

logger = get_logger(__name__)

NO_CLIENT_ERROR = "Failed to create client"


@dataclass
class ToolCatalogEntry:
    """A tool offered by one connected server, with the means to invoke it."""

    name: str
    description: str
    input_schema: Dict[str, Any]
    server_name: str
    session: ToolServerSession

    @classmethod
    def from_tool(
        cls, tool: Tool, server_name: str, session: ToolServerSession
    ) -> "ToolCatalogEntry":
        return cls(
            name=tool.name,
            description=tool.description or "",
            input_schema=tool.inputSchema or {"type": "object", "properties": {}},
            server_name=server_name,
            session=session,
        )

    async def invoke(self, arguments: Optional[Dict[str, Any]] = None) -> CallToolResult:
        return await self.session.call_tool(self.name, arguments or {})

    def to_function_definition(self) -> Dict[str, Any]:
        """Render as an OpenAI-style function tool definition."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.input_schema,
            },
        }


class ToolCatalog(Mapping):
    """
    Tool name -> ToolCatalogEntry for one turn.

    Names are not namespaced by server. When two servers offer the same
    name, the one added last wins.
    """

    def __init__(self, entries: Optional[Sequence[ToolCatalogEntry]] = None):
        self._entries: Dict[str, ToolCatalogEntry] = {}
        for entry in entries or []:
            self.add(entry)

    def add(self, entry: ToolCatalogEntry) -> None:
        previous = self._entries.get(entry.name)
        if previous is not None and previous.server_name != entry.server_name:
            logger.warning(
                f"Tool '{entry.name}' from {entry.server_name} replaces the one from {previous.server_name}"
            )
        self._entries[entry.name] = entry

    def __getitem__(self, name: str) -> ToolCatalogEntry:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def to_function_definitions(self) -> List[Dict[str, Any]]:
        return [entry.to_function_definition() for entry in self._entries.values()]


@dataclass
class ServerStatusReport:
    """Per-turn snapshot of one configured server."""

    name: str
    status: str
    error: Optional[str] = None
    tools: List[str] = field(default_factory=list)
    # Error class name, so tool-fetch failures stay distinguishable
    failure_kind: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self.status == SessionStatus.CONNECTED.value

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"name": self.name, "status": self.status}
        if self.error is not None:
            result["error"] = self.error
        if self.connected:
            result["tools"] = list(self.tools)
        return result


def format_tool_result(result: CallToolResult) -> str:
    """Flatten a tool call result into text for the model."""
    parts = []
    for item in result.content or []:
        text = getattr(item, "text", None)
        if text is not None:
            parts.append(text)
        else:
            parts.append(json.dumps(item.model_dump(mode="json", exclude_none=True)))
    return "\n".join(parts)


class ToolAggregator:
    """
    Resolves configured servers through the registry and merges their tools.

    Servers are processed one after another in configuration order, which
    is what makes the last-writer-wins merge deterministic. One server's
    failure never stops the remaining servers from being processed.
    """

    def __init__(self, registry: ConnectionRegistry, factory: SessionFactory):
        self.registry = registry
        self.factory = factory

    async def aggregate(
        self, configs: Sequence[MCPServerSettings]
    ) -> Tuple[ToolCatalog, List[ServerStatusReport]]:
        """
        Build the merged tool catalog and a status report per server.

        Args:
            configs: Servers to resolve, in merge order.

        Returns:
            The catalog and exactly one status report per config, in input order.
        """
        catalog = ToolCatalog()
        statuses: List[ServerStatusReport] = []

        for config in configs:
            logger.info(f"Processing MCP server: {config.name}")
            statuses.append(await self._load_server(config, catalog))

        logger.info(
            f"Final status - Total tools: {len(catalog)}",
            data=[status.to_dict() for status in statuses],
        )
        return catalog, statuses

    async def _load_server(
        self, config: MCPServerSettings, catalog: ToolCatalog
    ) -> ServerStatusReport:
        try:
            handle = await self.registry.get_or_create(config, self.factory)
        except Exception as e:
            logger.error(f"Could not resolve a session for {config.name}: {e}")
            return ServerStatusReport(
                name=config.name,
                status=SessionStatus.FAILED.value,
                error=f"{NO_CLIENT_ERROR}: {e}",
                failure_kind=type(e).__name__,
            )

        if handle.status is not SessionStatus.CONNECTED or handle.session is None:
            logger.error(f"No client or failed connection for {config.name}")
            return ServerStatusReport(
                name=config.name,
                status=SessionStatus.FAILED.value,
                error=handle.last_error or NO_CLIENT_ERROR,
                failure_kind=handle.failure_kind,
            )

        # Handles can go stale between creation and use, so list again.
        try:
            tools = await handle.session.list_tools()
            entries = [ToolCatalogEntry.from_tool(tool, config.name, handle.session) for tool in tools]
        except Exception as e:
            error = ToolFetchFailed(f"Tool fetch failed: {e}")
            logger.error(f"Failed to get tools from {config.name}: {e}")
            return ServerStatusReport(
                name=config.name,
                status=SessionStatus.FAILED.value,
                error=str(error),
                failure_kind=type(error).__name__,
            )

        for entry in entries:
            catalog.add(entry)

        tool_names = [tool.name for tool in tools]
        logger.info(f"Got {len(tool_names)} tools from {config.name}:", data=tool_names)
        return ServerStatusReport(
            name=config.name,
            status=SessionStatus.CONNECTED.value,
            tools=tool_names,
        )
