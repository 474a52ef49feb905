"""Shared fakes for tool-server sessions."""

import asyncio
from typing import Dict, List, Optional

import pytest
from mcp.types import CallToolResult, TextContent, Tool

from openera_mcp.config import MCPServerSettings
from openera_mcp.mcp.connection_registry import ConnectionRegistry
from openera_mcp.mcp.session_factory import SessionFactory


class FakeToolSession:
    """Stands in for a ToolServerSession without spawning anything."""

    def __init__(
        self,
        config: MCPServerSettings,
        tools: Optional[List[str]] = None,
        start_error: Optional[BaseException] = None,
        start_delay: float = 0.0,
        list_error: Optional[BaseException] = None,
        list_fails_after: Optional[int] = None,
    ):
        self.config = config
        self.server_name = config.name
        self.tool_names = list(tools or [])
        self.start_error = start_error
        self.start_delay = start_delay
        self.list_error = list_error
        self.list_fails_after = list_fails_after
        self.list_calls = 0
        self.calls: List[tuple] = []
        self.started = False
        self.closed = False

    async def start(self) -> None:
        if self.start_delay:
            await asyncio.sleep(self.start_delay)
        if self.start_error is not None:
            raise self.start_error
        self.started = True

    async def list_tools(self) -> List[Tool]:
        self.list_calls += 1
        if self.list_error is not None:
            raise self.list_error
        if self.list_fails_after is not None and self.list_calls > self.list_fails_after:
            raise RuntimeError("server went away")
        return [
            Tool(
                name=name,
                description=f"{name} from {self.server_name}",
                inputSchema={"type": "object", "properties": {}},
            )
            for name in self.tool_names
        ]

    async def call_tool(self, name: str, arguments=None) -> CallToolResult:
        self.calls.append((name, arguments))
        return CallToolResult(
            content=[TextContent(type="text", text=f"{self.server_name}:{name} ok")],
            isError=False,
        )

    async def close(self) -> None:
        self.closed = True


class FakeServers:
    """
    Session builder keyed by server name.

    Servers without a declared behaviour connect with no tools.
    """

    def __init__(self):
        self.behaviours: Dict[str, dict] = {}
        self.builds: Dict[str, int] = {}
        self.sessions: Dict[str, List[FakeToolSession]] = {}

    def add(self, name: str, **behaviour) -> None:
        self.behaviours[name] = behaviour

    def __call__(self, config: MCPServerSettings) -> FakeToolSession:
        self.builds[config.name] = self.builds.get(config.name, 0) + 1
        session = FakeToolSession(config, **self.behaviours.get(config.name, {}))
        self.sessions.setdefault(config.name, []).append(session)
        return session


def stdio_server(name: str, **kwargs) -> MCPServerSettings:
    return MCPServerSettings(name=name, command=kwargs.pop("command", "fake-server"), **kwargs)


@pytest.fixture
def fake_servers() -> FakeServers:
    return FakeServers()


@pytest.fixture
def registry() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def factory(registry, fake_servers) -> SessionFactory:
    return SessionFactory(registry, connect_timeout_seconds=1.0, session_builder=fake_servers)
