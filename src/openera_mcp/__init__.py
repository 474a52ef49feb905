"""
Openera MCP - agent turns over shared context and MCP tool servers.
"""

__version__ = "0.1.0"

# MCP connectivity
from openera_mcp.mcp.connection_registry import ConnectionRegistry, SessionHandle, SessionStatus
from openera_mcp.mcp.session_factory import SessionFactory
from openera_mcp.mcp.aggregator import ToolAggregator, ToolCatalog, ServerStatusReport

# Context
from openera_mcp.context.retriever import ContextBundle, ContextRetriever
from openera_mcp.context.store import ContextStore, InMemoryContextStore, SupabaseContextStore

# Turns
from openera_mcp.turn.assembler import TurnContextAssembler, TurnPayload, TurnRequest
from openera_mcp.llm.provider import ModelProvider, OpenRouterProvider, MockProvider, StreamEvent

# Application
from openera_mcp.app import OpeneraApp

# Configuration
from openera_mcp.config import load_config, Settings

__all__ = [
    "ConnectionRegistry",
    "SessionHandle",
    "SessionStatus",
    "SessionFactory",
    "ToolAggregator",
    "ToolCatalog",
    "ServerStatusReport",
    "ContextBundle",
    "ContextRetriever",
    "ContextStore",
    "InMemoryContextStore",
    "SupabaseContextStore",
    "TurnContextAssembler",
    "TurnPayload",
    "TurnRequest",
    "ModelProvider",
    "OpenRouterProvider",
    "MockProvider",
    "StreamEvent",
    "OpeneraApp",
    "load_config",
    "Settings",
]
