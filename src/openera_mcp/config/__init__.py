"""
Configuration management for the Openera MCP service.
"""

from .settings import (
    Settings,
    MCPSettings,
    MCPServerSettings,
    SessionIdentity,
    ConnectionSettings,
    OpenRouterSettings,
    EnhancementSettings,
    ContextSettings,
    StoreSettings,
    ServerSettings,
    LoggingSettings,
    load_config,
)

__all__ = [
    "Settings",
    "MCPSettings",
    "MCPServerSettings",
    "SessionIdentity",
    "ConnectionSettings",
    "OpenRouterSettings",
    "EnhancementSettings",
    "ContextSettings",
    "StoreSettings",
    "ServerSettings",
    "LoggingSettings",
    "load_config",
]
