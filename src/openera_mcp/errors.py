"""
Error types for the Openera MCP service.

Only ModelInvocationFailed is allowed to end a turn. The others describe
failures that are contained and reported through status structures.
"""

from typing import Optional


class OpeneraError(Exception):
    """Base class for all errors raised by this package."""


class ServerConnectionError(OpeneraError):
    """A tool server could not be connected or probed."""

    def diagnostic(self, server_name: str, command: Optional[str] = None) -> str:
        return f"Could not connect to {server_name}: {self}"


class ConfigInvalid(ServerConnectionError):
    """A server configuration is missing fields its transport requires."""

    def diagnostic(self, server_name: str, command: Optional[str] = None) -> str:
        return f"Invalid configuration for {server_name}: {self}"


class ConnectionTimeout(ServerConnectionError):
    """Connection and tool probe did not finish within the timeout."""

    def diagnostic(self, server_name: str, command: Optional[str] = None) -> str:
        return f"Connection timeout for {server_name}. Server may be slow to start."


class ConnectionRefused(ServerConnectionError):
    """The remote endpoint refused the connection or could not be reached."""

    def diagnostic(self, server_name: str, command: Optional[str] = None) -> str:
        return f"Connection refused for {server_name}. Check that the URL is reachable."


class ExecutableNotFound(ServerConnectionError):
    """The stdio command does not exist on this host."""

    def diagnostic(self, server_name: str, command: Optional[str] = None) -> str:
        return f"Command not found for {server_name}. Make sure {command} is installed."


class PermissionDenied(ServerConnectionError):
    """The stdio command exists but may not be executed."""

    def diagnostic(self, server_name: str, command: Optional[str] = None) -> str:
        return f"Permission denied for {server_name}. Check file permissions."


class SpawnFailure(ServerConnectionError):
    """The subprocess could not be started for another OS-level reason."""

    def diagnostic(self, server_name: str, command: Optional[str] = None) -> str:
        return f"Failed to spawn process for {server_name}. Check command and arguments."


class ConnectionFailed(ServerConnectionError):
    """Any other transport, handshake or probe failure."""


class ToolFetchFailed(OpeneraError):
    """Listing tools on an already connected server failed."""


class StoreError(OpeneraError):
    """The conversation/document store rejected or failed a request."""


class RetrievalFailed(OpeneraError):
    """Context retrieval failed; callers degrade to an empty context."""


class ModelInvocationFailed(OpeneraError):
    """The model boundary failed. This is the only turn-fatal error."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status
