# errors.py

from __future__ import annotations


class PerplexityMCPError(Exception):
    """Base class for all server errors."""
    pass


class ConfigError(PerplexityMCPError):
    """Raised when required configuration is missing or invalid."""
    pass


class SessionError(PerplexityMCPError):
    """Transport-level failure tied to one session id."""
    def __init__(self, message: str, session_id: str | None = None):
        super().__init__(message)
        self.session_id = session_id


class SessionNotFound(SessionError):
    pass


class SessionClosed(SessionError):
    """Raised when writing onto a stream that has already been torn down."""
    pass


class ServerShuttingDown(SessionError):
    pass


class SessionLimitReached(SessionError):
    pass


class InvalidMessage(PerplexityMCPError):
    """Raised when a posted body is not a JSON-RPC object."""
    pass


class ToolError(PerplexityMCPError):
    def __init__(self, message: str, tool_name: str | None = None):
        super().__init__(message)
        self.tool_name = tool_name or "unknown_tool"


class UnknownTool(ToolError):
    pass


class InvalidArguments(ToolError):
    pass
