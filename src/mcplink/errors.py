"""
Exception hierarchy for mcplink.

Local validation failures (unknown tool, wrong argument count) are raised
before anything is written to the transport. Remote failures arrive as
RPCError through whichever channel the caller chose: raised from a
synchronous call, or set on the Future of an asynchronous one.
"""

from __future__ import annotations

from typing import Any, Optional


class MCPError(Exception):
    """Base exception for MCP errors."""
    pass


class TransportError(MCPError):
    """Transport-level error (connection, I/O)."""
    pass


class ConnectionClosedError(TransportError):
    """The connection was torn down while a call was still pending."""
    pass


class ProtocolError(MCPError):
    """Protocol-level error (invalid messages, handshake failures)."""
    pass


class NegotiationError(ProtocolError):
    """The server answered initialize with a protocol version we do not speak."""

    def __init__(self, expected: str, received: Any):
        self.expected = expected
        self.received = received
        super().__init__(
            f"Protocol version mismatch: client supports {expected}, "
            f"server returned {received}"
        )


class ConnectionStateError(MCPError):
    """Operation not allowed in the connection's current state."""
    pass


class RPCError(MCPError):
    """JSON-RPC error returned by the server."""

    def __init__(self, code: int, message: str, data: Any = None):
        self.code = code
        self.message = message
        self.data = data
        super().__init__(f"RPC Error {code}: {message}")


class ToolCallError(RPCError):
    """A tools/call request came back with an error object."""

    def __init__(self, tool: str, code: int, message: str, data: Any = None):
        super().__init__(code, message, data)
        self.tool = tool
        self.args = (f"Tool '{tool}' failed with error {code}: {message}",)


class MCPTimeoutError(MCPError, TimeoutError):
    """Timeout waiting for server response."""
    pass


class ToolNotFoundError(MCPError, LookupError):
    """The requested tool is not in the connection's catalog."""

    def __init__(self, name: str, server: Optional[str] = None):
        self.name = name
        self.server = server
        where = f" on server '{server}'" if server else ""
        super().__init__(f"Unknown tool '{name}'{where}")


class ArgumentMismatchError(MCPError, ValueError):
    """Positional arguments do not cover the tool's required properties."""

    def __init__(self, tool: str, required: list[str], values: list[Any], reason: str = ""):
        self.tool = tool
        self.required = list(required)
        self.values = list(values)
        detail = f" ({reason})" if reason else ""
        super().__init__(
            f"Argument mismatch for tool '{tool}'{detail}: "
            f"required {self.required}, got {self.values!r}"
        )
