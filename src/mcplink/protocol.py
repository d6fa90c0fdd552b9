"""
JSON-RPC 2.0 envelope types and codec.

Every message on the wire is one of three shapes:

    Request       {"jsonrpc": "2.0", "id": 1, "method": "...", "params": {...}}
    Reply         {"jsonrpc": "2.0", "id": 1, "result": ...}
                  {"jsonrpc": "2.0", "id": 1, "error": {"code": .., "message": ..}}
    Notification  {"jsonrpc": "2.0", "method": "...", "params": {...}}

decode() validates a parsed JSON object and returns the matching frozen
dataclass; encode() turns one back into a plain dict ready for framing.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional, Union

from .errors import ProtocolError, RPCError

# JSON-RPC 2.0 version string
JSONRPC_VERSION = "2.0"

# MCP protocol revision this client negotiates
PROTOCOL_VERSION = "2024-11-05"

# Standard JSON-RPC 2.0 error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

__all__ = [
    "JSONRPC_VERSION",
    "PROTOCOL_VERSION",
    "PARSE_ERROR",
    "INVALID_REQUEST",
    "METHOD_NOT_FOUND",
    "INVALID_PARAMS",
    "INTERNAL_ERROR",
    "ErrorObject",
    "Request",
    "Reply",
    "Notification",
    "Message",
    "decode",
    "encode",
    "normalize_id",
]


@dataclass(frozen=True)
class ErrorObject:
    """JSON-RPC 2.0 error object."""
    code: int
    message: str
    data: Any = None

    @classmethod
    def from_dict(cls, d: Any) -> "ErrorObject":
        if not isinstance(d, dict):
            return cls(code=-1, message=str(d))
        return cls(
            code=d.get("code", -1),
            message=d.get("message", "Unknown error"),
            data=d.get("data"),
        )

    def to_dict(self) -> dict[str, Any]:
        error: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.data is not None:
            error["data"] = self.data
        return error

    def to_exception(self) -> RPCError:
        return RPCError(self.code, self.message, self.data)


@dataclass(frozen=True)
class Request:
    """A call that expects a Reply with the same id."""
    id: Any
    method: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {
            "jsonrpc": JSONRPC_VERSION,
            "id": self.id,
            "method": self.method,
        }
        if self.params is not None:
            message["params"] = self.params
        return message


@dataclass(frozen=True)
class Reply:
    """Answer to a Request: exactly one of result or error."""
    id: Any
    result: Any = None
    error: Optional[ErrorObject] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": self.id}
        if self.error is not None:
            message["error"] = self.error.to_dict()
        else:
            message["result"] = self.result
        return message


@dataclass(frozen=True)
class Notification:
    """Fire-and-forget message; no id, no reply."""
    method: str
    params: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": self.method}
        if self.params is not None:
            message["params"] = self.params
        return message


Message = Union[Request, Reply, Notification]


def normalize_id(id_value: Any) -> Any:
    """
    Normalize a JSON-RPC ID for consistent dictionary key usage.

    Numeric IDs are converted to strings so that 1 (int) and 1.0 (float)
    both become "1" and match in dictionary lookups.
    """
    if isinstance(id_value, bool):
        return id_value
    if isinstance(id_value, float):
        return f"{id_value:.15g}"
    if isinstance(id_value, int):
        return str(id_value)
    return id_value


def _params(message: dict) -> dict[str, Any]:
    params = message.get("params")
    if params is None:
        return {}
    if not isinstance(params, dict):
        raise ProtocolError(
            f"'{message.get('method')}' has non-object params: {type(params).__name__}"
        )
    return params


def decode(message: Any) -> Message:
    """
    Validate basic JSON-RPC 2.0 message structure and build the typed envelope.

    Raises:
        ProtocolError: If the message structure is invalid.
    """
    if not isinstance(message, dict):
        raise ProtocolError(f"Expected JSON object, got {type(message).__name__}")

    if message.get("jsonrpc") != JSONRPC_VERSION:
        raise ProtocolError(
            f"Invalid or missing jsonrpc version: {message.get('jsonrpc')!r}"
        )

    has_method = "method" in message
    has_result = "result" in message
    has_error = "error" in message
    has_id = "id" in message

    if not (has_method or has_result or has_error):
        raise ProtocolError(
            "Invalid JSON-RPC message: must have 'method', 'result', or 'error'"
        )

    if has_id:
        id_value = message["id"]
        if isinstance(id_value, bool) or not (
            id_value is None or isinstance(id_value, (str, int, float))
        ):
            raise ProtocolError(f"Invalid JSON-RPC id type: {type(id_value).__name__}")

    if has_method:
        method = message["method"]
        if not isinstance(method, str):
            raise ProtocolError(f"Invalid JSON-RPC method: {method!r}")
        if has_id:
            return Request(id=message["id"], method=method, params=_params(message))
        return Notification(method=method, params=_params(message))

    if not has_id:
        raise ProtocolError("JSON-RPC response missing 'id' field")
    if has_result and has_error:
        raise ProtocolError(
            "Invalid JSON-RPC response: cannot have both 'result' and 'error'"
        )
    if has_error:
        return Reply(id=message["id"], error=ErrorObject.from_dict(message["error"]))
    return Reply(id=message["id"], result=message["result"])


def encode(message: Message) -> dict[str, Any]:
    """Turn an envelope back into a wire-ready dict."""
    return message.to_dict()
