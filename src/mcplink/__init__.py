import sys
assert sys.version_info >= (3, 9), "Requires Python 3.9+"
import logging

logger = logging.getLogger('mcplink')
handler = logging.StreamHandler()
logger.addHandler(handler)

from .errors import (
    MCPError,
    TransportError,
    ConnectionClosedError,
    ProtocolError,
    NegotiationError,
    ConnectionStateError,
    RPCError,
    ToolCallError,
    MCPTimeoutError,
    ToolNotFoundError,
    ArgumentMismatchError,
)
from .protocol import (
    JSONRPC_VERSION,
    PROTOCOL_VERSION,
    Request,
    Reply,
    Notification,
    ErrorObject,
    decode,
    encode,
)
from .framing import FrameReader, encode_frame
from .dispatch import Dispatcher
from .correlator import RequestCorrelator, PendingCall, add_callbacks
from .transport import Transport, StdioTransport
from .schema import InputSchema, PropertySchema, ArrayItems, describe_tool, tool_model
from .catalog import (
    CatalogCache,
    ToolDescriptor,
    PromptDescriptor,
    ResourceDescriptor,
    ResourceTemplateDescriptor,
)
from .config import ClientConfig, load_config
from .connection import Connection, ConnectionStatus
from .invoker import ToolInvoker, build_call, extract_text, invoke, UNSET
from .registry import ConnectionRegistry, connect_stdio, default_registry

__all__ = [
    # Exceptions
    "MCPError",
    "TransportError",
    "ConnectionClosedError",
    "ProtocolError",
    "NegotiationError",
    "ConnectionStateError",
    "RPCError",
    "ToolCallError",
    "MCPTimeoutError",
    "ToolNotFoundError",
    "ArgumentMismatchError",
    # Wire format
    "JSONRPC_VERSION",
    "PROTOCOL_VERSION",
    "Request",
    "Reply",
    "Notification",
    "ErrorObject",
    "decode",
    "encode",
    "FrameReader",
    "encode_frame",
    # Engine
    "Dispatcher",
    "RequestCorrelator",
    "PendingCall",
    "add_callbacks",
    "Transport",
    "StdioTransport",
    "Connection",
    "ConnectionStatus",
    # Catalogs and schemas
    "CatalogCache",
    "ToolDescriptor",
    "PromptDescriptor",
    "ResourceDescriptor",
    "ResourceTemplateDescriptor",
    "InputSchema",
    "PropertySchema",
    "ArrayItems",
    "describe_tool",
    "tool_model",
    # Invocation
    "ToolInvoker",
    "build_call",
    "extract_text",
    "invoke",
    "UNSET",
    # Configuration and registry
    "ClientConfig",
    "load_config",
    "ConnectionRegistry",
    "connect_stdio",
    "default_registry",
]

__version__ = "0.1.0"
