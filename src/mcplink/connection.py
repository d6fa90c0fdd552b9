"""
Connection to one MCP server.

Lifecycle:

    init ──initialize ok, same version──> connected
      │                                      │
      ├──version mismatch / rpc error──> error
      │                                      │
      └───────────── stop() ─────────────> shutdown   (from any state)

start() sends `initialize` and returns at once. When the reply is handled
the connection either becomes `connected` (sends `notifications/initialized`,
then lists tools/prompts/resources for each capability the server
advertised) or `error`. Everything after that is driven by the Dispatcher:
inbound chunks are queued, framed, decoded and dispatched one message per
queue item.

Usage:
    dispatcher = Dispatcher()
    conn = Connection("fs", StdioTransport(["mcp-server-filesystem", "/tmp"]), dispatcher)
    conn.start()
    conn.wait_ready()
    print([t.name for t in conn.tools])
    print(conn.call_tool("read_file", {"path": "/tmp/x"}))
    conn.stop()
"""

from __future__ import annotations

import json
import logging
from concurrent.futures import Future
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping, Optional

from .catalog import CATALOGS, CatalogCache, parse_items
from .config import ClientConfig
from .correlator import PendingCall, RequestCorrelator, add_callbacks
from .dispatch import Dispatcher
from .errors import (
    ConnectionClosedError,
    ConnectionStateError,
    MCPError,
    MCPTimeoutError,
    NegotiationError,
    ProtocolError,
    RPCError,
    TransportError,
)
from .framing import FrameReader, encode_frame
from .protocol import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    METHOD_NOT_FOUND,
    ErrorObject,
    Notification,
    Reply,
    Request,
    decode,
)
from .transport import Transport

logger = logging.getLogger('mcplink')
server_logger = logging.getLogger('mcplink.server')

# Capabilities this client declares during initialize
CLIENT_CAPABILITIES = {"roots": {"listChanged": True}}

# MCP log levels -> logging levels for notifications/message
_LOG_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'notice': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
    'critical': logging.CRITICAL,
    'alert': logging.CRITICAL,
    'emergency': logging.CRITICAL,
}


class ConnectionStatus(str, Enum):
    INIT = 'init'
    CONNECTED = 'connected'
    ERROR = 'error'
    SHUTDOWN = 'shutdown'


def error_args(exc: BaseException) -> tuple[int, str]:
    """(code, message) for an error continuation."""
    if isinstance(exc, RPCError):
        return exc.code, exc.message
    return INTERNAL_ERROR, str(exc)


class Connection:
    """
    One negotiated session with an MCP server over a byte-stream transport.

    Callbacks (all optional):
        on_ready(connection)                 negotiation and automatic listing done
        on_error(code, message)              negotiation failed
        on_tools(connection, tools)          automatic tools/list completed
        on_prompts(connection, prompts)      automatic prompts/list completed
        on_resources(connection, resources)  automatic resources/list completed
        on_notification(method, params)      any server notification
    """

    def __init__(
        self,
        name: str,
        transport: Transport,
        dispatcher: Optional[Dispatcher] = None,
        config: Optional[ClientConfig] = None,
        on_ready: Optional[Callable[["Connection"], None]] = None,
        on_error: Optional[Callable[[int, str], None]] = None,
        on_tools: Optional[Callable[["Connection", tuple], None]] = None,
        on_prompts: Optional[Callable[["Connection", tuple], None]] = None,
        on_resources: Optional[Callable[["Connection", tuple], None]] = None,
        on_notification: Optional[Callable[[str, dict], None]] = None,
    ) -> None:
        self.name = name
        self.transport = transport
        self.dispatcher = dispatcher if dispatcher is not None else Dispatcher()
        self.config = config or ClientConfig()
        self.on_ready = on_ready
        self.on_error = on_error
        self.on_tools = on_tools
        self.on_prompts = on_prompts
        self.on_resources = on_resources
        self.on_notification = on_notification

        self.status = ConnectionStatus.INIT
        self.error: Optional[MCPError] = None
        self.catalog = CatalogCache()
        self._capabilities: Mapping[str, Any] = MappingProxyType({})
        self._server_info: Mapping[str, Any] = MappingProxyType({})
        self._init_result: Optional[dict[str, Any]] = None
        self._reader = FrameReader()
        self._correlator = RequestCorrelator(self._write, self.dispatcher)
        self._started = False
        self._ready = False
        self._initialized_sent = False

    def __repr__(self) -> str:
        return f"<Connection {self.name!r} {self.status.value}>"

    # === NEGOTIATED STATE ===

    @property
    def capabilities(self) -> Mapping[str, Any]:
        """Server capabilities from the handshake (read-only)."""
        return self._capabilities

    @property
    def server_info(self) -> Mapping[str, Any]:
        """Server name/version from the handshake (read-only)."""
        return self._server_info

    @property
    def instructions(self) -> Optional[str]:
        if self._init_result is None:
            return None
        return self._init_result.get("instructions")

    @property
    def ready(self) -> bool:
        return self._ready

    def has_capability(self, name: str) -> bool:
        value = self._capabilities.get(name)
        return value is not None and value is not False

    @property
    def pending_requests(self) -> int:
        return len(self._correlator)

    @property
    def tools(self) -> tuple:
        return self.catalog.tools

    @property
    def prompts(self) -> tuple:
        return self.catalog.prompts

    @property
    def resources(self) -> tuple:
        return self.catalog.resources

    @property
    def resource_templates(self) -> tuple:
        return self.catalog.resource_templates

    def find_tool(self, name: str):
        return self.catalog.find_tool(name)

    def find_prompt(self, name: str):
        return self.catalog.find_prompt(name)

    def find_resource(self, name_or_uri: str):
        return self.catalog.find_resource(name_or_uri)

    # === LIFECYCLE ===

    def start(self) -> Future:
        """
        Connect the transport and send initialize.

        Returns the Future of the initialize call. Negotiation completes when
        the dispatcher is pumped (see wait_ready()).
        """
        if self._started:
            raise ConnectionStateError(f"Connection '{self.name}' already started")
        self._started = True

        try:
            self.transport.connect()
        except TransportError as e:
            self.status = ConnectionStatus.ERROR
            self.error = e
            raise

        self.dispatcher.attach(self)

        init_params = {
            "protocolVersion": self.config.protocol_version,
            "capabilities": CLIENT_CAPABILITIES,
            "clientInfo": {
                "name": self.config.client_name,
                "version": self.config.client_version,
            },
        }
        logger.info(f"[{self.name}] initializing (protocol {self.config.protocol_version})")
        call = self._correlator.send_request("initialize", init_params)
        call.future.add_done_callback(self._on_initialize)
        return call.future

    def _on_initialize(self, future: Future) -> None:
        if self.status is not ConnectionStatus.INIT or future.cancelled():
            return

        exc = future.exception()
        if exc is not None:
            if isinstance(exc, RPCError):
                logger.error(f"[{self.name}] initialize failed: {exc}")
            self._negotiation_failed(exc)
            return

        result = future.result()
        if not isinstance(result, dict):
            self._negotiation_failed(ProtocolError(
                f"Initialize result must be a dict, got {type(result).__name__}"
            ))
            return

        server_version = result.get("protocolVersion")
        if server_version != self.config.protocol_version:
            exc = NegotiationError(self.config.protocol_version, server_version)
            logger.error(f"[{self.name}] {exc}")
            self._negotiation_failed(exc, code=INVALID_PARAMS)
            return

        capabilities = result.get("capabilities") or {}
        server_info = result.get("serverInfo") or {}
        if not isinstance(capabilities, dict) or not isinstance(server_info, dict):
            self._negotiation_failed(ProtocolError("capabilities and serverInfo must be objects"))
            return

        self._init_result = result
        self._capabilities = MappingProxyType(dict(capabilities))
        self._server_info = MappingProxyType(dict(server_info))
        self.status = ConnectionStatus.CONNECTED
        logger.info(
            f"[{self.name}] connected to {server_info.get('name', 'unknown')} "
            f"{server_info.get('version', '')}".rstrip()
        )

        if not self._initialized_sent:
            self._initialized_sent = True
            self.notify("notifications/initialized", {})

        self._fetch_catalogs()

    def _negotiation_failed(self, exc: MCPError, code: Optional[int] = None) -> None:
        """Fatal: the transport is closed before on_error runs."""
        self.status = ConnectionStatus.ERROR
        self.error = exc
        self._close(ConnectionClosedError(f"Connection '{self.name}' closed: {exc}"))
        if self.on_error is not None:
            err_code, message = error_args(exc)
            self.on_error(err_code if code is None else code, message)

    def _fetch_catalogs(self) -> None:
        fetches = [
            (method, callback)
            for method, capability, callback in (
                ("tools/list", "tools", self.on_tools),
                ("prompts/list", "prompts", self.on_prompts),
                ("resources/list", "resources", self.on_resources),
            )
            if self.has_capability(capability)
        ]
        outstanding = [len(fetches)]

        def settled(_future: Future) -> None:
            outstanding[0] -= 1
            if outstanding[0] == 0:
                self._mark_ready()

        if not fetches:
            self._mark_ready()
            return

        for method, callback in fetches:
            def on_error(code: int, message: str, method=method) -> None:
                logger.warning(f"[{self.name}] {method} failed: [{code}] {message}")

            try:
                future = self._list(method, on_success=callback, on_error=on_error)
            except MCPError as e:
                logger.warning(f"[{self.name}] {method} failed: {e}")
                settled(None)
                continue
            future.add_done_callback(settled)

    def _mark_ready(self) -> None:
        if self.status is not ConnectionStatus.CONNECTED:
            return
        self._ready = True
        if self.on_ready is not None:
            self.on_ready(self)

    def wait_ready(self, timeout: Optional[float] = None) -> "Connection":
        """
        Pump the dispatcher until negotiation and the automatic listing finish.

        Raises:
            MCPError: The negotiation error if the connection ended in `error`.
            ConnectionStateError: If the connection was stopped.
            MCPTimeoutError: If the timeout expires first.
        """
        if not self._started:
            self.start()
        self.dispatcher.run_until(
            lambda: self._ready or self.status in (ConnectionStatus.ERROR, ConnectionStatus.SHUTDOWN),
            timeout,
        )
        if self.status is ConnectionStatus.ERROR:
            raise self.error
        if self.status is ConnectionStatus.SHUTDOWN:
            raise ConnectionStateError(f"Connection '{self.name}' was stopped")
        return self

    def stop(self) -> None:
        """Shut the connection down. Terminal; safe to call more than once."""
        if self.status is ConnectionStatus.SHUTDOWN:
            return
        self.status = ConnectionStatus.SHUTDOWN
        logger.info(f"[{self.name}] shutting down")
        self._close(ConnectionClosedError(f"Connection '{self.name}' stopped"))
        if not self.dispatcher.draining:
            self.dispatcher.drain()

    def _close(self, exc: MCPError) -> None:
        self.dispatcher.detach(self)
        try:
            self.transport.close()
        except (OSError, TransportError) as e:
            logger.debug(f"[{self.name}] error closing transport: {e}")
        self._reader.reset()
        if dropped := self._correlator.fail_all(exc):
            logger.warning(f"[{self.name}] {dropped} pending request(s) failed: {exc}")

    def _transport_failed(self, exc: TransportError) -> None:
        if self.status in (ConnectionStatus.ERROR, ConnectionStatus.SHUTDOWN):
            return
        logger.error(f"[{self.name}] transport failed: {exc}")
        if self.status is ConnectionStatus.INIT:
            self._negotiation_failed(exc)
            return
        self.status = ConnectionStatus.ERROR
        self.error = exc
        self._close(ConnectionClosedError(f"Connection '{self.name}' lost: {exc}"))

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False

    # === INBOUND PATH ===

    def poll_transport(self) -> bool:
        """Read whatever the transport has and queue it. Called by the dispatcher."""
        if self.transport.closed:
            return False
        try:
            chunk = self.transport.read_chunk(0)
        except TransportError as e:
            self.dispatcher.post(self._transport_failed, e)
            return True
        if chunk:
            self.on_data(chunk)
            return True
        return False

    def wait_handles(self) -> list:
        return self.transport.wait_handles()

    def on_data(self, chunk: bytes) -> None:
        """Inbound bytes from the transport. Only queues them."""
        self.dispatcher.post(self._process_chunk, chunk)

    def _process_chunk(self, chunk: bytes) -> None:
        if self.status is ConnectionStatus.SHUTDOWN:
            return
        for raw in self._reader.feed(chunk):
            self.dispatcher.post(self._dispatch, raw)

    def _dispatch(self, raw: dict) -> None:
        if self.status is ConnectionStatus.SHUTDOWN:
            return
        try:
            message = decode(raw)
        except ProtocolError as e:
            logger.warning(f"[{self.name}] dropping invalid message: {e}")
            return

        if isinstance(message, Reply):
            self._correlator.complete(message)
        elif isinstance(message, Request):
            self._handle_request(message)
        else:
            self._handle_notification(message)

    def _handle_request(self, request: Request) -> None:
        """Answer server-initiated requests."""
        if request.method == "ping":
            reply = Reply(id=request.id, result={})
        elif request.method == "roots/list":
            reply = Reply(id=request.id, result={"roots": self._roots()})
        else:
            reply = Reply(
                id=request.id,
                error=ErrorObject(METHOD_NOT_FOUND, f"Method not found: {request.method}"),
            )
        try:
            self._write(reply.to_dict())
        except TransportError as e:
            logger.warning(f"[{self.name}] could not answer {request.method}: {e}")

    def _roots(self) -> list[dict]:
        roots = []
        for root in self.config.roots:
            if isinstance(root, dict):
                roots.append(dict(root))
            else:
                roots.append({"uri": str(root)})
        return roots

    def _handle_notification(self, notification: Notification) -> None:
        method, params = notification.method, notification.params

        if method in ("notifications/message", "notifications/log"):
            level = _LOG_LEVELS.get(str(params.get("level", "info")).lower(), logging.INFO)
            data = params.get("data") if "data" in params else params.get("message", "")
            source = params.get("logger", self.name)
            server_logger.log(level, f"[{source}] {data}")
        elif method == "notifications/progress":
            logger.debug(f"[{self.name}] progress {params.get('progress', 0)}/{params.get('total', '?')}")
        elif method.endswith("/list_changed"):
            logger.info(f"[{self.name}] {method}; re-list to refresh the catalog")
        elif logger.isEnabledFor(logging.DEBUG):
            params_str = json.dumps(params)
            if len(params_str) > 200:
                params_str = params_str[:200] + "..."
            logger.debug(f"[{self.name}] notification {method}: {params_str}")

        if self.on_notification is not None:
            try:
                self.on_notification(method, params)
            except Exception as e:
                logger.error(f"[{self.name}] exception in notification callback: {e}")

    # === OUTBOUND PATH ===

    def _write(self, message: dict) -> None:
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"[{self.name}] --> {json.dumps(message)[:500]}")
        self.transport.write(encode_frame(message))

    def _check_open(self) -> None:
        if self.status in (ConnectionStatus.SHUTDOWN, ConnectionStatus.ERROR):
            raise ConnectionStateError(f"Connection '{self.name}' is {self.status.value}")
        if not self._started:
            raise ConnectionStateError(f"Connection '{self.name}' not started")

    def _send(self, method: str, params: Optional[dict] = None) -> PendingCall:
        self._check_open()
        return self._correlator.send_request(method, params)

    def notify(self, method: str, params: Optional[dict] = None) -> None:
        """Send a notification (no reply expected)."""
        self._check_open()
        self._write(Notification(method=method, params=params or {}).to_dict())

    def request_async(
        self,
        method: str,
        params: Optional[dict] = None,
        on_result: Optional[Callable[[Any], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> Future:
        """
        Send a request and return at once.

        The returned Future carries the result or the error (RPCError,
        ConnectionClosedError). on_result/on_error, if given, run from the
        dispatcher queue when the reply is handled.
        """
        call = self._send(method, params)
        return add_callbacks(call.future, on_result, on_error)

    def request(self, method: str, params: Optional[dict] = None, timeout: Optional[float] = None) -> Any:
        """
        Send a request and pump the dispatcher until its reply arrives.

        Args:
            timeout: Seconds to wait. None (default) waits indefinitely.

        Raises:
            RPCError: If the server returns an error response.
            ConnectionClosedError: If the connection is torn down first.
            MCPTimeoutError: If timeout expires; the request is then cancelled.
        """
        call = self._send(method, params)
        return self.wait(call.future, timeout, request_id=call.id)

    def wait(self, future: Future, timeout: Optional[float] = None, request_id: Any = None) -> Any:
        """Pump until future is done and return its result (or raise its error)."""
        try:
            self.dispatcher.run_until(future.done, timeout)
        except MCPTimeoutError:
            if request_id is not None:
                self._correlator.cancel(request_id)
            else:
                future.cancel()
            raise MCPTimeoutError(f"Timeout waiting for response from '{self.name}'")
        return future.result()

    # === CATALOGS ===

    def _list(
        self,
        method: str,
        on_success: Optional[Callable[["Connection", tuple], None]] = None,
        on_error: Optional[Callable[[int, str], None]] = None,
    ) -> Future:
        """
        Fetch a full catalog (following nextCursor) and replace the cache.

        Always allowed once started, whatever the server advertised.
        Cancelling the returned Future cancels the page in flight; the
        cache is then left untouched.
        """
        key = CATALOGS[method][0]
        items: list = []
        seen_cursors: set = set()
        current_id: list = [None]
        result_future: Future = Future()

        def fail(exc: BaseException) -> None:
            if not result_future.done():
                result_future.set_exception(exc)

        def cancel_page(f: Future) -> None:
            if f.cancelled() and current_id[0] is not None:
                self._correlator.cancel(current_id[0])

        def fetch(cursor: Optional[str]) -> None:
            call = self._send(method, {"cursor": cursor})
            current_id[0] = call.id
            call.future.add_done_callback(page_done)

        def page_done(page: Future) -> None:
            if result_future.done():
                return
            if page.cancelled():
                fail(ConnectionClosedError(f"{method} cancelled"))
                return
            if (exc := page.exception()) is not None:
                fail(exc)
                return
            result = page.result()
            if not isinstance(result, dict):
                fail(ProtocolError(f"{method} result must be a dict, got {type(result).__name__}"))
                return
            try:
                items.extend(parse_items(method, result.get(key, [])))
            except ProtocolError as e:
                fail(e)
                return

            cursor = result.get("nextCursor")
            if cursor:
                if cursor in seen_cursors:
                    fail(ProtocolError(f"{method} repeated cursor {cursor!r}"))
                    return
                seen_cursors.add(cursor)
                try:
                    fetch(cursor)
                except MCPError as e:
                    fail(e)
                return

            self.catalog.replace(method, tuple(items))
            result_future.set_result(tuple(items))

        result_future.add_done_callback(cancel_page)
        fetch(None)

        return add_callbacks(
            result_future,
            on_result=(lambda result: on_success(self, result)) if on_success else None,
            on_error=(lambda exc: on_error(*error_args(exc))) if on_error else None,
        )

    def list_tools(self, on_success=None, on_error=None) -> Future:
        return self._list("tools/list", on_success, on_error)

    def list_prompts(self, on_success=None, on_error=None) -> Future:
        return self._list("prompts/list", on_success, on_error)

    def list_resources(self, on_success=None, on_error=None) -> Future:
        return self._list("resources/list", on_success, on_error)

    def list_resource_templates(self, on_success=None, on_error=None) -> Future:
        return self._list("resources/templates/list", on_success, on_error)

    def list_tools_sync(self, timeout: Optional[float] = None) -> tuple:
        return self.wait(self.list_tools(), timeout)

    def list_prompts_sync(self, timeout: Optional[float] = None) -> tuple:
        return self.wait(self.list_prompts(), timeout)

    def list_resources_sync(self, timeout: Optional[float] = None) -> tuple:
        return self.wait(self.list_resources(), timeout)

    def list_resource_templates_sync(self, timeout: Optional[float] = None) -> tuple:
        return self.wait(self.list_resource_templates(), timeout)

    # === CALLS ===

    def ping(self, timeout: Optional[float] = None) -> bool:
        """True if the server answered a ping."""
        if self.status is not ConnectionStatus.CONNECTED:
            return False
        try:
            self.request("ping", timeout=timeout)
            return True
        except MCPError:
            return False

    def call_tool(self, name: str, arguments: Optional[dict] = None, timeout: Optional[float] = None) -> dict:
        """Raw tools/call result. See mcplink.invoker for positional calls and text results."""
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Tool name must be a non-empty string")
        return self.request("tools/call", {"name": name, "arguments": arguments or {}}, timeout)

    def call_tool_async(self, name: str, arguments: Optional[dict] = None, on_result=None, on_error=None) -> Future:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Tool name must be a non-empty string")
        return self.request_async(
            "tools/call", {"name": name, "arguments": arguments or {}}, on_result, on_error
        )

    def get_prompt(self, name: str, arguments: Optional[dict] = None, timeout: Optional[float] = None) -> dict:
        if not isinstance(name, str) or not name.strip():
            raise ValueError("Prompt name must be a non-empty string")
        return self.request("prompts/get", {"name": name, "arguments": arguments or {}}, timeout)

    def read_resource(self, uri: str, timeout: Optional[float] = None) -> dict:
        if not isinstance(uri, str) or not uri.strip():
            raise ValueError("Resource URI must be a non-empty string")
        return self.request("resources/read", {"uri": uri}, timeout)
