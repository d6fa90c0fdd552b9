"""Shared fixtures: an in-memory transport and a scripted MCP server."""

import json
from collections import deque

import pytest

from mcplink.connection import Connection
from mcplink.dispatch import Dispatcher
from mcplink.errors import TransportError
from mcplink.protocol import PROTOCOL_VERSION
from mcplink.transport import Transport


def frame(message) -> bytes:
    return json.dumps(message).encode('utf-8') + b"\n"


def reply(id, result=None, error=None):
    message = {"jsonrpc": "2.0", "id": id}
    if error is not None:
        message["error"] = error
    else:
        message["result"] = result
    return message


class ScriptedTransport(Transport):
    """
    Transport backed by Python lists.

    Every write is decoded into `sent`; if a responder is set it is called
    with the decoded message and whatever it returns is queued for reading.
    """

    def __init__(self, responder=None):
        self.responder = responder
        self.sent = []
        self.inbox = deque()
        self.fail_reads = None
        self.connect_count = 0
        self._closed = True

    @property
    def closed(self):
        return self._closed

    def connect(self):
        self.connect_count += 1
        self._closed = False

    def write(self, data):
        if self._closed:
            raise TransportError("Transport not connected")
        assert data.endswith(b"\r\n")
        message = json.loads(data)
        self.sent.append(message)
        if self.responder is not None:
            for response in self.responder(message) or ():
                self.push(response)

    def push(self, *messages):
        for message in messages:
            self.inbox.append(frame(message))

    def push_raw(self, chunk):
        self.inbox.append(chunk)

    def read_chunk(self, timeout=0):
        if self._closed:
            raise TransportError("Transport not connected")
        if self.fail_reads is not None:
            raise self.fail_reads
        return self.inbox.popleft() if self.inbox else None

    def close(self):
        self._closed = True

    def methods(self):
        return [m.get("method") for m in self.sent if "method" in m]

    def requests(self, method):
        return [m for m in self.sent if m.get("method") == method and "id" in m]


ECHO_TOOL = {
    "name": "echo",
    "description": "Echo the text back",
    "inputSchema": {
        "type": "object",
        "properties": {
            "text": {"type": "string", "description": "What to echo"},
            "times": {"type": "integer", "default": 1},
        },
        "required": ["text"],
    },
}


class FakeServer:
    """Answers the requests an MCP server would, from canned data."""

    def __init__(
        self,
        protocol_version=PROTOCOL_VERSION,
        capabilities=None,
        tools=(ECHO_TOOL,),
        prompts=(),
        resources=(),
        init_error=None,
        hold=(),
    ):
        self.protocol_version = protocol_version
        self.capabilities = {"tools": {}} if capabilities is None else capabilities
        self.tools = list(tools)
        self.prompts = list(prompts)
        self.resources = list(resources)
        self.init_error = init_error
        self.hold = set(hold)
        self.tool_errors = {}

    def __call__(self, message):
        if "id" not in message or "method" not in message:
            return []
        method, id = message["method"], message["id"]
        params = message.get("params") or {}
        if method in self.hold:
            return []
        if method == "initialize":
            if self.init_error is not None:
                return [reply(id, error=self.init_error)]
            return [reply(id, {
                "protocolVersion": self.protocol_version,
                "capabilities": self.capabilities,
                "serverInfo": {"name": "fake", "version": "1.0"},
                "instructions": "Be nice.",
            })]
        if method == "ping":
            return [reply(id, {})]
        if method == "tools/list":
            return [reply(id, {"tools": self.tools})]
        if method == "prompts/list":
            return [reply(id, {"prompts": self.prompts})]
        if method == "resources/list":
            return [reply(id, {"resources": self.resources})]
        if method == "resources/templates/list":
            return [reply(id, {"resourceTemplates": []})]
        if method == "prompts/get":
            text = f"{params['name']}: {params['arguments']}"
            return [reply(id, {"messages": [{"role": "user", "content": {"type": "text", "text": text}}]})]
        if method == "resources/read":
            return [reply(id, {"contents": [{"uri": params["uri"], "text": "data"}]})]
        if method == "tools/call":
            name = params["name"]
            if name in self.tool_errors:
                code, text = self.tool_errors[name]
                return [reply(id, error={"code": code, "message": text})]
            args = params["arguments"]
            text = " ".join([args.get("text", "")] * args.get("times", 1))
            return [reply(id, {"content": [{"type": "text", "text": text}]})]
        return [reply(id, error={"code": -32601, "message": f"Method not found: {method}"})]


@pytest.fixture
def dispatcher():
    return Dispatcher()


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
def transport(server):
    return ScriptedTransport(server)


@pytest.fixture
def connection(transport, dispatcher):
    conn = Connection("fake", transport, dispatcher)
    conn.start()
    conn.wait_ready(timeout=5)
    yield conn
    conn.stop()
