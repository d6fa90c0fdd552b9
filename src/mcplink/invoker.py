"""
Positional tool invocation.

Tool-calling front ends often hand over arguments as a list in the order
the tool declared them. build_call() zips that list against the declared
property order, fills defaults, and checks required-ness per property.
ToolInvoker sends the result as tools/call and flattens the reply to text.

Example:
    invoker = ToolInvoker(conn)
    text = invoker.invoke("search", ["python json-rpc", 5])
"""

from __future__ import annotations

import logging
from concurrent.futures import Future
from typing import Any, Callable, Optional, Sequence

from .catalog import ToolDescriptor
from .correlator import add_callbacks
from .errors import ArgumentMismatchError, RPCError, ToolCallError, ToolNotFoundError

logger = logging.getLogger('mcplink')


class _Unset:
    """Marks a property that got neither a value nor a default."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


def build_call(tool: ToolDescriptor, positional_args: Sequence[Any]) -> dict[str, Any]:
    """
    Map positional arguments onto the tool's declared properties.

    Returns:
        Named arguments for every declared property, in declaration order.
        Properties with no value and no default map to UNSET.

    Raises:
        ArgumentMismatchError: Fewer values than required properties, a
            required property left without a value, or more values than
            declared properties.
    """
    schema = tool.input_schema
    values = list(positional_args)
    required = schema.required_names

    if len(values) < len(required):
        raise ArgumentMismatchError(tool.name, required, values, "not enough arguments")
    if len(values) > len(schema.properties):
        raise ArgumentMismatchError(tool.name, required, values, "too many arguments")

    named: dict[str, Any] = {}
    for index, prop in enumerate(schema.properties):
        if index < len(values):
            named[prop.name] = values[index]
        elif schema.is_required(prop.name):
            raise ArgumentMismatchError(
                tool.name, required, values, f"no value for required '{prop.name}'"
            )
        elif prop.has_default:
            named[prop.name] = prop.default
        else:
            named[prop.name] = UNSET

    if missing := [n for n in required if n not in named]:
        raise ArgumentMismatchError(
            tool.name, required, values, f"required {missing} not declared as properties"
        )
    return named


def wire_arguments(named: dict[str, Any]) -> dict[str, Any]:
    """Drop UNSET entries before sending."""
    return {k: v for k, v in named.items() if v is not UNSET}


def extract_text(result: Any) -> str:
    """Join the text of every 'text' content entry with newlines; ignore the rest."""
    if not isinstance(result, dict):
        return ""
    parts = []
    for item in result.get('content') or []:
        if isinstance(item, dict) and item.get('type') == 'text':
            parts.append(str(item.get('text', '')))
    return '\n'.join(parts)


def _tool_error(name: str, exc: BaseException) -> BaseException:
    if isinstance(exc, RPCError) and not isinstance(exc, ToolCallError):
        return ToolCallError(name, exc.code, exc.message, exc.data)
    return exc


class ToolInvoker:
    """Invoke tools of one connection by name with positional arguments."""

    def __init__(self, connection) -> None:
        self.connection = connection

    def lookup(self, name: str) -> ToolDescriptor:
        tool = self.connection.find_tool(name)
        if tool is None:
            raise ToolNotFoundError(name, self.connection.name)
        return tool

    def prepare(self, name: str, positional_args: Sequence[Any]) -> dict[str, Any]:
        """Local validation only: the tools/call params for this invocation."""
        tool = self.lookup(name)
        return {"name": tool.name, "arguments": wire_arguments(build_call(tool, positional_args))}

    def invoke(self, name: str, positional_args: Sequence[Any] = (), timeout: Optional[float] = None) -> str:
        """
        Call a tool and return its text output.

        Raises:
            ToolNotFoundError, ArgumentMismatchError: before anything is sent.
            ToolCallError: the server answered with an error.
        """
        params = self.prepare(name, positional_args)
        try:
            result = self.connection.request("tools/call", params, timeout)
        except RPCError as e:
            raise _tool_error(name, e) from e
        if isinstance(result, dict) and result.get('isError'):
            logger.info(f"[{self.connection.name}] tool {name} reported an error result")
        return extract_text(result)

    def invoke_async(
        self,
        name: str,
        positional_args: Sequence[Any] = (),
        on_result: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[BaseException], None]] = None,
    ) -> Future:
        """
        Like invoke() but returns a Future of the text.

        Local validation errors are still raised here; remote errors arrive
        through the Future (and on_error) as ToolCallError.
        """
        params = self.prepare(name, positional_args)
        call = self.connection.request_async("tools/call", params)
        text_future: Future = Future()
        text_future.set_running_or_notify_cancel()

        def done(f: Future) -> None:
            if f.cancelled():
                text_future.set_exception(ToolCallError(name, -1, "call cancelled"))
            elif (exc := f.exception()) is not None:
                text_future.set_exception(_tool_error(name, exc))
            else:
                text_future.set_result(extract_text(f.result()))

        call.add_done_callback(done)
        return add_callbacks(text_future, on_result, on_error)


def invoke(connection, name: str, positional_args: Sequence[Any] = (), timeout: Optional[float] = None) -> str:
    return ToolInvoker(connection).invoke(name, positional_args, timeout)
