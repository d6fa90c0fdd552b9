"""
Named connection registry.

Maps a server name to its live Connection so callers can find, reuse and
stop connections. Every mutation holds a re-entrant lock: a callback fired
while a connection is being stopped may look the registry up again and
sees a consistent table.

    registry = ConnectionRegistry()
    conn = connect_stdio(registry, "fs", ["mcp-server-filesystem", "/tmp"])
    ...
    registry.stop_all()
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

from .config import ClientConfig
from .connection import Connection, ConnectionStatus
from .dispatch import Dispatcher
from .transport import StdioTransport

logger = logging.getLogger('mcplink')


class ConnectionRegistry:
    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._lock = threading.RLock()

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._connections

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def names(self) -> list[str]:
        with self._lock:
            return list(self._connections)

    def register(self, connection: Connection) -> Connection:
        """Add a connection; an older entry with the same name is stopped."""
        with self._lock:
            previous = self._connections.get(connection.name)
            self._connections[connection.name] = connection
            if previous is not None and previous is not connection:
                logger.info(f"Replacing connection '{connection.name}'")
                previous.stop()
        return connection

    def lookup(self, name: str) -> Optional[Connection]:
        with self._lock:
            return self._connections.get(name)

    def unregister(self, name: str) -> Optional[Connection]:
        """Remove an entry without stopping it."""
        with self._lock:
            return self._connections.pop(name, None)

    def stop(self, name: str) -> bool:
        with self._lock:
            connection = self._connections.pop(name, None)
            if connection is None:
                return False
            connection.stop()
            return True

    def stop_all(self) -> None:
        with self._lock:
            connections = list(self._connections.values())
            self._connections.clear()
            for connection in connections:
                connection.stop()

    def status(self) -> dict[str, str]:
        with self._lock:
            return {name: conn.status.value for name, conn in self._connections.items()}


default_registry = ConnectionRegistry()


def connect_stdio(
    registry: ConnectionRegistry,
    name: str,
    command: Optional[list[str]] = None,
    env: Optional[dict[str, str]] = None,
    dispatcher: Optional[Dispatcher] = None,
    config: Optional[ClientConfig] = None,
    wait: bool = True,
    timeout: Optional[float] = None,
    **callbacks,
) -> Connection:
    """
    Reuse the live connection named `name`, or start a new one over stdio.

    When command is omitted it is looked up in config.servers by name.
    Entries in `error` or `shutdown` state are dropped and replaced.
    With wait=True (default) negotiation is completed before returning.
    """
    config = config or ClientConfig()
    if command is None:
        command = config.servers.get(name)
        if command is None:
            raise ValueError(f"No command given and no server named '{name}' in config")

    with registry._lock:
        existing = registry.lookup(name)
        if existing is not None and existing.status in (ConnectionStatus.INIT, ConnectionStatus.CONNECTED):
            return existing
        if existing is not None:
            registry.unregister(name)

        transport = StdioTransport(command, env=env, forward_stderr=config.forward_stderr)
        connection = Connection(name, transport, dispatcher=dispatcher, config=config, **callbacks)
        registry.register(connection)

    try:
        connection.start()
        if wait:
            connection.wait_ready(timeout)
    except Exception:
        with registry._lock:
            if registry.lookup(name) is connection:
                registry.unregister(name)
        connection.stop()
        raise
    return connection
