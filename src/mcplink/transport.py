"""
Byte-stream transports.

A transport moves raw bytes; framing and JSON live in the protocol engine.
StdioTransport talks to a child process over its stdin/stdout pipes and
forwards the child's stderr to the 'mcplink.server' logger.

Platform: StdioTransport needs fcntl for non-blocking pipes (POSIX only).
"""

from __future__ import annotations

import errno
import logging
import os
import select
import signal
import subprocess
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

from .errors import TransportError

try:
    import fcntl
except ImportError:  # Windows
    fcntl = None

server_logger = logging.getLogger('mcplink.server')

# Chunk size for reading from pipes
READ_CHUNK_SIZE = 65536

# Grace period for subprocess termination before sending SIGKILL
PROCESS_TERMINATE_TIMEOUT = 3

# Default time allowed for one outbound write to drain into the pipe
WRITE_TIMEOUT = 30.0


class Transport(ABC):
    """Abstract duplex byte stream."""

    @abstractmethod
    def connect(self) -> None:
        """Establish the transport connection."""
        pass

    @abstractmethod
    def write(self, data: bytes) -> None:
        """Write all of data or raise TransportError."""
        pass

    @abstractmethod
    def read_chunk(self, timeout: Optional[float] = 0) -> Optional[bytes]:
        """
        Return the bytes currently available.

        Args:
            timeout: Seconds to wait for data. 0 polls, None blocks.

        Returns:
            A non-empty bytes object, or None if nothing arrived in time.

        Raises:
            TransportError: On EOF or I/O errors.
        """
        pass

    def wait_handles(self) -> list[Any]:
        """Objects a dispatcher may select() on while idle."""
        return []

    @abstractmethod
    def close(self) -> None:
        """Close the transport. Safe to call more than once."""
        pass

    @property
    @abstractmethod
    def closed(self) -> bool:
        pass


class StdioTransport(Transport):
    """
    Transport over a subprocess's stdin/stdout pipes.

    The child is started in its own session so close() can terminate the
    whole process group.
    """

    def __init__(
        self,
        command: list[str],
        env: Optional[dict[str, str]] = None,
        cwd: Optional[str] = None,
        forward_stderr: bool = True,
    ) -> None:
        """
        Args:
            command: Command and arguments to spawn the MCP server.
            env: Additional environment variables for the subprocess.
            cwd: Working directory for the subprocess.
            forward_stderr: If True (default), log server stderr lines to
                            the 'mcplink.server' logger.
        """
        if fcntl is None:
            raise TransportError("StdioTransport requires fcntl (POSIX only)")
        self.command = list(command)
        self.env = env
        self.cwd = cwd
        self.forward_stderr = forward_stderr
        self.process: Optional[subprocess.Popen[bytes]] = None
        self._closed = True
        self._stderr_buffer = b""

    @property
    def closed(self) -> bool:
        return self._closed

    def connect(self) -> None:
        """Spawn the subprocess and set up non-blocking I/O."""
        process_env = os.environ.copy()
        if self.env:
            process_env.update(self.env)

        try:
            self.process = subprocess.Popen(
                self.command,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                bufsize=0,
                env=process_env,
                cwd=self.cwd,
                start_new_session=True,
            )
        except OSError as e:
            raise TransportError(f"Failed to start process {self.command[0]!r}: {e}") from e

        try:
            for pipe in (self.process.stdout, self.process.stderr, self.process.stdin):
                flags = fcntl.fcntl(pipe.fileno(), fcntl.F_GETFL)
                fcntl.fcntl(pipe.fileno(), fcntl.F_SETFL, flags | os.O_NONBLOCK)
        except OSError as e:
            self._closed = False
            self.close()
            raise TransportError(f"Failed to set non-blocking I/O: {e}") from e

        self._closed = False

    def _live_process(self) -> subprocess.Popen[bytes]:
        if self._closed or self.process is None:
            raise TransportError("Transport not connected")
        return self.process

    def write(self, data: bytes, timeout: float = WRITE_TIMEOUT) -> None:
        """
        Write data to the server's stdin.

        Uses select on the non-blocking pipe so a server that stops reading
        cannot stall us forever.
        """
        process = self._live_process()
        if process.poll() is not None:
            raise TransportError(f"Process exited with code {process.returncode}")

        deadline = time.monotonic() + timeout
        written = 0
        while written < len(data):
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise TransportError(
                    f"Timeout writing to server stdin after {written}/{len(data)} bytes"
                )
            try:
                _, writable, _ = select.select([], [process.stdin], [], min(remaining, 1.0))
            except (OSError, ValueError) as e:
                raise TransportError(f"Select error on stdin: {e}") from e
            if not writable:
                if process.poll() is not None:
                    raise TransportError(f"Process exited with code {process.returncode}")
                continue
            try:
                n = process.stdin.write(data[written:])
            except BlockingIOError:
                continue
            except (BrokenPipeError, OSError) as e:
                raise TransportError(f"Failed to send message: {e}") from e
            if n:
                written += n

    def read_chunk(self, timeout: Optional[float] = 0) -> Optional[bytes]:
        process = self._live_process()
        try:
            readable, _, _ = select.select([process.stdout, process.stderr], [], [], timeout)
        except OSError as e:
            if e.errno == errno.EINTR:
                return None
            raise TransportError(f"Select error: {e}") from e
        except ValueError as e:
            raise TransportError(f"Select error: {e}") from e

        chunk = None
        for pipe in readable:
            try:
                data = pipe.read(READ_CHUNK_SIZE)
            except BlockingIOError:
                continue
            except OSError as e:
                if e.errno in (errno.EAGAIN, errno.EWOULDBLOCK):
                    continue
                raise TransportError(f"Read error: {e}") from e

            if pipe is process.stderr:
                if data:
                    self._forward_stderr(data)
            elif data:
                chunk = data
            elif data == b"":
                raise TransportError(
                    f"Server stdout closed (exit code {process.poll()})"
                )
        return chunk

    def _forward_stderr(self, data: bytes) -> None:
        if not self.forward_stderr:
            return
        *lines, self._stderr_buffer = (self._stderr_buffer + data).split(b"\n")
        for line in lines:
            server_logger.info(line.decode('utf-8', errors='replace').rstrip())

    def wait_handles(self) -> list[Any]:
        if self._closed or self.process is None:
            return []
        return [self.process.stdout, self.process.stderr]

    def close(self) -> None:
        """Close the pipes and terminate the subprocess (and its group)."""
        if self._closed:
            return
        self._closed = True
        process, self.process = self.process, None
        if process is None:
            return

        for pipe in (process.stdin, process.stdout, process.stderr):
            if pipe:
                try:
                    pipe.close()
                except OSError:
                    pass

        try:
            try:
                os.killpg(process.pid, signal.SIGTERM)
            except (OSError, ProcessLookupError):
                process.terminate()
            process.wait(timeout=PROCESS_TERMINATE_TIMEOUT)
        except subprocess.TimeoutExpired:
            try:
                os.killpg(process.pid, signal.SIGKILL)
            except (OSError, ProcessLookupError):
                pass
            try:
                process.wait(timeout=1)
            except (subprocess.TimeoutExpired, OSError):
                pass
        except OSError:
            pass

    def __del__(self) -> None:
        try:
            self.close()
        except Exception:
            pass
