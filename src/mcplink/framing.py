"""
Newline-delimited JSON framing.

The server writes one JSON object per line. Pipes deliver whatever the OS
hands us, so a read may end in the middle of a message, or carry several.
FrameReader keeps the unterminated tail between feeds and only ever parses
complete lines.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Union

from .errors import ProtocolError

logger = logging.getLogger('mcplink')

# Maximum buffer size to prevent memory exhaustion (100 MB)
MAX_BUFFER_SIZE = 100 * 1024 * 1024

# Outbound terminator. Inbound lines are split on "\n" and stripped, so
# either terminator is accepted from the server.
FRAME_TERMINATOR = b"\r\n"


def encode_frame(message: dict) -> bytes:
    """Serialize a message as compact JSON followed by CRLF."""
    try:
        return json.dumps(message, separators=(',', ':')).encode('utf-8') + FRAME_TERMINATOR
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"Failed to serialize message: {e}") from e


class FrameReader:
    """
    Turns an arbitrary chunk stream into parsed JSON objects.

    Usage:
        reader = FrameReader()
        for message in reader.feed(chunk):
            ...

    A line that is not valid JSON (or not a JSON object) is logged and
    dropped; the other lines from the same chunk are still returned.
    """

    def __init__(self, max_buffer: int = MAX_BUFFER_SIZE) -> None:
        self.max_buffer = max_buffer
        self._buffer = b""
        self._discarding = False

    @property
    def pending(self) -> int:
        """Number of buffered bytes still waiting for a line terminator."""
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer = b""
        self._discarding = False

    def feed(self, chunk: Union[bytes, str]) -> list[dict[str, Any]]:
        if isinstance(chunk, str):
            chunk = chunk.encode('utf-8')
        if not chunk:
            return []

        data = self._buffer + chunk
        if self._discarding:
            # Skip the rest of an oversized line
            end = data.find(b"\n")
            if end < 0:
                self._buffer = b""
                return []
            data = data[end + 1:]
            self._discarding = False

        *lines, tail = data.split(b"\n")
        if len(tail) > self.max_buffer:
            logger.error(f"Dropping unterminated frame larger than {self.max_buffer} bytes")
            tail = b""
            self._discarding = True
        self._buffer = tail

        messages = []
        for line in lines:
            line = line.strip()
            if not line:
                continue
            message = self._parse(line)
            if message is not None:
                messages.append(message)
        return messages

    def _parse(self, line: bytes):
        try:
            message = json.loads(line.decode('utf-8'))
        except UnicodeDecodeError as e:
            logger.warning(f"Dropping frame with invalid UTF-8 from server: {e}")
            return None
        except json.JSONDecodeError as e:
            logger.warning(f"Dropping invalid JSON from server: {e}: {line[:100]!r}")
            return None
        if not isinstance(message, dict):
            logger.warning(f"Dropping non-object JSON frame: {type(message).__name__}")
            return None
        return message
