"""
Single-threaded work queue shared by one or more connections.

Transports never hand data to the protocol engine directly. A connection's
inbound handler only posts the raw chunk here; parsing and dispatch happen
when the queue is drained, one item at a time, each run to completion. A
callback that sends a new request, or even blocks on a synchronous call,
cannot re-enter the inbound path: the new data is queued behind the item
that is currently running.

Synchronous calls block by pumping the dispatcher until their own Future is
done, so a single thread serves every attached connection.
"""

from __future__ import annotations

import errno
import logging
import select
import time
from collections import deque
from typing import Any, Callable, Optional

from .errors import MCPTimeoutError

logger = logging.getLogger('mcplink')

# Upper bound on a single wait, so deadlines are re-checked regularly
MAX_WAIT = 1.0

# Wait used when no attached source exposes a selectable handle
POLL_INTERVAL = 0.01


class Dispatcher:
    """
    FIFO of callables plus the set of sources to poll for inbound data.

    A source is any object with:
        poll_transport() -> bool      read what is available, post it, report activity
        wait_handles() -> list        objects usable with select.select(), may be empty
    """

    def __init__(self) -> None:
        self._queue: deque[tuple[Callable[..., Any], tuple]] = deque()
        self._sources: list[Any] = []
        self._depth = 0

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def draining(self) -> bool:
        """True while a drain is on the stack (possibly nested)."""
        return self._depth > 0

    def post(self, fn: Callable[..., Any], *args: Any) -> None:
        """Schedule fn(*args). Never runs inline."""
        self._queue.append((fn, args))

    def drain(self) -> int:
        """
        Run queued items until the queue is empty.

        An exception escaping one item is logged; the remaining items still run.
        Returns the number of items executed.
        """
        count = 0
        self._depth += 1
        try:
            while self._queue:
                fn, args = self._queue.popleft()
                count += 1
                try:
                    fn(*args)
                except Exception as e:
                    logger.error(f"Exception in scheduled callback {getattr(fn, '__qualname__', fn)}: {e}",
                                 exc_info=logger.isEnabledFor(logging.DEBUG))
        finally:
            self._depth -= 1
        return count

    # === SOURCES ===

    def attach(self, source: Any) -> None:
        if source not in self._sources:
            self._sources.append(source)

    def detach(self, source: Any) -> None:
        if source in self._sources:
            self._sources.remove(source)

    @property
    def sources(self) -> list[Any]:
        return list(self._sources)

    def pump(self, timeout: Optional[float] = None) -> bool:
        """
        Do one round of work.

        Drains the queue; if nothing was queued, polls each source once and
        drains whatever they posted. When there was nothing at all to do,
        waits for inbound data up to timeout (capped at MAX_WAIT).

        Returns True if any work ran.
        """
        if self.drain():
            return True

        active = False
        for source in list(self._sources):
            if source.poll_transport():
                active = True
        if active or self._queue:
            self.drain()
            return True

        self._wait(timeout)
        return False

    def _wait(self, timeout: Optional[float]) -> None:
        wait = MAX_WAIT if timeout is None else max(0.0, min(timeout, MAX_WAIT))
        handles = [h for s in self._sources for h in s.wait_handles()]
        if not handles:
            if wait > 0:
                time.sleep(min(wait, POLL_INTERVAL))
            return
        try:
            select.select(handles, [], [], wait)
        except OSError as e:
            if e.errno != errno.EINTR:
                # A handle was closed under us; the next poll reports it
                logger.debug(f"select error while waiting: {e}")
        except ValueError as e:
            logger.debug(f"select error while waiting: {e}")

    def run_until(self, predicate: Callable[[], bool], timeout: Optional[float] = None) -> None:
        """
        Pump until predicate() is true.

        Args:
            predicate: Checked before every round.
            timeout: Seconds to wait. None waits forever.

        Raises:
            MCPTimeoutError: If the timeout expires first.
        """
        deadline = None if timeout is None else time.monotonic() + timeout
        while not predicate():
            remaining = None
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    raise MCPTimeoutError(f"Timeout after {timeout}s")
            self.pump(remaining)
