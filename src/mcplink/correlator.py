"""
Request/reply correlation.

Each outbound request gets a fresh id and a PendingCall holding a
concurrent.futures.Future. When a Reply with that id arrives the entry is
removed and the future is completed inside the dispatcher item that decoded
the reply, so replies are delivered in arrival order and a failing
callback cannot disturb the delivery of another reply. Replies may arrive
in any order relative to the requests.
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import Future
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .dispatch import Dispatcher
from .errors import MCPError
from .protocol import Reply, Request, normalize_id

logger = logging.getLogger('mcplink')


@dataclass
class PendingCall:
    id: int
    method: str
    future: Future = field(default_factory=Future)
    created: float = field(default_factory=time.monotonic)


def add_callbacks(
    future: Future,
    on_result: Optional[Callable[[Any], None]] = None,
    on_error: Optional[Callable[[BaseException], None]] = None,
) -> Future:
    """
    Attach a success/error continuation pair to a future.

    Exactly one of the two runs, once. Cancellation is not reported to either.
    """
    if on_result is None and on_error is None:
        return future

    def done(f: Future) -> None:
        if f.cancelled():
            return
        exc = f.exception()
        if exc is None:
            if on_result is not None:
                on_result(f.result())
        elif on_error is not None:
            on_error(exc)
        else:
            logger.warning(f"Unhandled error in asynchronous call: {exc}")

    future.add_done_callback(done)
    return future


class RequestCorrelator:
    """
    Tracks outstanding requests of one connection.

    Args:
        send: Writes an encoded message dict to the transport.
        dispatcher: Queue used to deliver completions.
    """

    def __init__(self, send: Callable[[dict], None], dispatcher: Dispatcher) -> None:
        self._send = send
        self._dispatcher = dispatcher
        self._request_id = 0
        self._pending: dict[Any, PendingCall] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, request_id: Any) -> bool:
        return normalize_id(request_id) in self._pending

    @property
    def pending_ids(self) -> list[int]:
        return [call.id for call in self._pending.values()]

    def next_id(self) -> int:
        """Generate the next unique request ID."""
        self._request_id += 1
        return self._request_id

    def send_request(self, method: str, params: Optional[dict] = None) -> PendingCall:
        """
        Register a pending entry and write the request.

        The entry exists before the write so a reply can never beat its
        registration. If the write fails the entry is removed and the error
        propagates to the caller.
        """
        call = PendingCall(id=self.next_id(), method=method)
        key = normalize_id(call.id)
        self._pending[key] = call
        call.future.add_done_callback(lambda f, key=key: self._forget_cancelled(key, f))
        try:
            self._send(Request(id=call.id, method=method, params=params or {}).to_dict())
        except Exception:
            self._pending.pop(key, None)
            raise
        return call

    def _forget_cancelled(self, key: Any, future: Future) -> None:
        if future.cancelled():
            self._pending.pop(key, None)

    def complete(self, reply: Reply) -> bool:
        """
        Route a reply to its caller.

        Called from the dispatcher item that decoded the reply, so the
        future is completed in that same unit of work. Returns False (after
        logging) for a reply whose id is not pending, either unknown or
        already completed.
        """
        call = self._pending.pop(normalize_id(reply.id), None)
        if call is None:
            logger.warning(f"Discarding reply for unknown or completed request id={reply.id!r}")
            return False

        if logger.isEnabledFor(logging.DEBUG):
            elapsed = time.monotonic() - call.created
            logger.debug(f"{call.method} id={call.id} completed in {elapsed:.3f}s")

        if reply.ok:
            self._resolve(call, reply.result)
        else:
            self._reject(call, reply.error.to_exception())
        return True

    def cancel(self, request_id: Any) -> bool:
        """Stop waiting for a request. A late reply for it is discarded as stale."""
        call = self._pending.pop(normalize_id(request_id), None)
        if call is None:
            return False
        call.future.cancel()
        return True

    def fail_all(self, exc: MCPError) -> int:
        """
        Clear the table and schedule exc for every call that was pending.

        Each failure is its own queue item, in request order.
        """
        calls = list(self._pending.values())
        self._pending.clear()
        for call in calls:
            self._dispatcher.post(self._reject, call, exc)
        return len(calls)

    @staticmethod
    def _resolve(call: PendingCall, result: Any) -> None:
        if call.future.set_running_or_notify_cancel():
            call.future.set_result(result)

    @staticmethod
    def _reject(call: PendingCall, exc: BaseException) -> None:
        if call.future.set_running_or_notify_cancel():
            call.future.set_exception(exc)
