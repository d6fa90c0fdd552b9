"""Tests for mcplink.correlator: matching replies to requests."""

import pytest

from mcplink.correlator import RequestCorrelator, add_callbacks
from mcplink.dispatch import Dispatcher
from mcplink.errors import ConnectionClosedError, RPCError, TransportError
from mcplink.protocol import ErrorObject, Reply


@pytest.fixture
def sent():
    return []


@pytest.fixture
def correlator(sent, dispatcher):
    return RequestCorrelator(sent.append, dispatcher)


class TestSendRequest:
    def test_ids_start_at_one_and_increase(self, correlator, sent):
        a = correlator.send_request("ping")
        b = correlator.send_request("tools/list", {"cursor": None})
        assert (a.id, b.id) == (1, 2)
        assert sent == [
            {"jsonrpc": "2.0", "id": 1, "method": "ping", "params": {}},
            {"jsonrpc": "2.0", "id": 2, "method": "tools/list", "params": {"cursor": None}},
        ]
        assert len(correlator) == 2
        assert correlator.pending_ids == [1, 2]

    def test_failed_write_removes_entry(self, dispatcher):
        def broken(message):
            raise TransportError("pipe closed")

        correlator = RequestCorrelator(broken, dispatcher)
        with pytest.raises(TransportError):
            correlator.send_request("ping")
        assert len(correlator) == 0


class TestComplete:
    def test_result(self, correlator):
        call = correlator.send_request("ping")
        assert correlator.complete(Reply(id=1, result={}))
        assert call.future.result() == {}
        assert 1 not in correlator

    def test_error(self, correlator):
        call = correlator.send_request("tools/call")
        correlator.complete(Reply(id=1, error=ErrorObject(-32602, "bad args")))
        exc = call.future.exception()
        assert isinstance(exc, RPCError)
        assert (exc.code, exc.message) == (-32602, "bad args")

    def test_out_of_order(self, correlator):
        first = correlator.send_request("a")
        second = correlator.send_request("b")
        order = []
        add_callbacks(first.future, on_result=lambda r: order.append(("a", r)))
        add_callbacks(second.future, on_result=lambda r: order.append(("b", r)))

        correlator.complete(Reply(id=2, result="B"))
        correlator.complete(Reply(id=1, result="A"))
        assert order == [("b", "B"), ("a", "A")]

    def test_float_id_matches(self, correlator):
        call = correlator.send_request("ping")
        correlator.complete(Reply(id=1.0, result={}))
        assert call.future.done()

    def test_stale_reply_ignored(self, correlator):
        call = correlator.send_request("ping")
        assert correlator.complete(Reply(id=1, result="first"))
        assert not correlator.complete(Reply(id=1, result="second"))
        assert call.future.result() == "first"

    def test_unknown_id_ignored(self, correlator):
        assert not correlator.complete(Reply(id=99, result={}))


class TestCancelAndTeardown:
    def test_cancel(self, correlator):
        call = correlator.send_request("slow")
        assert correlator.cancel(1)
        assert call.future.cancelled()
        assert len(correlator) == 0
        assert not correlator.complete(Reply(id=1, result={}))

    def test_cancel_unknown(self, correlator):
        assert not correlator.cancel(5)

    def test_cancelling_future_forgets_call(self, correlator):
        call = correlator.send_request("slow")
        call.future.cancel()
        assert len(correlator) == 0

    def test_fail_all(self, correlator, dispatcher):
        calls = [correlator.send_request("x") for _ in range(3)]
        errors = []
        for call in calls:
            add_callbacks(call.future, on_error=errors.append)

        assert correlator.fail_all(ConnectionClosedError("gone")) == 3
        assert len(correlator) == 0
        assert errors == []

        dispatcher.drain()
        assert len(errors) == 3
        assert all(isinstance(e, ConnectionClosedError) for e in errors)


class TestAddCallbacks:
    def test_exactly_one_runs(self, correlator):
        results, errors = [], []
        call = correlator.send_request("ping")
        add_callbacks(call.future, results.append, errors.append)
        correlator.complete(Reply(id=1, result="ok"))
        assert results == ["ok"]
        assert errors == []

    def test_error_continuation(self, correlator):
        results, errors = [], []
        call = correlator.send_request("ping")
        add_callbacks(call.future, results.append, errors.append)
        correlator.complete(Reply(id=1, error=ErrorObject(1, "no")))
        assert results == []
        assert [e.code for e in errors] == [1]

    def test_no_callbacks_returns_future(self, correlator):
        call = correlator.send_request("ping")
        assert add_callbacks(call.future) is call.future
