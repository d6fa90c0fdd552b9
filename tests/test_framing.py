"""Tests for mcplink.framing: newline-delimited JSON frames."""

import json

import pytest

from mcplink.errors import ProtocolError
from mcplink.framing import FrameReader, encode_frame


MESSAGES = [
    {"jsonrpc": "2.0", "id": 1, "result": {"text": "héllo"}},
    {"jsonrpc": "2.0", "method": "notifications/progress", "params": {"progress": 1}},
    {"jsonrpc": "2.0", "id": 2, "error": {"code": -32601, "message": "nope"}},
]


def stream():
    return b"".join(json.dumps(m, ensure_ascii=False).encode('utf-8') + b"\n" for m in MESSAGES)


# === encode_frame ===

class TestEncodeFrame:
    def test_compact_json_with_crlf(self):
        data = encode_frame({"jsonrpc": "2.0", "id": 1, "method": "ping"})
        assert data == b'{"jsonrpc":"2.0","id":1,"method":"ping"}\r\n'

    def test_unserializable_raises_protocol_error(self):
        with pytest.raises(ProtocolError):
            encode_frame({"x": object()})


# === FrameReader ===

class TestFrameReader:
    def test_single_message(self):
        reader = FrameReader()
        assert reader.feed(b'{"a": 1}\n') == [{"a": 1}]
        assert reader.pending == 0

    def test_several_messages_in_one_chunk(self):
        assert FrameReader().feed(stream()) == MESSAGES

    def test_every_split_point(self):
        data = stream()
        for i in range(len(data) + 1):
            reader = FrameReader()
            out = reader.feed(data[:i]) + reader.feed(data[i:])
            assert out == MESSAGES, f"split at {i}"

    def test_byte_at_a_time(self):
        reader = FrameReader()
        out = []
        data = stream()
        for i in range(len(data)):
            out.extend(reader.feed(data[i:i + 1]))
        assert out == MESSAGES

    def test_partial_line_is_kept(self):
        reader = FrameReader()
        assert reader.feed(b'{"a":') == []
        assert reader.pending == 5
        assert reader.feed(b' 1}\n') == [{"a": 1}]

    def test_crlf_terminated(self):
        assert FrameReader().feed(b'{"a": 1}\r\n{"b": 2}\r\n') == [{"a": 1}, {"b": 2}]

    def test_empty_lines_ignored(self):
        assert FrameReader().feed(b'\n\r\n  \n{"a": 1}\n\n') == [{"a": 1}]

    def test_invalid_json_does_not_drop_siblings(self):
        data = b'{"a": 1}\n{not json}\n{"b": 2}\n'
        assert FrameReader().feed(data) == [{"a": 1}, {"b": 2}]

    def test_non_object_frame_dropped(self):
        assert FrameReader().feed(b'[1, 2]\n"str"\n{"a": 1}\n') == [{"a": 1}]

    def test_invalid_utf8_dropped(self):
        assert FrameReader().feed(b'\xff\xfe\n{"a": 1}\n') == [{"a": 1}]

    def test_text_chunks(self):
        assert FrameReader().feed('{"a": "é"}\n') == [{"a": "é"}]

    def test_empty_chunk(self):
        assert FrameReader().feed(b"") == []

    def test_oversized_tail_discarded_until_newline(self):
        reader = FrameReader(max_buffer=16)
        assert reader.feed(b'{"a": ') == []
        assert reader.feed(b'"0123456789abcdef"') == []
        assert reader.pending == 0
        assert reader.feed(b'ghij"}') == []
        assert reader.pending == 0
        assert reader.feed(b'}\n{"b": 2}\n') == [{"b": 2}]

    def test_cap_applies_to_tail_only(self):
        reader = FrameReader(max_buffer=32)
        assert reader.feed(b'{"k": "' + b'a' * 20) == []
        out = reader.feed(b'aaaa"}\n{"b": 2}\n')
        assert out == [{"k": "a" * 24}, {"b": 2}]

    def test_large_chunk_of_complete_lines(self):
        reader = FrameReader(max_buffer=16)
        data = b''.join(b'{"n": %d}\n' % i for i in range(10))
        assert reader.feed(data) == [{"n": i} for i in range(10)]
        assert reader.pending == 0

    def test_messages_before_oversized_tail_survive(self):
        reader = FrameReader(max_buffer=8)
        assert reader.feed(b'{"a": 1}\n{"b": "0123456789"') == [{"a": 1}]
        assert reader.feed(b'}\n{"c": 3}\n') == [{"c": 3}]

    def test_reset(self):
        reader = FrameReader()
        reader.feed(b'{"a": ')
        reader.reset()
        assert reader.pending == 0
        assert reader.feed(b'{"b": 2}\n') == [{"b": 2}]
