"""
Unit tests for the NDJSON reassembler.
"""

import json
import random

import pytest

from ollama_bridge.relay.reassembler import Reassembler


RECORDS = [
    {"model": "llama3.2", "response": "import", "done": False},
    {"model": "llama3.2", "response": " { test }", "done": False},
    {"model": "llama3.2", "response": " — “ünïcødé” 测试 🎭", "done": False},
    {"model": "llama3.2", "response": "", "done": True, "total_duration": 500, "eval_count": 3},
]


def ndjson(records) -> bytes:
    return "".join(json.dumps(r, ensure_ascii=False) + "\n" for r in records).encode("utf-8")


def reassemble(chunks) -> list:
    reassembler = Reassembler()
    records = []
    for chunk in chunks:
        records.extend(reassembler.feed(chunk))
    records.extend(reassembler.finish())
    return records


class TestLineSplitting:
    """Records are only produced from complete lines."""

    def test_whole_stream_in_one_chunk(self):
        records = reassemble([ndjson(RECORDS)])
        assert [r.metadata for r in records] == RECORDS

    def test_partial_line_is_buffered(self):
        reassembler = Reassembler()
        assert reassembler.feed(b'{"response": "imp') == []
        assert reassembler.buffer == '{"response": "imp'

        records = reassembler.feed(b'ort"}\n{"resp')
        assert [r.response for r in records] == ["import"]
        assert reassembler.buffer == '{"resp'

    def test_long_line_is_not_rejoined_per_chunk(self):
        line = json.dumps({"response": "x" * 2000})
        reassembler = Reassembler()
        for char in line:
            assert reassembler.feed(char.encode()) == []
        assert len(reassembler._pending) == len(line)
        assert reassembler.buffer == line

        records = reassembler.feed(b'\n{"resp')
        assert [r.response for r in records] == ["x" * 2000]
        assert reassembler._pending == ['{"resp']

    def test_last_segment_stays_pending(self):
        reassembler = Reassembler()
        reassembler.feed(b'{"response": "a"}\n')
        assert reassembler.buffer == ""

    def test_blank_lines_are_skipped(self):
        records = reassemble([b'\n\n   \n{"response": "a"}\n\r\n\n'])
        assert [r.response for r in records] == ["a"]

    def test_crlf_terminated_records(self):
        records = reassemble([b'{"response": "a"}\r\n{"response": "b"}\r\n'])
        assert [r.response for r in records] == ["a", "b"]


class TestChunkBoundaryInvariance:
    """Any byte-level split yields the same records as the unsplit stream."""

    def test_every_two_way_split(self):
        data = ndjson(RECORDS)
        expected = reassemble([data])
        for i in range(len(data) + 1):
            assert reassemble([data[:i], data[i:]]) == expected, f"split at byte {i}"

    def test_byte_by_byte(self):
        data = ndjson(RECORDS)
        assert reassemble([data[i:i + 1] for i in range(len(data))]) == reassemble([data])

    @pytest.mark.parametrize("seed", range(20))
    def test_random_fragmentation(self, seed):
        data = ndjson(RECORDS)
        rng = random.Random(seed)
        cuts = sorted(rng.sample(range(1, len(data)), rng.randint(1, 12)))
        chunks = [data[a:b] for a, b in zip([0] + cuts, cuts + [len(data)])]
        assert reassemble(chunks) == reassemble([data])


class TestMultiByteBoundaries:
    """Splits inside a UTF-8 sequence must not corrupt the text."""

    @pytest.mark.parametrize("text", ["é", "测", "🎭", "“quoted”"])
    def test_split_inside_character(self, text):
        data = ndjson([{"response": text}])
        start = data.index(text.encode("utf-8"))
        for offset in range(1, len(text.encode("utf-8"))):
            cut = start + offset
            records = reassemble([data[:cut], data[cut:]])
            assert [r.response for r in records] == [text]
            assert "�" not in records[0].response

    def test_multibyte_split_across_three_chunks(self):
        data = ndjson([{"response": "🎭"}])
        emoji = "🎭".encode("utf-8")
        i = data.index(emoji)
        chunks = [data[:i + 1], data[i + 1:i + 3], data[i + 3:]]
        assert [r.response for r in reassemble(chunks)] == ["🎭"]


class TestDiscardPolicy:
    """Non-record lines are dropped without aborting the stream."""

    def test_malformed_line_between_records(self):
        reassembler = Reassembler()
        records = reassembler.feed(b'{"response": "a"}\nnot json at all\n{"response": "b"}\n')
        assert [r.response for r in records] == ["a", "b"]
        assert reassembler.discarded == 1

    def test_discarded_segment_is_not_rebuffered(self):
        reassembler = Reassembler()
        reassembler.feed(b'{"response": \n')
        assert reassembler.buffer == ""
        assert reassembler.discarded == 1

    @pytest.mark.parametrize("line", [b"42", b'"keepalive"', b"[1, 2]", b"null", b"{broken"])
    def test_non_object_values_are_discarded(self, line):
        reassembler = Reassembler()
        assert reassembler.feed(line + b"\n") == []
        assert reassembler.discarded == 1

    def test_discard_is_logged(self, caplog):
        reassembler = Reassembler()
        with caplog.at_level("WARNING", logger="ollama_bridge.relay.reassembler"):
            reassembler.feed(b"garbage\n")
        assert "Discarding non-record upstream line" in caplog.text
        assert "garbage" in caplog.text


class TestFinish:
    """End-of-stream handling of the pending buffer."""

    def test_trailing_record_without_newline(self):
        reassembler = Reassembler()
        records = reassembler.feed(b'{"response": "a"}\n{"done": true}')
        assert [r.response for r in records] == ["a"]

        records = reassembler.finish()
        assert len(records) == 1
        assert records[0].done is True

    def test_empty_trailing_buffer_is_not_parsed(self):
        reassembler = Reassembler()
        reassembler.feed(ndjson(RECORDS))
        assert reassembler.finish() == []
        assert reassembler.discarded == 0

    def test_truncated_trailing_record_is_discarded(self):
        reassembler = Reassembler()
        reassembler.feed(b'{"response": "a"}\n{"response": "b')
        assert reassembler.finish() == []
        assert reassembler.discarded == 1

    def test_finish_is_idempotent(self):
        reassembler = Reassembler()
        reassembler.feed(b'{"done": true}')
        assert len(reassembler.finish()) == 1
        assert reassembler.finish() == []

    def test_feed_after_finish_is_rejected(self):
        reassembler = Reassembler()
        reassembler.finish()
        with pytest.raises(RuntimeError):
            reassembler.feed(b"{}\n")

    def test_incomplete_utf8_at_end_is_replaced_not_raised(self):
        reassembler = Reassembler()
        reassembler.feed(b'{"response": "ok"}\n\xe6\xb5')
        assert reassembler.finish() == []
        assert reassembler.discarded == 1
