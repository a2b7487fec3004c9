"""Tests for the byte-budgeted log ring buffer."""

import random

from task_runner.log_buffer import (
    DEFAULT_MAX_LOG_BYTES,
    ITEM_OVERHEAD,
    MIN_LOG_BYTES,
    LogBuffer,
)


def _expected_bytes(buf: LogBuffer) -> int:
    return sum(len(item.text.encode("utf-8")) + ITEM_OVERHEAD for item in buf)


class TestAccounting:
    def test_empty(self):
        buf = LogBuffer()
        assert buf.total_bytes == 0
        assert len(buf) == 0
        assert buf.max_bytes == DEFAULT_MAX_LOG_BYTES

    def test_counts_utf8_bytes_plus_overhead(self):
        buf = LogBuffer(4096)
        buf.append("stdout", "héllo\n")
        assert buf.total_bytes == len("héllo\n".encode("utf-8")) + ITEM_OVERHEAD

    def test_randomized_appends_keep_exact_total(self):
        rng = random.Random(1234)
        alphabet = "abcdefghij\n✓ü漢"
        for budget in (1024, 2000, 8192):
            buf = LogBuffer(budget)
            for _ in range(500):
                size = rng.choice([0, 1, 7, 40, 300, 900, 1500])
                text = "".join(rng.choice(alphabet) for _ in range(size))
                buf.append(rng.choice(["stdout", "stderr"]), text)
                assert buf.total_bytes == _expected_bytes(buf)
                assert buf.total_bytes <= budget


class TestEviction:
    def test_overflow_keeps_most_recent(self):
        buf = LogBuffer(1024)
        for i in range(100):
            buf.append("stdout", f"line {i:03d}\n")
        assert buf.total_bytes <= 1024
        texts = [item.text for item in buf]
        assert texts[-1] == "line 099\n"
        assert "line 000\n" not in texts
        # Survivors are a contiguous, ordered suffix
        first = int(texts[0].split()[1])
        assert texts == [f"line {i:03d}\n" for i in range(first, 100)]

    def test_chunk_larger_than_budget_empties_buffer(self):
        buf = LogBuffer(1024)
        buf.append("stdout", "small\n")
        buf.append("stderr", "x" * 5000)
        assert len(buf) == 0
        assert buf.total_bytes == 0

    def test_budget_floor(self):
        assert LogBuffer(10).max_bytes == MIN_LOG_BYTES
        assert LogBuffer(MIN_LOG_BYTES + 1).max_bytes == MIN_LOG_BYTES + 1

    def test_streams_are_not_merged(self):
        buf = LogBuffer()
        buf.append("stdout", "a")
        buf.append("stderr", "b")
        buf.append("stdout", "c")
        assert [(i.stream, i.text) for i in buf] == [("stdout", "a"), ("stderr", "b"), ("stdout", "c")]


class TestSelect:
    def _five(self) -> LogBuffer:
        buf = LogBuffer()
        for i in range(5):
            buf.append("stdout", f"{i}\n")
        return buf

    def test_tail(self):
        assert [i.text for i in self._five().select(tail=2)] == ["3\n", "4\n"]

    def test_tail_larger_than_buffer(self):
        assert len(self._five().select(tail=50)) == 5

    def test_tail_zero_selects_nothing(self):
        assert self._five().select(tail=0) == []

    def test_offset(self):
        assert [i.text for i in self._five().select(offset=3)] == ["3\n", "4\n"]

    def test_offset_past_end(self):
        assert self._five().select(offset=9) == []

    def test_tail_wins_over_offset(self):
        assert [i.text for i in self._five().select(offset=0, tail=1)] == ["4\n"]

    def test_everything(self):
        assert len(self._five().select()) == 5
