"""Byte-budgeted ring buffer for captured task output."""

from __future__ import annotations

import time
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Literal

Stream = Literal["stdout", "stderr"]

DEFAULT_MAX_LOG_BYTES = 1024 * 1024  # 1 MiB
MIN_LOG_BYTES = 1024
ITEM_OVERHEAD = 16  # bytes charged per item on top of its text


@dataclass(frozen=True)
class LogItem:
    """One chunk of output as it was read from a stream."""

    t: float
    stream: Stream
    text: str

    @property
    def cost(self) -> int:
        return len(self.text.encode("utf-8")) + ITEM_OVERHEAD


@dataclass
class LogBuffer:
    """Ordered log items, evicted oldest-first once over ``max_bytes``.

    ``total_bytes`` is kept in step with every push and eviction so it always
    equals the summed cost of the retained items.
    """

    max_bytes: int = DEFAULT_MAX_LOG_BYTES
    _items: deque[LogItem] = field(default_factory=deque)
    _total_bytes: int = 0

    def __post_init__(self) -> None:
        self.max_bytes = max(MIN_LOG_BYTES, int(self.max_bytes))

    def append(self, stream: Stream, text: str) -> LogItem:
        item = LogItem(t=time.time(), stream=stream, text=text)
        self._items.append(item)
        self._total_bytes += item.cost
        # A chunk larger than the whole budget evicts everything, itself included
        while self._total_bytes > self.max_bytes and self._items:
            evicted = self._items.popleft()
            self._total_bytes -= evicted.cost
        return item

    @property
    def total_bytes(self) -> int:
        return self._total_bytes

    def select(self, offset: int | None = None, tail: int | None = None) -> list[LogItem]:
        """Pick items by ``tail`` (last N) or ``offset`` (from index); tail wins."""
        items = list(self._items)
        if tail is not None:
            return items[max(0, len(items) - tail):]
        if offset is not None:
            return items[offset:]
        return items

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self) -> Iterator[LogItem]:
        return iter(self._items)
