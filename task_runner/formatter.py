"""Text rendering for captured task output."""

from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime, timezone

from task_runner.log_buffer import LogItem


def format_timestamp(t: float) -> str:
    """ISO-8601 in UTC with millisecond precision, e.g. ``2024-05-01T12:00:00.123Z``."""
    stamp = datetime.fromtimestamp(t, tz=timezone.utc)
    return stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def format_log_item(item: LogItem, include_timestamps: bool = True) -> str:
    if include_timestamps:
        return f"{format_timestamp(item.t)} [{item.stream}] {item.text}"
    return f"[{item.stream}] {item.text}"


def format_log_items(items: Iterable[LogItem], include_timestamps: bool = True) -> str:
    """Concatenate rendered items; chunks carry their own newlines."""
    return "".join(format_log_item(item, include_timestamps) for item in items)
