from task_runner.formatter import format_log_items, format_timestamp
from task_runner.log_buffer import LogItem


def test_timestamp_is_iso_utc_with_millis():
    assert format_timestamp(0) == "1970-01-01T00:00:00.000Z"
    assert format_timestamp(1.5) == "1970-01-01T00:00:01.500Z"


def test_items_concatenate_without_separators():
    items = [
        LogItem(t=0, stream="stdout", text="hello\n"),
        LogItem(t=1.5, stream="stderr", text="oops"),
    ]
    assert format_log_items(items) == (
        "1970-01-01T00:00:00.000Z [stdout] hello\n"
        "1970-01-01T00:00:01.500Z [stderr] oops"
    )


def test_items_without_timestamps():
    items = [LogItem(t=0, stream="stdout", text="a\n"), LogItem(t=0, stream="stderr", text="b\n")]
    assert format_log_items(items, include_timestamps=False) == "[stdout] a\n[stderr] b\n"


def test_no_items():
    assert format_log_items([]) == ""
