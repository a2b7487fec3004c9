"""MCP task runner: start, watch, feed, signal and stop long-running processes.

Exposes nine MCP tools:
  - task_start / task_status / task_list: launch and inspect tasks
  - task_logs:   read buffered, stream-tagged stdout/stderr items
  - task_write:  feed a running task's stdin
  - task_signal: forward a signal
  - task_stop:   SIGTERM, then SIGKILL after a timeout
  - task_wait:   block until exit, optionally with a timeout
  - task_prune:  forget exited (or all) tasks

Can run standalone:
    python -m task_runner
"""

from task_runner.errors import (
    InvalidSignalError,
    LaunchError,
    NotRunningError,
    TaskError,
    TaskNotFoundError,
    TaskWriteError,
)
from task_runner.server import create_server
from task_runner.supervisor import TaskSupervisor

__version__ = "0.1.0"

__all__ = [
    "InvalidSignalError",
    "LaunchError",
    "NotRunningError",
    "TaskError",
    "TaskNotFoundError",
    "TaskSupervisor",
    "TaskWriteError",
    "create_server",
]
