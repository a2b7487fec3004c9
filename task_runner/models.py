from __future__ import annotations

import asyncio
import signal
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from task_runner.log_buffer import DEFAULT_MAX_LOG_BYTES, LogBuffer


class TaskState(str, Enum):
    RUNNING = "running"
    EXITED = "exited"


def signal_name(returncode: int) -> str | None:
    """Map a negative subprocess return code to its signal name."""
    if returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"SIG{-returncode}"


@dataclass
class Task:
    """One spawned process, its launch parameters and captured output."""

    id: str
    command: str
    args: list[str]
    pid: int
    cwd: str | None = None
    env: dict[str, str] | None = None
    name: str | None = None
    state: TaskState = TaskState.RUNNING
    exit_code: int | None = None
    signal: str | None = None
    created_at: float = field(default_factory=time.time)
    logs: LogBuffer = field(default_factory=lambda: LogBuffer(DEFAULT_MAX_LOG_BYTES))
    _process: asyncio.subprocess.Process | None = field(default=None, repr=False)
    _exited: asyncio.Future[int | None] | None = field(default=None, repr=False)
    _reader_tasks: list[asyncio.Task[None]] = field(default_factory=list, repr=False)
    _exit_watcher: asyncio.Task[None] | None = field(default=None, repr=False)
    _waiters: list[asyncio.Future[Task]] = field(default_factory=list, repr=False)

    @property
    def running(self) -> bool:
        return self.state == TaskState.RUNNING

    # ------------------------------------------------------------------
    # Exit notification
    # ------------------------------------------------------------------

    def add_waiter(self) -> asyncio.Future[Task]:
        """Return a future resolved with this task once it has exited."""
        fut: asyncio.Future[Task] = asyncio.get_running_loop().create_future()
        if self.state == TaskState.EXITED:
            fut.set_result(self)
        else:
            self._waiters.append(fut)
        return fut

    def discard_waiter(self, fut: asyncio.Future[Task]) -> None:
        try:
            self._waiters.remove(fut)
        except ValueError:
            pass

    def mark_exited(self, returncode: int | None) -> None:
        """Record the final outcome and resolve every pending waiter once."""
        if self.state == TaskState.EXITED:
            return
        self.state = TaskState.EXITED
        if returncode is not None:
            self.signal = signal_name(returncode)
            self.exit_code = None if self.signal else returncode
        waiters, self._waiters = self._waiters, []
        for fut in waiters:
            if not fut.done():
                fut.set_result(self)

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "command": self.command,
            "args": list(self.args),
            "cwd": self.cwd,
            "pid": self.pid,
            "state": self.state.value,
            "exit_code": self.exit_code,
            "signal": self.signal,
            "created_at": self.created_at,
            "log_bytes": self.logs.total_bytes,
            "max_log_bytes": self.logs.max_bytes,
        }
