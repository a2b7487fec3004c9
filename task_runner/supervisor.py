"""Task Supervisor: spawns, tracks, signals and waits on child processes."""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
import uuid
from typing import Any

from task_runner.errors import (
    InvalidSignalError,
    LaunchError,
    NotRunningError,
    TaskNotFoundError,
    TaskWriteError,
)
from task_runner.formatter import format_log_items
from task_runner.log_buffer import DEFAULT_MAX_LOG_BYTES, LogBuffer, Stream
from task_runner.models import Task, TaskState

log = logging.getLogger(__name__)

DEFAULT_STOP_TIMEOUT_MS = 5000
DEFAULT_KILL_GRACE_MS = 1000
READ_CHUNK_SIZE = 4096
READER_DRAIN_TIMEOUT_S = 0.5
STREAM_LIMIT = 2**16


class _ExitNotifyingProtocol(asyncio.subprocess.SubprocessStreamProtocol):
    """Stream protocol that reports the process exit as soon as the OS does.

    ``Process.wait()`` only resolves once every pipe has closed as well, which
    never happens while a background grandchild keeps stdout open.
    """

    def __init__(self, limit: int, loop: asyncio.AbstractEventLoop) -> None:
        super().__init__(limit=limit, loop=loop)
        self.exited: asyncio.Future[int | None] = loop.create_future()

    def process_exited(self) -> None:
        returncode = self._transport.get_returncode() if self._transport else None
        super().process_exited()
        if not self.exited.done():
            self.exited.set_result(returncode)


def resolve_signal(name: str) -> signal.Signals:
    """Accept ``SIGTERM``, ``TERM``, ``sigterm`` or a signal number."""
    raw = name.strip()
    if raw.lstrip("-").isdigit():
        try:
            return signal.Signals(int(raw))
        except ValueError:
            raise InvalidSignalError(name) from None
    upper = raw.upper()
    if not upper.startswith("SIG"):
        upper = f"SIG{upper}"
    try:
        return signal.Signals[upper]
    except KeyError:
        raise InvalidSignalError(name) from None


class TaskSupervisor:
    """In-memory registry of tasks plus the operations that drive them.

    All state is mutated from the event loop that owns the supervisor, so
    output appends, the exit transition and waiter draining never interleave
    mid-update.
    """

    def __init__(
        self,
        default_max_log_bytes: int = DEFAULT_MAX_LOG_BYTES,
        stop_timeout_ms: int = DEFAULT_STOP_TIMEOUT_MS,
        kill_grace_ms: int = DEFAULT_KILL_GRACE_MS,
    ) -> None:
        self._tasks: dict[str, Task] = {}
        self.default_max_log_bytes = default_max_log_bytes
        self.stop_timeout_ms = stop_timeout_ms
        self.kill_grace_ms = kill_grace_ms

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    async def start(
        self,
        command: str,
        args: list[str] | None = None,
        cwd: str | None = None,
        env: dict[str, str] | None = None,
        name: str | None = None,
        max_log_bytes: int | None = None,
    ) -> Task:
        """Spawn a process and register it. Returns without waiting for output."""
        proc_args = list(args or [])

        # Merge environment
        spawn_env = os.environ.copy()
        if env:
            spawn_env.update(env)

        loop = asyncio.get_running_loop()
        try:
            transport, protocol = await loop.subprocess_exec(
                lambda: _ExitNotifyingProtocol(STREAM_LIMIT, loop),
                command,
                *proc_args,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=spawn_env,
                # Detach from the controller's terminal session
                start_new_session=True,
            )
        except (OSError, ValueError) as exc:
            raise LaunchError(f"Failed to start process: {exc}") from exc

        process = asyncio.subprocess.Process(transport, protocol, loop)
        if not process.pid:
            raise LaunchError("Failed to start process (no pid)")

        task = Task(
            id=uuid.uuid4().hex,
            command=command,
            args=proc_args,
            pid=process.pid,
            cwd=cwd,
            env=env,
            name=name,
            logs=LogBuffer(max_log_bytes or self.default_max_log_bytes),
            _process=process,
            _exited=protocol.exited,
        )

        # Background readers for stdout/stderr
        task._reader_tasks = [
            asyncio.create_task(
                self._read_stream(task, process.stdout, "stdout"),  # type: ignore[arg-type]
                name=f"{task.id}-stdout",
            ),
            asyncio.create_task(
                self._read_stream(task, process.stderr, "stderr"),  # type: ignore[arg-type]
                name=f"{task.id}-stderr",
            ),
        ]

        # Background waiter to record the exit
        task._exit_watcher = asyncio.create_task(self._watch_exit(task), name=f"{task.id}-exit")

        self._tasks[task.id] = task
        log.info("Started task %s (pid=%s): %s %s", task.id, task.pid, command, " ".join(proc_args))
        return task

    def get(self, task_id: str) -> Task:
        try:
            return self._tasks[task_id]
        except KeyError:
            raise TaskNotFoundError(task_id) from None

    def status(self, task_id: str) -> dict[str, Any]:
        return self.get(task_id).summary()

    def list_all(self) -> list[dict[str, Any]]:
        """Return summaries for every registered task, running or exited."""
        return [task.summary() for task in self._tasks.values()]

    def prune(self, include_running: bool = False) -> dict[str, int]:
        """Drop exited tasks from the registry; running ones too if asked.

        Pruned running tasks are not signalled. Their processes keep going,
        unmanaged.
        """
        removed = 0
        for task_id, task in list(self._tasks.items()):
            if task.state == TaskState.EXITED or include_running:
                del self._tasks[task_id]
                removed += 1
                if task.running:
                    log.info("Detached running task %s (pid=%s)", task_id, task.pid)
        return {"removed": removed, "remaining": len(self._tasks)}

    def terminate_all(self, sig: signal.Signals = signal.SIGTERM) -> int:
        """Send ``sig`` to every running task without waiting. Returns the count signalled."""
        sent = 0
        for task in self._tasks.values():
            if not task.running or task._process is None:
                continue
            if self._deliver(task, sig):
                sent += 1
        return sent

    # ------------------------------------------------------------------
    # Log access
    # ------------------------------------------------------------------

    def logs(
        self,
        task_id: str,
        offset: int | None = None,
        tail: int | None = None,
        include_timestamps: bool = True,
    ) -> dict[str, Any]:
        task = self.get(task_id)
        items = task.logs.select(offset=offset, tail=tail)
        return {
            "id": task.id,
            "state": task.state.value,
            "pid": task.pid,
            "exit_code": task.exit_code,
            "signal": task.signal,
            "log_item_count": len(task.logs),
            "returned_count": len(items),
            "text": format_log_items(items, include_timestamps),
        }

    # ------------------------------------------------------------------
    # Process control
    # ------------------------------------------------------------------

    async def write(self, task_id: str, data: str, add_newline: bool = False) -> None:
        """Write ``data`` to the task's stdin and wait until it is flushed."""
        task = self.get(task_id)
        proc = task._process
        if not task.running or proc is None or proc.stdin is None:
            raise NotRunningError(task_id)

        payload = data + "\n" if add_newline else data
        try:
            proc.stdin.write(payload.encode("utf-8"))
            await proc.stdin.drain()
        except (BrokenPipeError, ConnectionResetError, RuntimeError) as exc:
            raise TaskWriteError(f"Failed to write to task {task_id}: {exc}") from exc

    def send_signal(self, task_id: str, signal_name: str) -> dict[str, Any]:
        """Forward a signal. Signalling an exited task is reported, not raised."""
        task = self.get(task_id)
        sig = resolve_signal(signal_name)
        if not task.running or task._process is None:
            return {
                "ok": False,
                "id": task.id,
                "pid": task.pid,
                "signal": sig.name,
                "state": task.state.value,
                "message": "not running",
            }
        return {"ok": self._deliver(task, sig), "id": task.id, "pid": task.pid, "signal": sig.name}

    async def stop(self, task_id: str, timeout_ms: int | None = None) -> dict[str, Any]:
        """Stop a task. Sends SIGTERM, waits, then SIGKILL with a short grace.

        Always resolves with the current summary, even if the process has not
        reported its exit by the end of the grace period.
        """
        task = self.get(task_id)
        if not task.running:
            return task.summary()
        if timeout_ms is None:
            timeout_ms = self.stop_timeout_ms

        self._deliver(task, signal.SIGTERM)
        if not await self._wait_for_exit(task, timeout_ms / 1000):
            log.info("Task %s ignored SIGTERM for %dms, sending SIGKILL", task.id, timeout_ms)
            self._deliver(task, signal.SIGKILL)
            if not await self._wait_for_exit(task, self.kill_grace_ms / 1000):
                log.warning("Task %s (pid=%s) has not exited after SIGKILL", task.id, task.pid)

        return task.summary()

    async def wait(self, task_id: str, timeout_ms: int | None = None) -> dict[str, Any]:
        """Block until the task exits, or until ``timeout_ms`` elapses."""
        task = self.get(task_id)
        if task.state == TaskState.EXITED:
            return task.summary()

        if timeout_ms is None:
            await task.add_waiter()
            return task.summary()

        if await self._wait_for_exit(task, timeout_ms / 1000):
            return task.summary()
        return {"id": task.id, "state": task.state.value, "pid": task.pid, "timeout": True}

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _deliver(task: Task, sig: signal.Signals) -> bool:
        # Once the exit is reported the pid is reaped and may be reused
        if task._exited is None or task._exited.done():
            return False
        try:
            os.kill(task.pid, sig)
        except (ProcessLookupError, OSError) as exc:
            log.debug("Delivering %s to task %s failed: %s", sig.name, task.id, exc)
            return False
        return True

    @staticmethod
    async def _wait_for_exit(task: Task, timeout_s: float) -> bool:
        """Race the task's exit against a deadline. True if it exited first."""
        fut = task.add_waiter()
        done, _ = await asyncio.wait({fut}, timeout=max(0.0, timeout_s))
        if fut in done:
            return True
        fut.cancel()
        task.discard_waiter(fut)
        return False

    @staticmethod
    async def _read_stream(task: Task, stream: asyncio.StreamReader, name: Stream) -> None:
        """Copy chunks from an output pipe into the task's log buffer."""
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                chunk = await stream.read(READ_CHUNK_SIZE)
                if not chunk:
                    break
                text = decoder.decode(chunk)
                if text:
                    task.logs.append(name, text)
            rest = decoder.decode(b"", final=True)
            if rest:
                task.logs.append(name, rest)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            task.logs.append("stderr", f"Process error: {exc}\n")

    @staticmethod
    async def _watch_exit(task: Task) -> None:
        """Wait for the process to exit and publish the outcome once."""
        proc = task._process
        if proc is None or task._exited is None:
            return
        try:
            code = await task._exited
            # Take in what was flushed before the exit. A grandchild holding
            # the pipes open delays this by at most the drain timeout, and
            # its later output is still appended by the readers.
            await asyncio.wait(task._reader_tasks, timeout=READER_DRAIN_TIMEOUT_S)
        except Exception as exc:
            task.logs.append("stderr", f"Process error: {exc}\n")
            code = proc.returncode
        task.mark_exited(code)
        log.info(
            "Task %s (pid=%s) exited: code=%s signal=%s",
            task.id, task.pid, task.exit_code, task.signal,
        )
