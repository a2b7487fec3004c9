"""MCP Server exposing task lifecycle tools over stdio or HTTP."""

from __future__ import annotations

from typing import Annotated, Any

from mcp.server.fastmcp import FastMCP
from mcp.server.fastmcp.exceptions import ToolError
from pydantic import Field

from task_runner.config import DEFAULT_PORT
from task_runner.errors import TaskError
from task_runner.log_buffer import MIN_LOG_BYTES
from task_runner.supervisor import TaskSupervisor

TaskId = Annotated[str, Field(min_length=1, description="Task id returned by task_start")]


def create_server(
    supervisor: TaskSupervisor | None = None,
    host: str = "127.0.0.1",
    port: int = DEFAULT_PORT,
) -> FastMCP:
    """Create and configure the MCP task runner server."""

    sv = supervisor or TaskSupervisor()

    mcp = FastMCP(
        name="task-runner-mcp",
        instructions=(
            "Runs long-lived child processes on the host. "
            "Use task_start to launch a command, task_logs to read its output, "
            "task_write to feed stdin, task_wait or task_stop to finish it, "
            "and task_prune to forget exited tasks."
        ),
        host=host,
        port=port,
        stateless_http=True,
    )

    # ------------------------------------------------------------------
    # Tool: task_start
    # ------------------------------------------------------------------
    @mcp.tool()
    async def task_start(
        command: Annotated[str, Field(min_length=1, description="Executable/command to run")],
        args: Annotated[list[str] | None, Field(description="Arguments")] = None,
        cwd: Annotated[str | None, Field(description="Working directory")] = None,
        env: Annotated[dict[str, str] | None, Field(description="Environment overrides")] = None,
        name: Annotated[str | None, Field(description="Human-friendly name")] = None,
        max_log_bytes: Annotated[
            int | None,
            Field(ge=MIN_LOG_BYTES, description="Max in-memory log bytes (default 1 MiB)"),
        ] = None,
    ) -> dict[str, Any]:
        """Start a command as a background task and return its id immediately.

        The command is executed directly (no shell). Environment overrides are
        merged over the server's own environment.
        """
        try:
            task = await sv.start(
                command=command,
                args=args,
                cwd=cwd,
                env=env,
                name=name,
                max_log_bytes=max_log_bytes,
            )
        except TaskError as exc:
            raise ToolError(str(exc)) from exc
        return {"id": task.id, "pid": task.pid, "state": task.state.value}

    # ------------------------------------------------------------------
    # Tool: task_status
    # ------------------------------------------------------------------
    @mcp.tool()
    async def task_status(id: TaskId) -> dict[str, Any]:
        """Get a task's summary: pid, state, exit code, signal and log usage."""
        try:
            return sv.status(id)
        except TaskError as exc:
            raise ToolError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Tool: task_list
    # ------------------------------------------------------------------
    @mcp.tool()
    async def task_list() -> dict[str, Any]:
        """List every registered task, running or exited."""
        tasks = sv.list_all()
        return {"count": len(tasks), "tasks": tasks}

    # ------------------------------------------------------------------
    # Tool: task_logs
    # ------------------------------------------------------------------
    @mcp.tool()
    async def task_logs(
        id: TaskId,
        offset: Annotated[int | None, Field(ge=0, description="Log item offset (0-based)")] = None,
        tail: Annotated[int | None, Field(ge=0, description="Return last N log items")] = None,
        include_timestamps: Annotated[
            bool, Field(description="Prefix each item with its ISO timestamp")
        ] = True,
    ) -> dict[str, Any]:
        """Read buffered stdout/stderr items for a task.

        ``tail`` takes precedence over ``offset``. Each item is rendered as
        ``<timestamp> [<stream>] <text>``.
        """
        try:
            return sv.logs(id, offset=offset, tail=tail, include_timestamps=include_timestamps)
        except TaskError as exc:
            raise ToolError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Tool: task_write
    # ------------------------------------------------------------------
    @mcp.tool()
    async def task_write(
        id: TaskId,
        data: Annotated[str, Field(description="Data to write to stdin")],
        add_newline: Annotated[bool, Field(description="Append a newline")] = False,
    ) -> dict[str, Any]:
        """Write data to a running task's stdin."""
        try:
            await sv.write(id, data, add_newline=add_newline)
        except TaskError as exc:
            raise ToolError(str(exc)) from exc
        return {"ok": True, "id": id}

    # ------------------------------------------------------------------
    # Tool: task_signal
    # ------------------------------------------------------------------
    @mcp.tool()
    async def task_signal(
        id: TaskId,
        signal: Annotated[str, Field(min_length=1, description="Signal (e.g. SIGTERM, SIGKILL, SIGINT)")],
    ) -> dict[str, Any]:
        """Send a signal to a task. Reports ``not running`` for exited tasks."""
        try:
            return sv.send_signal(id, signal)
        except TaskError as exc:
            raise ToolError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Tool: task_stop
    # ------------------------------------------------------------------
    @mcp.tool()
    async def task_stop(
        id: TaskId,
        timeout_ms: Annotated[
            int | None, Field(ge=0, description="Wait after SIGTERM before SIGKILL (default 5000ms)")
        ] = None,
    ) -> dict[str, Any]:
        """Stop a task: SIGTERM, then SIGKILL if it is still alive after ``timeout_ms``.

        Returns the task summary; check ``state`` to see whether it exited.
        """
        try:
            return await sv.stop(id, timeout_ms=timeout_ms)
        except TaskError as exc:
            raise ToolError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Tool: task_wait
    # ------------------------------------------------------------------
    @mcp.tool()
    async def task_wait(
        id: TaskId,
        timeout_ms: Annotated[
            int | None, Field(ge=0, description="Timeout ms (omit to wait indefinitely)")
        ] = None,
    ) -> dict[str, Any]:
        """Wait for a task to exit. On timeout returns ``{"timeout": true, ...}``."""
        try:
            return await sv.wait(id, timeout_ms=timeout_ms)
        except TaskError as exc:
            raise ToolError(str(exc)) from exc

    # ------------------------------------------------------------------
    # Tool: task_prune
    # ------------------------------------------------------------------
    @mcp.tool()
    async def task_prune(
        include_running: Annotated[
            bool,
            Field(description="Also remove running tasks from the registry (does NOT stop them)"),
        ] = False,
    ) -> dict[str, int]:
        """Remove exited tasks from the registry."""
        return sv.prune(include_running=include_running)

    return mcp
