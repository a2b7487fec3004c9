"""Run the task runner MCP server.

Usage:
    python -m task_runner [--transport stdio|http] [--host HOST] [--port PORT] [--env-file FILE]

Tasks live in memory for as long as this process does. On SIGINT/SIGTERM
(or when the stdio client goes away) every running task is sent SIGTERM
before the server exits; nothing waits for them to finish.
"""

import argparse
import asyncio
import contextlib
import dataclasses
import logging
import signal
from pathlib import Path

import uvicorn

from task_runner.config import TRANSPORTS, Config
from task_runner.server import create_server
from task_runner.supervisor import TaskSupervisor

log = logging.getLogger(__name__)


async def _run(config: Config) -> None:
    supervisor = TaskSupervisor(
        default_max_log_bytes=config.max_log_bytes,
        stop_timeout_ms=config.stop_timeout_ms,
        kill_grace_ms=config.kill_grace_ms,
    )
    server = create_server(supervisor=supervisor, host=config.host, port=config.port)

    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, shutdown.set)

    uvi: uvicorn.Server | None = None
    if config.transport == "http":
        # Run uvicorn in the same event loop so the supervisor's async
        # tasks (stream readers, exit watchers) stay alive.
        app = server.streamable_http_app()
        uvi = uvicorn.Server(
            uvicorn.Config(app, host=config.host, port=config.port, log_level="info")
        )
        # Use _serve() instead of serve() to bypass uvicorn's
        # capture_signals() context manager which overrides signal
        # handlers with signal.signal(), preventing our async
        # handlers from working.
        serve_task = asyncio.create_task(uvi._serve())
    else:
        serve_task = asyncio.create_task(server.run_stdio_async())

    shutdown_task = asyncio.create_task(shutdown.wait())
    await asyncio.wait({serve_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED)
    if shutdown.is_set():
        log.info("Signal received, shutting down")
    else:
        log.info("Transport closed, shutting down")

    sent = supervisor.terminate_all()
    if sent:
        log.info("Sent SIGTERM to %d running task(s)", sent)

    shutdown_task.cancel()
    if uvi is not None:
        uvi.should_exit = True
        await serve_task
    elif not serve_task.done():
        serve_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await serve_task


def main() -> None:
    parser = argparse.ArgumentParser(description="MCP task runner for long-running processes")
    parser.add_argument(
        "--transport", choices=TRANSPORTS, default=None,
        help="Transport protocol (default: $TASK_RUNNER_TRANSPORT or stdio)",
    )
    parser.add_argument("--host", default=None, help="Host to bind for http transport")
    parser.add_argument("--port", type=int, default=None, help="Port to bind for http transport")
    parser.add_argument(
        "--env-file", type=Path, default=None,
        help="Read TASK_RUNNER_* settings from this .env file",
    )
    args = parser.parse_args()

    config = Config.from_env(args.env_file)
    overrides = {
        key: value
        for key, value in (("transport", args.transport), ("host", args.host), ("port", args.port))
        if value is not None
    }
    if overrides:
        config = dataclasses.replace(config, **overrides)

    # stdout carries the stdio transport; logs go to stderr
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s [task-runner] %(levelname)s %(message)s",
    )

    # The MCP SDK logs a noisy full traceback when the HTTP client
    # disconnects before the response is sent (ClosedResourceError).
    # Downgrade it from ERROR to DEBUG.
    class _SuppressDisconnect(logging.Filter):
        def filter(self, record: logging.LogRecord) -> bool:
            if record.exc_info and record.exc_info[1] is not None:
                chain = str(record.exc_info[1])
                if "ClosedResourceError" in chain:
                    record.levelno = logging.DEBUG
                    record.levelname = "DEBUG"
                    record.msg = "Client disconnected before response completed"
                    record.exc_info = None
                    record.exc_text = None
            return True

    logging.getLogger("mcp.server.streamable_http_manager").addFilter(
        _SuppressDisconnect()
    )

    if config.transport == "http":
        log.info("Starting task-runner on http://%s:%d/mcp", config.host, config.port)
    else:
        log.info("Starting task-runner on stdio")
    asyncio.run(_run(config))


if __name__ == "__main__":
    main()
