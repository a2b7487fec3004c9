from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from task_runner.log_buffer import DEFAULT_MAX_LOG_BYTES, MIN_LOG_BYTES
from task_runner.supervisor import DEFAULT_KILL_GRACE_MS, DEFAULT_STOP_TIMEOUT_MS

log = logging.getLogger(__name__)

TRANSPORTS = ("stdio", "http")

# Default port for the HTTP transport
DEFAULT_PORT = 8902


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        log.warning("Ignoring non-integer %s=%r, using %d", name, value, default)
        return default


@dataclass(frozen=True)
class Config:
    transport: str = "stdio"
    host: str = "127.0.0.1"
    port: int = DEFAULT_PORT
    max_log_bytes: int = DEFAULT_MAX_LOG_BYTES
    stop_timeout_ms: int = DEFAULT_STOP_TIMEOUT_MS
    kill_grace_ms: int = DEFAULT_KILL_GRACE_MS
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env_path: str | Path | None = None) -> Config:
        load_dotenv(env_path)

        transport = os.getenv("TASK_RUNNER_TRANSPORT", "stdio").strip().lower()
        if transport not in TRANSPORTS:
            raise ValueError(
                f"TASK_RUNNER_TRANSPORT must be one of {', '.join(TRANSPORTS)}, got {transport!r}"
            )

        return cls(
            transport=transport,
            host=os.getenv("TASK_RUNNER_HOST", "127.0.0.1"),
            port=_env_int("TASK_RUNNER_PORT", DEFAULT_PORT),
            max_log_bytes=max(MIN_LOG_BYTES, _env_int("TASK_RUNNER_MAX_LOG_BYTES", DEFAULT_MAX_LOG_BYTES)),
            stop_timeout_ms=max(0, _env_int("TASK_RUNNER_STOP_TIMEOUT_MS", DEFAULT_STOP_TIMEOUT_MS)),
            kill_grace_ms=max(0, _env_int("TASK_RUNNER_KILL_GRACE_MS", DEFAULT_KILL_GRACE_MS)),
            log_level=os.getenv("TASK_RUNNER_LOG_LEVEL", "INFO").upper(),
        )
