import asyncio
import signal
import sys

import pytest

from task_runner.models import TaskState
from task_runner.supervisor import TaskSupervisor

PYTHON = sys.executable

# Installs a no-op SIGTERM handler, announces itself, then idles.
IGNORE_SIGTERM = (
    "import signal, time\n"
    "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
    "print('ready', flush=True)\n"
    "time.sleep(30)\n"
)

SLEEPER = "import time; print('ready', flush=True); time.sleep(30)"


async def wait_for_output(sv: TaskSupervisor, task_id: str, needle: str, timeout: float = 5.0) -> str:
    """Poll a task's logs until ``needle`` shows up."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        text = sv.logs(task_id, include_timestamps=False)["text"]
        if needle in text:
            return text
        if loop.time() > deadline:
            raise AssertionError(f"{needle!r} not seen in output: {text!r}")
        await asyncio.sleep(0.02)


@pytest.fixture()
async def supervisor():
    sv = TaskSupervisor(kill_grace_ms=2000)
    yield sv
    sv.terminate_all(signal.SIGKILL)
    for summary in sv.list_all():
        if summary["state"] == TaskState.RUNNING.value:
            await sv.wait(summary["id"], timeout_ms=5000)
