"""Errors raised by the task supervisor."""

from __future__ import annotations


class TaskError(Exception):
    """Base class for task lifecycle failures surfaced to the caller."""


class TaskNotFoundError(TaskError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task not found: {task_id}")
        self.task_id = task_id


class NotRunningError(TaskError):
    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task is not running: {task_id}")
        self.task_id = task_id


class LaunchError(TaskError):
    """The child process could not be spawned."""


class TaskWriteError(TaskError):
    """Writing to a task's stdin failed."""


class InvalidSignalError(TaskError):
    def __init__(self, name: str) -> None:
        super().__init__(f"Unknown signal: {name}")
        self.signal_name = name
