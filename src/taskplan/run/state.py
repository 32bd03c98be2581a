from __future__ import annotations

from enum import Enum


class TaskState(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.COMPLETED, TaskState.FAILED)


ALLOWED_TRANSITIONS: dict[TaskState, set[TaskState]] = {
    TaskState.PENDING: {TaskState.SUBMITTED, TaskState.FAILED},
    TaskState.SUBMITTED: {TaskState.RUNNING, TaskState.COMPLETED, TaskState.FAILED},
    TaskState.RUNNING: {TaskState.COMPLETED, TaskState.FAILED},
    TaskState.COMPLETED: set(),
    TaskState.FAILED: set(),
}


class IllegalTransitionError(ValueError):
    pass


def transition(*, current: TaskState, to: TaskState) -> TaskState:
    if to is current and to is TaskState.RUNNING:
        return current
    allowed = ALLOWED_TRANSITIONS.get(current, set())
    if to not in allowed:
        raise IllegalTransitionError(f"Illegal transition: {current.value} -> {to.value}")
    return to
