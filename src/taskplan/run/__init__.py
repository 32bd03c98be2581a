"""Task runs: update events, run state and the runner."""

from taskplan.run.events import (
    CompletedEvent,
    FailedEvent,
    FailureEvent,
    NodeStatus,
    ProgressEvent,
    ResultEvent,
    UpdateEvent,
    parse_update_event,
)
from taskplan.run.runner import TaskOutcome, TaskRun, TaskRunner
from taskplan.run.state import TaskState

__all__ = [
    "CompletedEvent",
    "FailedEvent",
    "FailureEvent",
    "NodeStatus",
    "ProgressEvent",
    "ResultEvent",
    "TaskOutcome",
    "TaskRun",
    "TaskRunner",
    "TaskState",
    "UpdateEvent",
    "parse_update_event",
]
