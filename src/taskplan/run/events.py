"""Update events emitted by an operator while a task runs."""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Any, ClassVar, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from taskplan.errors import TransportError


class NodeStatus(str, Enum):
    STARTED = "started"
    RETRYING = "retrying"
    RECOVERING = "recovering"
    SKIPPED = "skipped"
    THEN = "then"
    ELSE = "else"


class _Event(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    terminal: ClassVar[bool] = False

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class ProgressEvent(_Event):
    type: Literal["progress"] = "progress"
    node_ref: str = Field(alias="nodeRef")
    status: str


class ResultEvent(_Event):
    type: Literal["result"] = "result"
    node_ref: str = Field(alias="nodeRef")
    value: Any = None


class FailureEvent(_Event):
    """A node failed. Not terminal: the node's failure policy decides what follows."""

    type: Literal["failure"] = "failure"
    node_ref: str = Field(alias="nodeRef")
    error_kind: str = Field(alias="errorKind")
    message: str = ""


class CompletedEvent(_Event):
    type: Literal["completed"] = "completed"
    final_value: Any = Field(default=None, alias="finalValue")
    terminal: ClassVar[bool] = True


class FailedEvent(_Event):
    type: Literal["failed"] = "failed"
    error_kind: str = Field(alias="errorKind")
    message: str = ""
    terminal: ClassVar[bool] = True


UpdateEvent = Annotated[
    ProgressEvent | ResultEvent | FailureEvent | CompletedEvent | FailedEvent,
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[UpdateEvent] = TypeAdapter(UpdateEvent)


def parse_update_event(raw: object) -> UpdateEvent:
    """Decode an operator message; malformed payloads are transport errors."""

    try:
        return _EVENT_ADAPTER.validate_python(raw)
    except PydanticValidationError as exc:
        raise TransportError(f"Malformed update event: {exc}") from exc
