"""Task submission and update consumption.

A TaskRun reads its update stream exactly once, through a single internal
reader, and offers two ways to consume it:

    outcome = await runner.run(on_update=print)   # callback, then outcome

    run = runner.run()
    async for event in run:                       # lazy pull, once
        ...
    outcome = await run                           # same outcome

Both can be combined on the same run. Each event reaches the callback once
and the iterator once, in emission order, whichever side drives the reads.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from collections.abc import AsyncIterator, Awaitable, Callable, Generator, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from taskplan.errors import TransportError
from taskplan.run.events import CompletedEvent, FailedEvent, UpdateEvent
from taskplan.run.state import TaskState, transition
from taskplan.template.builder import TemplateBuilder
from taskplan.template.nodes import Template
from taskplan.template.serialization import template_to_json

if TYPE_CHECKING:
    from taskplan.connection.base import Connection, UpdateStream

logger = logging.getLogger(__name__)

UpdateCallback = Callable[[UpdateEvent], None]


async def _read_next(stream: UpdateStream) -> UpdateEvent | None:
    try:
        return await anext(stream)
    except StopAsyncIteration:
        return None


@dataclass(frozen=True, slots=True)
class TaskOutcome:
    """Terminal settlement of a task run."""

    ok: bool
    value: Any = None
    error_kind: str | None = None
    message: str = ""

    @classmethod
    def from_event(cls, event: CompletedEvent | FailedEvent) -> TaskOutcome:
        if isinstance(event, CompletedEvent):
            return cls(ok=True, value=event.final_value)
        return cls(ok=False, error_kind=event.error_kind, message=event.message)


class TaskRun:
    """One submission of a template; awaitable and (once) async-iterable."""

    def __init__(
        self,
        submit: Callable[[], Awaitable[UpdateStream]],
        *,
        task_id: str,
        on_update: UpdateCallback | None = None,
    ) -> None:
        self.task_id = task_id
        self._submit = submit
        self._on_update = on_update
        self._state = TaskState.PENDING
        self._stream: UpdateStream | None = None
        self._read: asyncio.Future[UpdateEvent | None] | None = None
        self._lock = asyncio.Lock()
        self._events: list[UpdateEvent] = []
        self._cursor = 0
        self._iterated = False
        self._cancel_reason: str | None = None
        self._outcome: TaskOutcome | None = None

    @property
    def state(self) -> TaskState:
        return self._state

    @property
    def done(self) -> bool:
        return self._outcome is not None

    @property
    def outcome(self) -> TaskOutcome | None:
        return self._outcome

    @property
    def events(self) -> tuple[UpdateEvent, ...]:
        """Every event received so far, in emission order."""

        return tuple(self._events)

    def _record(self, event: UpdateEvent) -> None:
        if self._outcome is not None:
            logger.warning(
                "Dropping update received after terminal event",
                extra={"task_id": self.task_id, "event_type": event.type},
            )
            return

        if isinstance(event, CompletedEvent):
            target = TaskState.COMPLETED
        elif isinstance(event, FailedEvent):
            target = TaskState.FAILED
        else:
            target = TaskState.RUNNING
        self._state = transition(current=self._state, to=target)
        self._events.append(event)
        if isinstance(event, (CompletedEvent, FailedEvent)):
            self._outcome = TaskOutcome.from_event(event)
            logger.info(
                "Task settled",
                extra={"task_id": self.task_id, "state": self._state.value},
            )

        if self._on_update is not None:
            self._on_update(event)

    async def _close_stream(self) -> None:
        stream, self._stream = self._stream, None
        if stream is None:
            return
        try:
            await stream.aclose()
        except TransportError:
            logger.warning("Failed to close update stream", extra={"task_id": self.task_id})

    async def _settle_cancelled(self) -> None:
        if self._outcome is not None:
            return
        logger.info("Cancelling task", extra={"task_id": self.task_id})
        try:
            self._record(FailedEvent(error_kind="Cancelled", message=self._cancel_reason or ""))
        finally:
            await self._close_stream()

    async def _advance(self) -> None:
        """Read (and record) one more event from the stream."""

        async with self._lock:
            if self._outcome is not None:
                return
            if self._cancel_reason is not None:
                await self._settle_cancelled()
                return
            if self._stream is None:
                try:
                    self._stream = await self._submit()
                except TransportError as exc:
                    self._record(FailedEvent(error_kind="TransportError", message=str(exc)))
                    return
                self._state = transition(current=self._state, to=TaskState.SUBMITTED)
                logger.info("Task submitted", extra={"task_id": self.task_id})
                if self._cancel_reason is not None:
                    await self._settle_cancelled()
                    return

            self._read = asyncio.ensure_future(_read_next(self._stream))
            try:
                received = await self._read
                event = received if received is not None else FailedEvent(
                    error_kind="TransportError",
                    message="Update stream ended before a terminal event",
                )
            except TransportError as exc:
                event = FailedEvent(error_kind="TransportError", message=str(exc))
            except asyncio.CancelledError:
                if self._cancel_reason is None:
                    raise
                await self._settle_cancelled()
                return
            finally:
                self._read = None

            try:
                self._record(event)
            finally:
                # The stream is released even when the update callback raises.
                if self._outcome is not None:
                    await self._close_stream()

    async def wait(self) -> TaskOutcome:
        """Drive the stream to its terminal event and return the outcome."""

        while self._outcome is None:
            await self._advance()
        return self._outcome

    def __await__(self) -> Generator[Any, None, TaskOutcome]:
        return self.wait().__await__()

    def __aiter__(self) -> AsyncIterator[UpdateEvent]:
        if self._iterated:
            raise RuntimeError(f"Updates of task {self.task_id} can only be iterated once")
        self._iterated = True
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[UpdateEvent]:
        while True:
            while self._cursor >= len(self._events):
                if self._outcome is not None:
                    return
                await self._advance()
            event = self._events[self._cursor]
            self._cursor += 1
            yield event

    async def cancel(self, reason: str = "Cancelled by client") -> TaskOutcome:
        """Stop the run; settles with a `Failed{errorKind: "Cancelled"}` event.

        A run that already settled keeps its outcome.
        """

        if self._outcome is not None:
            return self._outcome
        self._cancel_reason = reason
        if self._read is not None and not self._read.done():
            self._read.cancel()
        async with self._lock:
            await self._settle_cancelled()
        assert self._outcome is not None
        return self._outcome


class TaskRunner:
    """Binds a validated template to its input and metadata.

    Validation happens here, so `run()` never raises for structural problems.
    """

    def __init__(
        self,
        connection: Connection,
        template: Template | TemplateBuilder,
        *,
        input: Any = None,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        if isinstance(template, TemplateBuilder):
            template = template.build()
        self._connection = connection
        self.template = template
        self.document = template_to_json(template)
        self.input = copy.deepcopy(input)
        self.meta: dict[str, Any] = dict(meta or {})

    def run(self, on_update: UpdateCallback | None = None) -> TaskRun:
        """Start a new run. Await the result for the outcome or iterate it for updates."""

        task_id = uuid.uuid4().hex

        async def submit() -> UpdateStream:
            logger.debug("Submitting template", extra={"task_id": task_id})
            return await self._connection.submit(
                self.document, self.meta, self.input, task_id=task_id
            )

        return TaskRun(submit, task_id=task_id, on_update=on_update)
