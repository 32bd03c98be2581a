"""In-process operator.

LocalOperator executes templates against Python callables registered by
service name. It is the reference for how an operator treats a plan:

- a node receives the output of the node before it in its sequence (the
  task input for the first node); a sequence yields its last child's
  output, a parallel group the list of its children's outputs, a condition
  the output of the branch it took
- a service is attempted up to `maxAttempts` times; after the last failure
  a `failure` event is emitted and its failure policy applies
- a parallel group lets every child finish before propagating the first
  unguarded failure (in listed order)
- a false condition without an else branch halts the task cleanly: later
  nodes do not run and the task completes with the value that flowed into
  the condition
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import Any

from taskplan.errors import (
    ConditionEvaluationError,
    ReferenceResolutionError,
    ServiceExecutionError,
    TransportError,
    ValidationError,
)
from taskplan.run.events import (
    CompletedEvent,
    FailedEvent,
    FailureEvent,
    NodeStatus,
    ProgressEvent,
    ResultEvent,
    UpdateEvent,
)
from taskplan.template.expressions import resolve_configuration
from taskplan.template.nodes import (
    BranchOnFailure,
    ConditionNode,
    Node,
    ParallelNode,
    SequenceNode,
    ServiceNode,
    SkipOnFailure,
    Template,
)
from taskplan.template.serialization import template_from_json

from .base import Connection, TemplateDocument, UpdateStream

logger = logging.getLogger(__name__)

_NOT_RETRYABLE = {"ServiceNotFound", "ReferenceResolutionError"}


@dataclass(frozen=True, slots=True)
class ServiceCall:
    """What a service handler receives for one attempt."""

    name: str
    version_range: str
    configuration: Any
    input: Any
    attempt: int
    meta: Mapping[str, Any]


ServiceHandler = Callable[[ServiceCall], Any]
Emit = Callable[[UpdateEvent], None]


class _NodeFailed(Exception):
    def __init__(self, error_kind: str, message: str) -> None:
        super().__init__(message)
        self.error_kind = error_kind
        self.message = message


class _Halted(Exception):
    def __init__(self, value: Any) -> None:
        super().__init__("condition halted the task")
        self.value = value


class _Execution:
    """State of one task execution: produced outputs keyed by alias/name."""

    def __init__(
        self,
        services: Mapping[str, ServiceHandler],
        meta: Mapping[str, Any],
        emit: Emit,
        sleep: Callable[[float], Awaitable[None]],
    ) -> None:
        self._services = services
        self._meta = meta
        self._emit = emit
        self._sleep = sleep
        self.outputs: dict[str, Any] = {}

    async def run(self, node: Node, value: Any, location: str) -> Any:
        if isinstance(node, ServiceNode):
            return await self._run_service(node, value, location)
        if isinstance(node, SequenceNode):
            return await self.run_sequence(node.children, value, location)
        if isinstance(node, ParallelNode):
            return await self._run_parallel(node, value, location)
        if isinstance(node, ConditionNode):
            return await self._run_condition(node, value, location)
        raise TypeError(f"Not a template node: {node!r}")

    async def run_sequence(self, children: tuple[Node, ...], value: Any, location: str) -> Any:
        for index, child in enumerate(children):
            value = await self.run(child, value, f"{location}/{index}")
        return value

    async def _run_parallel(self, node: ParallelNode, value: Any, location: str) -> list[Any]:
        results = await asyncio.gather(
            *(self.run(child, value, f"{location}/{i}") for i, child in enumerate(node.children)),
            return_exceptions=True,
        )
        halted: _Halted | None = None
        for result in results:
            if isinstance(result, _Halted):
                halted = halted or result
            elif isinstance(result, BaseException):
                raise result
        if halted is not None:
            raise halted
        return list(results)

    async def _run_condition(self, node: ConditionNode, value: Any, location: str) -> Any:
        node_ref = f"condition:{location}"
        try:
            matched = node.expression.evaluate(self.outputs)
        except (ReferenceResolutionError, ConditionEvaluationError) as exc:
            kind = type(exc).__name__
            self._emit(FailureEvent(node_ref=node_ref, error_kind=kind, message=str(exc)))
            raise _NodeFailed(kind, f"{node_ref}: {exc}") from exc

        if matched:
            self._emit(ProgressEvent(node_ref=node_ref, status=NodeStatus.THEN.value))
            return await self.run(node.then_branch, value, f"{location}/then")
        if node.else_branch is not None:
            self._emit(ProgressEvent(node_ref=node_ref, status=NodeStatus.ELSE.value))
            return await self.run(node.else_branch, value, f"{location}/else")
        self._emit(ProgressEvent(node_ref=node_ref, status=NodeStatus.SKIPPED.value))
        raise _Halted(value)

    async def _invoke(self, node: ServiceNode, value: Any, attempt: int) -> Any:
        handler = self._services.get(node.name)
        if handler is None:
            raise ServiceExecutionError(
                f"No service named {node.name!r} is registered", error_kind="ServiceNotFound"
            )
        try:
            configuration = resolve_configuration(node.configuration, self.outputs)
        except ReferenceResolutionError as exc:
            raise ServiceExecutionError(str(exc), error_kind="ReferenceResolutionError") from exc

        call = ServiceCall(
            name=node.name,
            version_range=node.version_range,
            configuration=configuration,
            input=copy.deepcopy(value),
            attempt=attempt,
            meta=self._meta,
        )
        try:
            result = handler(call)
            if inspect.isawaitable(result):
                result = await result
        except ServiceExecutionError:
            raise
        except Exception as exc:
            raise ServiceExecutionError(f"{type(exc).__name__}: {exc}") from exc
        return result

    async def _run_service(self, node: ServiceNode, value: Any, location: str) -> Any:
        node_ref = node.key
        retry = node.retry
        attempts = retry.max_attempts if retry is not None else 1
        delay = retry.delay_millis / 1000 if retry is not None else 0.0

        self._emit(ProgressEvent(node_ref=node_ref, status=NodeStatus.STARTED.value))
        error: ServiceExecutionError | None = None
        for attempt in range(1, attempts + 1):
            if attempt > 1:
                self._emit(ProgressEvent(node_ref=node_ref, status=NodeStatus.RETRYING.value))
                await self._sleep(delay)
            try:
                result = await self._invoke(node, value, attempt)
            except ServiceExecutionError as exc:
                logger.info(
                    "Service attempt failed",
                    extra={"node_ref": node_ref, "attempt": attempt, "error": str(exc)},
                )
                error = exc
                if exc.error_kind in _NOT_RETRYABLE:
                    break
                continue
            self.outputs[node_ref] = result
            self._emit(ResultEvent(node_ref=node_ref, value=result))
            return result

        assert error is not None
        self._emit(
            FailureEvent(node_ref=node_ref, error_kind=error.error_kind, message=str(error))
        )
        policy = node.on_failure
        if isinstance(policy, SkipOnFailure):
            return value
        if isinstance(policy, BranchOnFailure):
            self._emit(ProgressEvent(node_ref=node_ref, status=NodeStatus.RECOVERING.value))
            result = await self.run(policy.node, value, f"{location}/onFailure")
            self.outputs[node_ref] = result
            return result
        raise _NodeFailed(error.error_kind, f"{node_ref}: {error}")


class LocalOperator:
    """Executes templates in-process against registered service handlers."""

    def __init__(
        self,
        services: Mapping[str, ServiceHandler] | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._services: dict[str, ServiceHandler] = dict(services or {})
        self._sleep = sleep

    def register(self, name: str, handler: ServiceHandler) -> None:
        self._services[name] = handler

    async def execute(
        self, template: Template, meta: Mapping[str, Any], input: Any, emit: Emit
    ) -> None:
        """Run `template`, reporting through `emit`; always ends with a terminal event."""

        execution = _Execution(self._services, meta, emit, self._sleep)
        try:
            final = await execution.run_sequence(template.nodes, input, "")
        except _Halted as halted:
            final = halted.value
        except _NodeFailed as failure:
            emit(FailedEvent(error_kind=failure.error_kind, message=failure.message))
            return
        except Exception as exc:
            logger.exception("Local operator crashed")
            emit(FailedEvent(error_kind="OperatorError", message=str(exc)))
            return
        emit(CompletedEvent(final_value=final))

    async def execute_document(
        self, document: TemplateDocument, meta: Mapping[str, Any], input: Any, emit: Emit
    ) -> None:
        try:
            template = template_from_json(document)
        except ValidationError as exc:
            emit(FailedEvent(error_kind="ValidationError", message=str(exc)))
            return
        await self.execute(template, meta, input, emit)


class LocalConnection(Connection):
    """Connection to a LocalOperator running on the current event loop."""

    def __init__(self, operator: LocalOperator | None = None) -> None:
        self.operator = operator or LocalOperator()
        self._tasks: set[asyncio.Task[None]] = set()
        self._closed = False

    async def submit(
        self,
        template: TemplateDocument,
        meta: Mapping[str, Any],
        input: Any,
        *,
        task_id: str,
    ) -> UpdateStream:
        if self._closed:
            raise TransportError("Connection is closed")

        queue: asyncio.Queue[UpdateEvent] = asyncio.Queue()
        task = asyncio.create_task(
            self.operator.execute_document(
                copy.deepcopy(template), dict(meta), copy.deepcopy(input), queue.put_nowait
            ),
            name=f"taskplan-local-{task_id}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        logger.debug("Local task started", extra={"task_id": task_id})
        return self._stream(task, queue)

    async def _stream(
        self, task: asyncio.Task[None], queue: asyncio.Queue[UpdateEvent]
    ) -> AsyncGenerator[UpdateEvent, None]:
        try:
            while True:
                event = await queue.get()
                yield event
                if event.terminal:
                    return
        finally:
            if not task.done():
                task.cancel()

    async def close(self) -> None:
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
