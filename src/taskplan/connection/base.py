"""Connection abstractions between a producer and an operator."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Mapping
from typing import Any, Protocol, TypeAlias

from taskplan.run.events import UpdateEvent

TemplateDocument: TypeAlias = dict[str, Any] | list[dict[str, Any]]


class UpdateStream(Protocol):
    """Ordered updates for one submitted task. Async generators satisfy this."""

    def __aiter__(self) -> AsyncIterator[UpdateEvent]: ...

    async def __anext__(self) -> UpdateEvent: ...

    async def aclose(self) -> None: ...


class Connection(ABC):
    """A channel to one operator, shared by every task run of a producer.

    Implementations must keep concurrent submissions independent: events of
    one task are never delivered to another task's stream.
    """

    @abstractmethod
    async def submit(
        self,
        template: TemplateDocument,
        meta: Mapping[str, Any],
        input: Any,
        *,
        task_id: str,
    ) -> UpdateStream:
        """Submit a compiled template and return its update stream.

        Closing the stream before a terminal event asks the operator to
        cancel the task.

        Raises:
            TransportError: If the submission cannot be delivered.
        """

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying transport."""

    async def __aenter__(self) -> Connection:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
