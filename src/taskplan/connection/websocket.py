"""WebSocket connection to a remote operator.

One socket is shared by every task submitted through the connection.
Outgoing messages:

    {"type": "submit", "taskId": ..., "template": ..., "meta": ..., "input": ...}
    {"type": "cancel", "taskId": ...}

Incoming messages:

    {"type": "update", "taskId": ..., "event": {...}}

Updates are routed to the stream of the task they belong to.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import AsyncGenerator, Callable, Mapping
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from taskplan.errors import TransportError
from taskplan.run.events import UpdateEvent, parse_update_event

from .base import Connection, TemplateDocument, UpdateStream

LOGGER = logging.getLogger(__name__)


class WebSocketConnection(Connection):
    """Operator connection over a single WebSocket."""

    def __init__(
        self,
        url: str,
        *,
        open_timeout: float = 10.0,
        connect: Callable[..., Any] = websockets.connect,
    ) -> None:
        self.url = url
        self._open_timeout = open_timeout
        self._connect = connect
        self._ws: Any = None
        self._reader: asyncio.Task[None] | None = None
        self._queues: dict[str, asyncio.Queue[object]] = {}
        self._send_lock = asyncio.Lock()
        self._failure: TransportError | None = None

    @property
    def is_open(self) -> bool:
        return self._ws is not None and self._failure is None

    async def open(self) -> WebSocketConnection:
        LOGGER.info("Connecting to operator", extra={"url": self.url})
        try:
            self._ws = await self._connect(self.url, open_timeout=self._open_timeout)
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            raise TransportError(f"Cannot connect to operator at {self.url}: {exc}") from exc
        self._failure = None
        self._reader = asyncio.create_task(self._read_loop(), name="taskplan-ws-reader")
        return self

    async def _send(self, message: dict[str, Any]) -> None:
        if not self.is_open:
            raise self._failure or TransportError("WebSocket connection is not open")
        try:
            payload = json.dumps(message, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise TransportError(f"Message is not JSON serializable: {exc}") from exc
        LOGGER.debug("WebSocket send", extra={"message_type": message.get("type")})
        async with self._send_lock:
            try:
                await self._ws.send(payload)
            except WebSocketException as exc:
                raise TransportError(f"Failed to send to operator: {exc}") from exc

    def _dispatch(self, raw: str | bytes) -> None:
        if isinstance(raw, bytes):
            try:
                raw = raw.decode("utf-8")
            except UnicodeDecodeError:
                LOGGER.warning("Ignoring non-UTF-8 frame from operator")
                return
        try:
            message = json.loads(raw)
        except json.JSONDecodeError:
            LOGGER.warning("Ignoring non-JSON message from operator")
            return
        if not isinstance(message, dict) or message.get("type") != "update":
            LOGGER.debug("Ignoring operator message", extra={"raw": raw})
            return
        queue = self._queues.get(str(message.get("taskId")))
        if queue is None:
            LOGGER.debug("Update for unknown task", extra={"task_id": message.get("taskId")})
            return
        queue.put_nowait(message.get("event"))

    async def _read_loop(self) -> None:
        try:
            async for raw in self._ws:
                self._dispatch(raw)
            failure = TransportError("Operator closed the connection")
        except ConnectionClosed as exc:
            failure = TransportError(f"Operator connection lost: {exc}")
        except Exception as exc:
            LOGGER.exception("Operator reader crashed")
            failure = TransportError(f"Operator connection failed: {exc}")
        self._fail_all(failure)

    def _fail_all(self, failure: TransportError, *, level: int = logging.WARNING) -> None:
        LOGGER.log(level, str(failure), extra={"pending_tasks": len(self._queues)})
        self._failure = failure
        for queue in self._queues.values():
            queue.put_nowait(failure)

    async def submit(
        self,
        template: TemplateDocument,
        meta: Mapping[str, Any],
        input: Any,
        *,
        task_id: str,
    ) -> UpdateStream:
        queue: asyncio.Queue[object] = asyncio.Queue()
        self._queues[task_id] = queue
        try:
            await self._send(
                {
                    "type": "submit",
                    "taskId": task_id,
                    "template": template,
                    "meta": dict(meta),
                    "input": input,
                }
            )
        except TransportError:
            self._queues.pop(task_id, None)
            raise
        return self._stream(task_id, queue)

    async def _stream(
        self, task_id: str, queue: asyncio.Queue[object]
    ) -> AsyncGenerator[UpdateEvent, None]:
        finished = False
        try:
            while True:
                item = await queue.get()
                if isinstance(item, TransportError):
                    raise item
                event = parse_update_event(item)
                yield event
                if event.terminal:
                    finished = True
                    return
        finally:
            self._queues.pop(task_id, None)
            if not finished and self.is_open:
                try:
                    await self._send({"type": "cancel", "taskId": task_id})
                except TransportError:
                    LOGGER.warning("Could not forward cancellation", extra={"task_id": task_id})

    async def close(self) -> None:
        if self._reader is not None:
            self._reader.cancel()
            await asyncio.gather(self._reader, return_exceptions=True)
            self._reader = None
        if self._ws is not None:
            LOGGER.info("Closing operator connection", extra={"url": self.url})
            await self._ws.close()
            self._ws = None
        self._fail_all(TransportError("Connection closed by client"), level=logging.INFO)
