"""WebSocket connection tests against an in-memory socket."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import pytest

from taskplan.connection.factory import connect
from taskplan.connection.local import LocalConnection
from taskplan.connection.websocket import WebSocketConnection
from taskplan.errors import TransportError
from taskplan.run.events import CompletedEvent, ProgressEvent
from taskplan.run.runner import TaskOutcome, TaskRunner
from taskplan.template.builder import TemplateBuilder

_DOCUMENT = {"type": "service", "name": "s1", "versionRange": "*"}


class FakeSocket:
    """Minimal stand-in for a websockets client connection."""

    def __init__(self, reply: list[dict[str, Any]] | None = None) -> None:
        self.sent: list[dict[str, Any]] = []
        self.incoming: asyncio.Queue[Any] = asyncio.Queue()
        self.closed = False
        self.reply = reply

    def push(self, task_id: str, event: dict[str, Any]) -> None:
        self.incoming.put_nowait(json.dumps({"type": "update", "taskId": task_id, "event": event}))

    def hang_up(self) -> None:
        self.incoming.put_nowait(None)

    async def send(self, payload: str) -> None:
        message = json.loads(payload)
        self.sent.append(message)
        if message["type"] == "submit" and self.reply is not None:
            for event in self.reply:
                self.push(message["taskId"], event)

    def __aiter__(self) -> FakeSocket:
        return self

    async def __anext__(self) -> Any:
        item = await self.incoming.get()
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self) -> None:
        self.closed = True


async def _open(socket: FakeSocket) -> WebSocketConnection:
    async def fake_connect(url: str, *, open_timeout: float) -> FakeSocket:
        return socket

    return await WebSocketConnection("ws://operator.test/tasks", connect=fake_connect).open()


@pytest.mark.asyncio
async def test_submit_sends_the_envelope() -> None:
    socket = FakeSocket()
    connection = await _open(socket)

    await connection.submit(_DOCUMENT, {"owner": "ops"}, {"id": 7}, task_id="t1")

    assert socket.sent == [
        {
            "type": "submit",
            "taskId": "t1",
            "template": _DOCUMENT,
            "meta": {"owner": "ops"},
            "input": {"id": 7},
        }
    ]
    await connection.close()
    assert socket.closed


@pytest.mark.asyncio
async def test_updates_are_routed_by_task_id() -> None:
    socket = FakeSocket()
    connection = await _open(socket)
    first = await connection.submit(_DOCUMENT, {}, None, task_id="t1")
    second = await connection.submit(_DOCUMENT, {}, None, task_id="t2")

    socket.incoming.put_nowait("not json")
    socket.push("unknown", {"type": "completed", "finalValue": None})
    socket.push("t2", {"type": "progress", "nodeRef": "s1", "status": "started"})
    socket.push("t1", {"type": "completed", "finalValue": 1})
    socket.push("t2", {"type": "completed", "finalValue": 2})

    assert await anext(first) == CompletedEvent(final_value=1)
    assert await anext(second) == ProgressEvent(node_ref="s1", status="started")
    assert await anext(second) == CompletedEvent(final_value=2)
    await connection.close()


@pytest.mark.asyncio
async def test_undecodable_frame_is_ignored() -> None:
    socket = FakeSocket()
    connection = await _open(socket)
    stream = await connection.submit(_DOCUMENT, {}, None, task_id="t1")

    socket.incoming.put_nowait(b"\xff\xfe")
    socket.push("t1", {"type": "completed", "finalValue": 1})

    assert await asyncio.wait_for(anext(stream), 1.0) == CompletedEvent(final_value=1)
    assert connection.is_open
    await connection.close()


@pytest.mark.asyncio
async def test_reader_crash_fails_pending_streams() -> None:
    socket = FakeSocket()
    connection = await _open(socket)
    stream = await connection.submit(_DOCUMENT, {}, None, task_id="t1")

    socket.incoming.put_nowait(RuntimeError("frame decoder exploded"))

    with pytest.raises(TransportError, match="frame decoder exploded"):
        await asyncio.wait_for(anext(stream), 1.0)
    assert not connection.is_open
    await connection.close()


@pytest.mark.asyncio
async def test_client_close_is_not_a_warning(caplog: pytest.LogCaptureFixture) -> None:
    connection = await _open(FakeSocket())
    await connection.submit(_DOCUMENT, {}, None, task_id="t1")

    with caplog.at_level(logging.INFO, logger="taskplan.connection.websocket"):
        await connection.close()

    assert "Connection closed by client" in caplog.text
    assert not [r for r in caplog.records if r.levelno >= logging.WARNING]


@pytest.mark.asyncio
async def test_closing_an_unfinished_stream_sends_cancel() -> None:
    socket = FakeSocket()
    connection = await _open(socket)
    stream = await connection.submit(_DOCUMENT, {}, None, task_id="t1")
    socket.push("t1", {"type": "progress", "nodeRef": "s1", "status": "started"})

    await anext(stream)
    await stream.aclose()

    assert socket.sent[-1] == {"type": "cancel", "taskId": "t1"}
    await connection.close()


@pytest.mark.asyncio
async def test_finished_stream_sends_no_cancel() -> None:
    socket = FakeSocket()
    connection = await _open(socket)
    stream = await connection.submit(_DOCUMENT, {}, None, task_id="t1")
    socket.push("t1", {"type": "completed", "finalValue": None})

    events = [event async for event in stream]

    assert len(events) == 1
    assert [m["type"] for m in socket.sent] == ["submit"]
    await connection.close()


@pytest.mark.asyncio
async def test_connection_loss_fails_pending_streams() -> None:
    socket = FakeSocket()
    connection = await _open(socket)
    stream = await connection.submit(_DOCUMENT, {}, None, task_id="t1")

    socket.hang_up()

    with pytest.raises(TransportError, match="closed the connection"):
        await anext(stream)
    assert not connection.is_open
    with pytest.raises(TransportError):
        await connection.submit(_DOCUMENT, {}, None, task_id="t2")
    await connection.close()


@pytest.mark.asyncio
async def test_malformed_update_is_a_transport_error() -> None:
    socket = FakeSocket()
    connection = await _open(socket)
    stream = await connection.submit(_DOCUMENT, {}, None, task_id="t1")
    socket.push("t1", {"type": "bogus"})

    with pytest.raises(TransportError, match="Malformed update event"):
        await anext(stream)
    await connection.close()


@pytest.mark.asyncio
async def test_task_runner_over_websocket() -> None:
    socket = FakeSocket(
        reply=[
            {"type": "progress", "nodeRef": "s1", "status": "started"},
            {"type": "result", "nodeRef": "s1", "value": 5},
            {"type": "completed", "finalValue": 5},
        ]
    )
    connection = await _open(socket)
    seen: list[str] = []

    outcome = await TaskRunner(connection, TemplateBuilder().add_service("s1")).run(
        on_update=lambda event: seen.append(event.type)
    )

    assert outcome == TaskOutcome(ok=True, value=5)
    assert seen == ["progress", "result", "completed"]
    await connection.close()


@pytest.mark.asyncio
async def test_unreachable_operator_raises_transport_error() -> None:
    async def refuse(url: str, *, open_timeout: float) -> FakeSocket:
        raise ConnectionRefusedError("refused")

    with pytest.raises(TransportError, match="Cannot connect"):
        await WebSocketConnection("ws://operator.test", connect=refuse).open()


@pytest.mark.asyncio
async def test_factory_picks_connection_by_scheme() -> None:
    local = await connect("local://")

    assert isinstance(local, LocalConnection)
    with pytest.raises(TransportError, match="Unsupported operator URL scheme"):
        await connect("ftp://operator.test")
