"""Test configuration and fixtures."""

from __future__ import annotations

from typing import Any

import pytest

from taskplan.connection.local import LocalConnection, LocalOperator, ServiceCall
from taskplan.template.builder import TemplateBuilder


async def _no_sleep(_seconds: float) -> None:
    return None


class ServiceBook:
    """Records every call made to the test services."""

    def __init__(self) -> None:
        self.calls: list[ServiceCall] = []

    def attempts(self, name: str) -> int:
        return sum(1 for c in self.calls if c.name == name)

    def names(self) -> list[str]:
        return [c.name for c in self.calls]

    def handlers(self) -> dict[str, Any]:
        def echo(call: ServiceCall) -> dict[str, Any]:
            self.calls.append(call)
            return {"input": call.input, "config": call.configuration}

        def add_one(call: ServiceCall) -> int:
            self.calls.append(call)
            return (call.input or 0) + 1

        def done(call: ServiceCall) -> dict[str, Any]:
            self.calls.append(call)
            configured = call.configuration or {}
            return {"done": configured.get("done", True), "count": 3}

        def broken(call: ServiceCall) -> None:
            self.calls.append(call)
            raise RuntimeError(f"attempt {call.attempt} failed")

        async def slow_echo(call: ServiceCall) -> dict[str, Any]:
            self.calls.append(call)
            return {"slow": call.input}

        return {
            "echo": echo,
            "add-one": add_one,
            "done": done,
            "broken": broken,
            "slow-echo": slow_echo,
        }


@pytest.fixture
def book() -> ServiceBook:
    """Provide a fresh record of service calls."""
    return ServiceBook()


@pytest.fixture
def operator(book: ServiceBook) -> LocalOperator:
    """Provide an in-process operator that never sleeps between retries."""
    return LocalOperator(book.handlers(), sleep=_no_sleep)


@pytest.fixture
def connection(operator: LocalOperator) -> LocalConnection:
    """Provide a connection to the in-process operator."""
    return LocalConnection(operator)


@pytest.fixture
def builder() -> TemplateBuilder:
    """Provide an empty template builder."""
    return TemplateBuilder()
