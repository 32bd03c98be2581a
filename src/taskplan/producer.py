"""Producer: owns the connection to an operator and creates task runners."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from taskplan.config import ProducerSettings
from taskplan.connection.base import Connection
from taskplan.connection.factory import connect
from taskplan.connection.local import LocalOperator
from taskplan.run.runner import TaskRunner
from taskplan.template.builder import TemplateBuilder
from taskplan.template.nodes import Template

logger = logging.getLogger(__name__)


class Producer:
    """Client-side entry point for submitting templates to one operator.

    Every runner created here shares the producer's connection; task runs
    stay independent of each other once submitted.
    """

    def __init__(self, connection: Connection) -> None:
        self.connection = connection

    @classmethod
    async def connect(
        cls,
        url: str | None = None,
        *,
        settings: ProducerSettings | None = None,
        operator: LocalOperator | None = None,
    ) -> Producer:
        """Connect to the operator at `url`, or at the configured default URL.

        Args:
            url: Operator URL. Falls back to `settings.operator_url`.
            settings: Settings object. If None, loads from environment.
            operator: Operator backing a `local://` URL.

        Raises:
            TransportError: If no URL is configured or the operator is unreachable.
        """
        settings = settings or ProducerSettings()
        resolved = settings.resolve_url(url)
        connection = await connect(
            resolved, open_timeout=settings.connect_timeout_seconds, operator=operator
        )
        logger.info("Producer connected", extra={"url": resolved})
        return cls(connection)

    def task(
        self,
        template: Template | TemplateBuilder,
        *,
        input: Any = None,
        meta: Mapping[str, Any] | None = None,
    ) -> TaskRunner:
        """Bind a template to input and metadata.

        Raises:
            ValidationError: If the template is structurally invalid.
        """
        return TaskRunner(self.connection, template, input=input, meta=meta)

    async def close(self) -> None:
        await self.connection.close()

    async def __aenter__(self) -> Producer:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
