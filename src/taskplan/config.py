"""Settings for producers and the command-line tool.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

An explicit operator URL passed in code always wins over TASKPLAN_OPERATOR_URL.
"""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from taskplan.errors import TransportError


class ProducerSettings(BaseSettings):
    """Settings for connecting to an operator.

    Environment variables:
    - TASKPLAN_OPERATOR_URL     (optional)
    - TASKPLAN_CONNECT_TIMEOUT  (optional)
    - LOG_LEVEL                 (optional)

    Notes:
        Tests can point at a specific env file via
        `ProducerSettings(_env_file=path_to_env)`.
    """

    operator_url: str | None = Field(
        default=None,
        validation_alias="TASKPLAN_OPERATOR_URL",
        description="Default operator URL, e.g. wss://operator.example.com/tasks",
    )
    connect_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        validation_alias="TASKPLAN_CONNECT_TIMEOUT",
        description="Seconds to wait for the operator handshake",
    )
    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    def resolve_url(self, url: str | None = None) -> str:
        """Pick the operator URL: the explicit argument, else the configured default."""

        resolved = url or self.operator_url
        if not resolved:
            raise TransportError(
                "No operator URL configured (pass one explicitly or set TASKPLAN_OPERATOR_URL)"
            )
        return resolved
