"""Structured logging configuration.

Library modules only create loggers and attach context through `extra`;
handlers are installed by the command-line entry point (or the application
embedding the library) through `configure_logging`.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any, TextIO

# Attributes every LogRecord carries; anything else came in through `extra`.
_STANDARD_ATTRS = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}

# Correlation keys promoted to the top level of each line.
_TOP_LEVEL_KEYS = ("task_id", "node_ref")


class JsonFormatter(logging.Formatter):
    """One JSON object per record.

    `task_id` and `node_ref` are lifted next to the message so log lines of
    one task can be grepped together; other `extra` context is nested under
    "extra".
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (record)
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        context = {
            key: value
            for key, value in vars(record).items()
            if key not in _STANDARD_ATTRS and not key.startswith("_")
        }
        for key in _TOP_LEVEL_KEYS:
            if key in context:
                payload[key] = context.pop(key)
        if context:
            payload["extra"] = context

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)

        # Update payloads may carry arbitrary service output.
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging(level: str, *, stream: TextIO | None = None) -> None:
    """Install a single JSON handler on the root logger.

    Logs go to stderr by default so that command output on stdout stays
    machine-readable. Calling this again replaces the previous handler.
    """

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)

    handler = logging.StreamHandler(stream=stream or sys.stderr)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)
    root.setLevel(level.upper())

    # Frame-level websocket logging is only useful when asked for explicitly.
    logging.getLogger("websockets").setLevel(max(root.level, logging.WARNING))
