"""Factory for creating operator connections."""

from __future__ import annotations

import logging
from urllib.parse import urlparse

from taskplan.errors import TransportError

from .base import Connection
from .local import LocalConnection, LocalOperator
from .websocket import WebSocketConnection

logger = logging.getLogger(__name__)

LOCAL_SCHEME = "local"
WEBSOCKET_SCHEMES = ("ws", "wss")


async def connect(
    url: str,
    *,
    open_timeout: float = 10.0,
    operator: LocalOperator | None = None,
) -> Connection:
    """Open a connection chosen by URL scheme.

    Args:
        url: `ws://` / `wss://` for a remote operator, `local://` for an
            in-process LocalOperator.
        open_timeout: Handshake timeout for remote operators, in seconds.
        operator: Operator backing a `local://` connection.

    Returns:
        An open connection.

    Raises:
        TransportError: If the scheme is unsupported or the operator is unreachable.
    """
    scheme = urlparse(url).scheme.lower()
    logger.info("Creating operator connection", extra={"scheme": scheme})

    if scheme == LOCAL_SCHEME:
        return LocalConnection(operator)
    if scheme in WEBSOCKET_SCHEMES:
        return await WebSocketConnection(url, open_timeout=open_timeout).open()
    raise TransportError(f"Unsupported operator URL scheme: {scheme or url!r}")
