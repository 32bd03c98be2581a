"""Connections between producers and operators."""

from taskplan.connection.base import Connection, UpdateStream
from taskplan.connection.factory import connect
from taskplan.connection.local import LocalConnection, LocalOperator, ServiceCall
from taskplan.connection.websocket import WebSocketConnection

__all__ = [
    "Connection",
    "LocalConnection",
    "LocalOperator",
    "ServiceCall",
    "UpdateStream",
    "WebSocketConnection",
    "connect",
]
