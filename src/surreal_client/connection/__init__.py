"""
SurrealDB client connection module.

Provides the HTTP transport and the WebSocket RPC channel.
"""

from .base import BaseSurrealConnection, SessionState
from .http import HTTPConnection, KeyResource
from .websocket import KillHandle, WebSocketConnection

__all__ = [
    "BaseSurrealConnection",
    "SessionState",
    "HTTPConnection",
    "KeyResource",
    "KillHandle",
    "WebSocketConnection",
]
