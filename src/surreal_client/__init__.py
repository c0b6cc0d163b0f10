"""
SurrealDB Client - an asyncio client for SurrealDB over HTTP and WebSocket.

One connection string is enough: the other transport's endpoint is inferred
and used when reachable.

Supports:
- HTTP transport (stateless, REST key endpoints and /sql)
- WebSocket RPC channel (stateful, multiplexed requests)
- Live Queries with callbacks or async iteration (WebSocket only)
- Parameterised queries that never inline values
"""

from .client import Both, Drivers, HttpOnly, Surreal, TransportFailure, WsOnly, connect, open_client
from .config import ConnectionSettings, Credentials
from .connection.base import BaseSurrealConnection, SessionState
from .connection.http import HTTPConnection, KeyResource
from .connection.websocket import KillHandle, WebSocketConnection
from .exceptions import (
    ConnectError,
    InvalidCredentialsError,
    LiveQueryError,
    NoDriversAvailableError,
    NoValidTargetError,
    QueryError,
    SurrealDBError,
    TransportRequiredError,
    UnsupportedSchemeError,
)
from .protocol.rpc import RPCError, RPCRequest, RPCResponse
from .query import Template, index_to_name
from .streaming.live_query import LiveAction, LiveNotification, LiveQuery, LiveStream
from .types import QueryResponse, QueryResult, ResponseStatus
from .uri import ConnectionTarget, Origin, resolve_target

__version__ = "0.1.0"
__all__ = [
    # Client
    "Surreal",
    "connect",
    "open_client",
    "Drivers",
    "HttpOnly",
    "WsOnly",
    "Both",
    "TransportFailure",
    # Targets & configuration
    "ConnectionTarget",
    "Origin",
    "resolve_target",
    "ConnectionSettings",
    "Credentials",
    # Transports
    "BaseSurrealConnection",
    "SessionState",
    "HTTPConnection",
    "KeyResource",
    "WebSocketConnection",
    "KillHandle",
    # Protocol
    "RPCRequest",
    "RPCResponse",
    "RPCError",
    # Queries
    "Template",
    "index_to_name",
    "QueryResponse",
    "QueryResult",
    "ResponseStatus",
    # Live queries
    "LiveQuery",
    "LiveStream",
    "LiveNotification",
    "LiveAction",
    # Exceptions
    "SurrealDBError",
    "UnsupportedSchemeError",
    "NoValidTargetError",
    "ConnectError",
    "InvalidCredentialsError",
    "NoDriversAvailableError",
    "TransportRequiredError",
    "QueryError",
    "LiveQueryError",
]
