"""
Dual-transport SurrealDB client.

Composes the HTTP transport and the WebSocket RPC channel behind one
connection object. Operations prefer the RPC channel and fall back to HTTP.

Usage:
    async with await open_client("http://localhost:8000", {"user": "root", "pass": "root"},
                                 namespace="test", database="test") as db:
        await db.create("person", {"name": "Tobie"}, record_id="tobie")
        result = await db.sql("SELECT * FROM person WHERE name = {}", "Tobie")

        async for change in db.live("SELECT * FROM person"):
            print(change.action, change.result)
"""

import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Self

import httpx

from .config import Credentials
from .connection.base import SessionState
from .connection.http import HTTPConnection
from .connection.websocket import WebSocketConnection
from .exceptions import NoDriversAvailableError, QueryError, SurrealDBError, TransportRequiredError
from .query import Template
from .streaming.live_query import LiveQuery
from .types import QueryResponse
from .uri import ConnectionTarget, Origin, resolve_target

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HttpOnly:
    """Only the HTTP transport is available."""

    http: HTTPConnection


@dataclass(frozen=True)
class WsOnly:
    """Only the WebSocket RPC channel is available."""

    ws: WebSocketConnection


@dataclass(frozen=True)
class Both:
    """Both transports are available."""

    http: HTTPConnection
    ws: WebSocketConnection


Drivers = HttpOnly | WsOnly | Both


def make_drivers(http: HTTPConnection | None, ws: WebSocketConnection | None) -> Drivers:
    """Wrap the surviving transports. Raises NoDriversAvailableError if none survived."""
    if http is not None and ws is not None:
        return Both(http=http, ws=ws)
    if http is not None:
        return HttpOnly(http=http)
    if ws is not None:
        return WsOnly(ws=ws)
    raise NoDriversAvailableError("can not initialize client without any drivers")


@dataclass(frozen=True)
class TransportFailure:
    """An inferred transport that could not be reached."""

    transport: str
    uri: str
    error: Exception


def _records(response: QueryResponse) -> list[Any]:
    """Records of the first statement of an HTTP envelope."""
    first = response.first_result
    if first is None:
        return []
    if not first.is_ok:
        raise QueryError(str(first.result))
    return _as_list(first.result)


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _first(value: Any) -> Any:
    items = _as_list(value)
    return items[0] if items else None


class Surreal:
    """
    A SurrealDB client over HTTP, WebSocket, or both.

    Build it with ``connect()`` or ``open_client()``.
    """

    def __init__(
        self,
        drivers: Drivers,
        session: SessionState | None = None,
        diagnostics: list[TransportFailure] | None = None,
    ):
        self.drivers = drivers
        self.session = session if session is not None else SessionState()
        self.diagnostics = diagnostics or []

    @property
    def http(self) -> HTTPConnection | None:
        match self.drivers:
            case HttpOnly(http=http) | Both(http=http):
                return http
            case WsOnly():
                return None

    @property
    def ws(self) -> WebSocketConnection | None:
        match self.drivers:
            case WsOnly(ws=ws) | Both(ws=ws):
                return ws
            case HttpOnly():
                return None

    def _require_ws(self, operation: str) -> WebSocketConnection:
        match self.drivers:
            case WsOnly(ws=ws) | Both(ws=ws):
                return ws
            case HttpOnly():
                raise TransportRequiredError("ws", operation)

    def _require_http(self, operation: str) -> HTTPConnection:
        match self.drivers:
            case HttpOnly(http=http) | Both(http=http):
                return http
            case WsOnly():
                raise TransportRequiredError("http", operation)

    async def use(self, namespace: str, database: str) -> None:
        """
        Select namespace and database.

        HTTP requests read them from the session on every call; the RPC
        channel's server-side session is updated with a ``use`` call.
        """
        self.session.namespace = namespace
        self.session.database = database

        match self.drivers:
            case WsOnly(ws=ws) | Both(ws=ws):
                await ws.use(namespace, database)
            case HttpOnly():
                pass

    async def get(self, table: str, record_id: str | None = None) -> Any:
        """
        Select a whole table (list) or one record (dict or None).
        """
        match self.drivers:
            case WsOnly(ws=ws) | Both(ws=ws):
                if record_id is None:
                    return _as_list(await ws.select(table))
                return _first(await ws.select(f"{table}:{record_id}"))
            case HttpOnly(http=http):
                records = _records(await http.key(table).get(record_id))
                if record_id is None:
                    return records
                return records[0] if records else None

    async def create(self, table: str, data: Any, record_id: str | None = None) -> Any:
        """
        Create records.

        With ``record_id`` the created record is returned; otherwise the list
        of created records.
        """
        match self.drivers:
            case WsOnly(ws=ws) | Both(ws=ws):
                if record_id is None:
                    return _as_list(await ws.create(table, data))
                return _first(await ws.create(f"{table}:{record_id}", data))
            case HttpOnly(http=http):
                records = _records(await http.key(table).post(data, record_id))
                if record_id is None:
                    return records
                return records[0] if records else None

    async def update(self, table: str, record_id: str, data: dict[str, Any]) -> Any:
        """Replace one record."""
        match self.drivers:
            case WsOnly(ws=ws) | Both(ws=ws):
                return _first(await ws.update(f"{table}:{record_id}", data))
            case HttpOnly(http=http):
                return _first(_records(await http.key(table).put(record_id, data)))

    async def delete(self, table: str, record_id: str | None = None) -> Any:
        """Delete a whole table (list) or one record (dict or None)."""
        match self.drivers:
            case WsOnly(ws=ws) | Both(ws=ws):
                if record_id is None:
                    return _as_list(await ws.delete(table))
                return _first(await ws.delete(f"{table}:{record_id}"))
            case HttpOnly(http=http):
                records = _records(await http.key(table).delete(record_id))
                if record_id is None:
                    return records
                return records[0] if records else None

    async def mutate(self, table: str, record_id: str, data: dict[str, Any]) -> Any:
        """
        Merge ``data`` into one record with ``PATCH /key/:table/:id``.

        Only available over HTTP, even when the RPC channel is present.
        """
        http = self._require_http("mutate")
        return _first(_records(await http.key(table).patch(record_id, data)))

    async def patch(
        self,
        table: str,
        patches: list[dict[str, Any]],
        record_id: str | None = None,
    ) -> Any:
        """
        Apply JSON Patch operations to a table or one record.

        Only available over the RPC channel.
        """
        ws = self._require_ws("patch")
        thing = table if record_id is None else f"{table}:{record_id}"
        return await ws.patch(thing, patches)

    async def sql(self, query: "str | Template", *args: Any) -> QueryResponse:
        """
        Run a parameterised query.

        ``{}`` placeholders in ``query`` are bound to ``args`` as variables;
        values are never inlined into the query text.
        """
        template = Template.of(query, args)

        match self.drivers:
            case WsOnly(ws=ws) | Both(ws=ws):
                return await ws.query(template.render(), template.variables())
            case HttpOnly(http=http):
                return await http.sql(template)

    def live(self, query: "str | Template", *args: Any) -> LiveQuery:
        """
        Declare a live query, e.g. ``db.live("SELECT * FROM person WHERE age > {}", 18)``.

        The ``LIVE`` keyword is added. Nothing is sent until the query is
        subscribed to or iterated.
        """
        ws = self._require_ws("live")
        return LiveQuery(ws, Template.of(query, args))

    async def health(self) -> bool:
        """Server health, via HTTP."""
        return await self._require_http("health").health()

    async def version(self) -> str:
        """Server version, via HTTP."""
        return await self._require_http("version").version()

    async def export(self) -> bytes:
        """Export the selected database, via HTTP."""
        return await self._require_http("export").export()

    async def import_(self, data: bytes | str) -> QueryResponse:
        """Import a SurrealQL dump, via HTTP."""
        return await self._require_http("import").import_(data)

    async def close(self) -> None:
        """Close the RPC channel and the HTTP client."""
        match self.drivers:
            case Both(http=http, ws=ws):
                await ws.close()
                await http.close()
            case WsOnly(ws=ws):
                await ws.close()
            case HttpOnly(http=http):
                await http.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()


async def _open_http(
    uri: str,
    credentials: Credentials,
    session: SessionState,
    timeout: float,
    transport: httpx.AsyncBaseTransport | None,
) -> HTTPConnection:
    http = HTTPConnection(uri, session=session, timeout=timeout, transport=transport)
    await http.connect()
    try:
        await http.signin(credentials)
    except BaseException:
        await http.close()
        raise
    return http


async def _attempt(
    transport: str,
    uri: str | None,
    origin: Origin,
    opener: Any,
    diagnostics: list[TransportFailure],
) -> Any:
    """Run one transport opener, applying the explicit/inferred failure policy."""
    if uri is None:
        return None
    try:
        return await opener
    except SurrealDBError as e:
        if origin != Origin.INFERRED:
            raise
        logger.debug("inferred %s url did not work. tried: %s. got: %r", transport, uri, e)
        diagnostics.append(TransportFailure(transport=transport, uri=uri, error=e))
        return None


async def connect(
    target: "str | Mapping[str, str | None] | ConnectionTarget",
    credentials: "Credentials | Mapping[str, Any]",
    protocol: str = "json",
    timeout: float = 30.0,
    http_transport: httpx.AsyncBaseTransport | None = None,
) -> Surreal:
    """
    Connect to SurrealDB over every transport the target names.

    HTTP sign-in and WebSocket connect + sign-in run concurrently. A failing
    transport whose URI was given explicitly aborts the connection; one whose
    URI was inferred is dropped and recorded in ``Surreal.diagnostics``.

    Args:
        target: Connection URI, ``{"http": ..., "ws": ...}`` mapping, or resolved target
        credentials: Sign-in credentials
        protocol: WebSocket frame encoding, "json" or "cbor"
        timeout: HTTP request timeout in seconds
        http_transport: Optional httpx transport for the HTTP client

    Raises:
        UnsupportedSchemeError, NoValidTargetError: If the target is invalid
        ConnectError: If an explicitly requested transport fails
        NoDriversAvailableError: If no transport survived
    """
    resolved = resolve_target(target)
    if not isinstance(credentials, Credentials):
        credentials = Credentials.model_validate(dict(credentials))

    session = SessionState()
    diagnostics: list[TransportFailure] = []

    openers = [
        _attempt(
            "http",
            resolved.http,
            resolved.http_origin,
            _open_http(resolved.http, credentials, session, timeout, http_transport) if resolved.http else None,
            diagnostics,
        ),
        _attempt(
            "ws",
            resolved.ws,
            resolved.ws_origin,
            WebSocketConnection.open(resolved.ws, credentials, session=session, protocol=protocol)
            if resolved.ws
            else None,
            diagnostics,
        ),
    ]
    http, ws = await asyncio.gather(*openers, return_exceptions=True)

    errors = [result for result in (http, ws) if isinstance(result, BaseException)]
    if errors:
        for survivor in (http, ws):
            if isinstance(survivor, (HTTPConnection, WebSocketConnection)):
                await survivor.close()
        raise errors[0]

    drivers = make_drivers(http, ws)
    if session.authorization is None and isinstance(ws, WebSocketConnection) and ws.token:
        session.authorization = f"Bearer {ws.token}"

    logger.info("Connected to SurrealDB (%s)", type(drivers).__name__)
    return Surreal(drivers, session=session, diagnostics=diagnostics)


async def open_client(
    target: "str | Mapping[str, str | None] | ConnectionTarget",
    credentials: "Credentials | Mapping[str, Any]",
    namespace: str,
    database: str,
    **kwargs: Any,
) -> Surreal:
    """Connect, then select ``namespace`` and ``database``."""
    db = await connect(target, credentials, **kwargs)
    try:
        await db.use(namespace, database)
    except BaseException:
        await db.close()
        raise
    return db
