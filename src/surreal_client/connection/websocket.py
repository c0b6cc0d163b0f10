"""
WebSocket Connection Implementation for the SurrealDB client.

Provides the stateful RPC channel: many concurrent requests multiplexed over
one socket, correlated by request id, plus delivery of live query
notifications to listeners registered per live query id.
"""

import asyncio
import inspect
import json
import logging
from collections import OrderedDict, deque
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from typing import Any, Self

import aiohttp
import cbor2

from .base import BaseSurrealConnection, SessionState
from ..config import Credentials
from ..exceptions import ConnectError, InvalidCredentialsError, QueryError
from ..protocol import cbor as cbor_module
from ..protocol.rpc import Frame, RPCMethod, RPCRequest, RPCResponse, next_request_id
from ..types import QueryResponse

logger = logging.getLogger(__name__)

# Receives the raw notification payload ``{id, action, result}``.
# May return an awaitable, which is scheduled as a task.
LiveListener = Callable[[dict[str, Any]], Any]

# Notifications held for a live id that has no listener yet. The server may
# push before the LIVE response has been handed back to the caller.
BACKLOG_SIZE = 1000
BACKLOG_QUERIES = 64


@dataclass(eq=False)
class _Registration:
    listener: LiveListener
    on_close: Callable[[], None] | None = None


class KillHandle:
    """
    Awaitable handle returned by ``WebSocketConnection.listen``.

    Calling it deregisters the listener and kills the live query on the
    server. Calling it again does nothing.
    """

    def __init__(
        self,
        connection: "WebSocketConnection",
        live_id: str,
        registration: _Registration,
        variables: Sequence[str] = (),
    ):
        self.connection = connection
        self.live_id = live_id
        self.variables = list(variables)
        self._registration = registration
        self._killed = False

    @property
    def killed(self) -> bool:
        return self._killed

    async def __call__(self) -> None:
        if self._killed:
            return
        self._killed = True
        # Not registered any more when the server already ended the live query
        registered = self.connection._remove_listener(self.live_id, self._registration)

        if not self.connection.is_connected or self.connection.has_listeners(self.live_id):
            return

        if registered:
            await self.connection.kill(self.live_id)
        for name in self.variables:
            await self.connection.unset(name)


class WebSocketConnection(BaseSurrealConnection):
    """
    WebSocket-based RPC channel to SurrealDB.

    This connection is stateful - the session (namespace, database,
    authentication, variables) lives on the server for the lifetime of the
    socket. Required for live queries and session variables.

    No timeout is applied to requests; wrap calls in ``asyncio.timeout()``
    when a bounded wait is needed.
    """

    def __init__(
        self,
        url: str,
        session: SessionState | None = None,
        protocol: str = "json",
    ):
        """
        Initialize WebSocket connection.

        Args:
            url: SurrealDB RPC URL (e.g., "ws://localhost:8000/rpc")
            session: Session state shared with the owning client
            protocol: Frame encoding, "json" (text frames) or "cbor" (binary frames)
        """
        super().__init__(url, session)

        if protocol not in ("json", "cbor"):
            raise ValueError(f"Invalid protocol '{protocol}'. Must be 'json' or 'cbor'.")
        self.protocol = protocol

        self.token: str | None = None
        self._http_session: aiohttp.ClientSession | None = None
        self._ws: Any = None
        self._request_id = 0
        self._pending: dict[int, asyncio.Future[RPCResponse]] = {}
        self._listeners: dict[str, list[_Registration]] = {}
        self._backlog: OrderedDict[str, deque[dict[str, Any]]] = OrderedDict()
        self._ended: deque[str] = deque(maxlen=BACKLOG_QUERIES)
        self._reader_task: asyncio.Task[None] | None = None
        self._callback_tasks: set[asyncio.Task[Any]] = set()
        self._closing = False

    @classmethod
    async def open(
        cls,
        url: str,
        credentials: Credentials,
        session: SessionState | None = None,
        protocol: str = "json",
    ) -> Self:
        """
        Open the socket and sign in before handing the channel out.

        Raises:
            ConnectError: If the socket cannot be opened
            InvalidCredentialsError: If the sign-in is rejected
        """
        conn = cls(url, session=session, protocol=protocol)
        await conn.connect()
        try:
            await conn.signin(credentials)
        except BaseException:
            await conn.close()
            raise
        return conn

    def _next_request_id(self) -> int:
        """Generate next request ID."""
        self._request_id = next_request_id(self._request_id)
        return self._request_id

    @property
    def pending_count(self) -> int:
        """Number of requests awaiting a response."""
        return len(self._pending)

    @property
    def live_queries(self) -> list[str]:
        """Live query ids with at least one listener."""
        return list(self._listeners.keys())

    def has_listeners(self, live_id: str) -> bool:
        return bool(self._listeners.get(live_id))

    async def connect(self) -> Self:
        """Open the WebSocket. Returns self for fluent API."""
        if self._connected:
            return self

        self._closing = False
        self._http_session = aiohttp.ClientSession()

        try:
            ws = await self._http_session.ws_connect(self.url, protocols=[self.protocol])
        except (aiohttp.ClientError, OSError) as e:
            await self._cleanup()
            raise ConnectError(f"WebSocket connection failed: {e}") from e

        self._attach(ws)
        logger.info("WebSocket connected to %s", self.url)
        return self

    def _attach(self, ws: Any) -> None:
        """Bind an open socket and start reading from it."""
        self._ws = ws
        self._connected = True
        self._reader_task = asyncio.create_task(self._read_loop())

    async def close(self) -> None:
        """Close the socket and wait for it to finish closing. Idempotent."""
        self._closing = True
        await self._cleanup()

    async def _cleanup(self) -> None:
        """Release connection resources."""
        was_connected = self._connected
        self._connected = False

        if self._reader_task:
            self._reader_task.cancel()
            try:
                await self._reader_task
            except asyncio.CancelledError:
                pass
            self._reader_task = None

        self._fail_pending(ConnectError("Connection closed"))
        self._end_all_streams()

        for task in self._callback_tasks:
            task.cancel()
        self._callback_tasks.clear()

        if self._ws is not None:
            await self._ws.close()
            self._ws = None

        if self._http_session:
            await self._http_session.close()
            self._http_session = None

        if was_connected:
            logger.info("WebSocket to %s closed", self.url)

    def _fail_pending(self, error: Exception) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)
        self._pending.clear()

    async def _read_loop(self) -> None:
        """Background task reading frames until the socket closes."""
        ws = self._ws
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._handle_text(msg.data)
                elif msg.type == aiohttp.WSMsgType.BINARY:
                    self._handle_binary(msg.data)
                elif msg.type in (aiohttp.WSMsgType.ERROR, aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSED):
                    break
        except aiohttp.ClientError as e:
            logger.warning("WebSocket read failed on %s: %s", self.url, e)
        finally:
            if not self._closing:
                logger.info("WebSocket to %s closed by server", self.url)
                self._connected = False
                self._fail_pending(ConnectError("Connection closed by server"))
                self._end_all_streams()

    def _handle_text(self, data: str) -> None:
        try:
            message = json.loads(data)
        except json.JSONDecodeError:
            logger.debug("Dropping undecodable text frame: %.200s", data)
            return
        self._process_message(message)

    def _handle_binary(self, data: bytes) -> None:
        try:
            message = cbor_module.decode(data)
        except (cbor2.CBORDecodeError, ValueError):
            logger.debug("Dropping undecodable binary frame (%d bytes)", len(data))
            return
        self._process_message(message)

    def _process_message(self, message: Any) -> None:
        """Route a decoded frame to its pending request or live listeners."""
        frame = Frame.parse(message)

        if frame.request_id is not None:
            future = self._pending.pop(frame.request_id, None)
            if future is not None:
                if not future.done():
                    future.set_result(RPCResponse.from_dict(frame.raw))
                return

        if frame.live_id is not None:
            self._dispatch(frame.live_id, frame.notification)
            return

        logger.debug("Dropping unmatched frame: %.200r", message)

    def _dispatch(self, live_id: str, payload: dict[str, Any]) -> None:
        """Deliver a live notification to every listener of ``live_id``."""
        registrations = self._listeners.get(live_id)
        if not registrations:
            self._hold(live_id, payload)
            return

        if payload.get("action") == "KILLED":
            self._end_stream(live_id)
            return

        for registration in list(registrations):
            try:
                result = registration.listener(payload)
            except Exception:
                logger.exception("Live query listener for %s failed", live_id)
                continue
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._callback_tasks.add(task)
                task.add_done_callback(self._callback_done)

    def _callback_done(self, task: "asyncio.Task[Any]") -> None:
        self._callback_tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Live query callback failed", exc_info=task.exception())

    def _hold(self, live_id: str, payload: dict[str, Any]) -> None:
        """Keep a notification until ``listen()`` registers its live id."""
        if live_id in self._ended:
            logger.debug("Dropping notification for ended live query %s", live_id)
            return

        backlog = self._backlog.get(live_id)
        if backlog is None:
            if len(self._backlog) >= BACKLOG_QUERIES:
                dropped, _ = self._backlog.popitem(last=False)
                logger.debug("Dropping held notifications for live query %s", dropped)
            backlog = self._backlog[live_id] = deque(maxlen=BACKLOG_SIZE)
        backlog.append(payload)
        logger.debug("Holding notification for live query %s until it has a listener", live_id)

    def _end_stream(self, live_id: str) -> None:
        self._backlog.pop(live_id, None)
        self._ended.append(live_id)
        for registration in self._listeners.pop(live_id, []):
            if registration.on_close is not None:
                registration.on_close()

    def _end_all_streams(self) -> None:
        self._backlog.clear()
        for live_id in list(self._listeners):
            self._end_stream(live_id)

    def _remove_listener(self, live_id: str, registration: _Registration) -> bool:
        registrations = self._listeners.get(live_id)
        if not registrations or registration not in registrations:
            return False
        registrations.remove(registration)
        if not registrations:
            del self._listeners[live_id]
        return True

    def listen(
        self,
        live_id: str,
        listener: LiveListener,
        on_close: Callable[[], None] | None = None,
        variables: Sequence[str] = (),
    ) -> KillHandle:
        """
        Register a listener for notifications of a live query.

        Args:
            live_id: Live query id returned by the server
            listener: Called with each notification payload
            on_close: Called once when the live query ends (killed or socket closed)
            variables: Session variables to unset once the live query is killed

        Notifications that arrived for ``live_id`` before any listener was
        registered are delivered first, in arrival order.

        Returns:
            Handle that deregisters the listener and kills the live query
        """
        registration = _Registration(listener=listener, on_close=on_close)
        self._listeners.setdefault(live_id, []).append(registration)
        handle = KillHandle(self, live_id, registration, variables)

        for payload in self._backlog.pop(live_id, ()):
            if not self.has_listeners(live_id):
                break
            self._dispatch(live_id, payload)
        return handle

    async def _send_rpc(self, request: RPCRequest) -> RPCResponse:
        """
        Send an RPC request and wait for the response with the same id.

        Raises:
            ConnectError: If not connected, the send fails or the socket closes
        """
        if self._ws is None or not self._connected:
            raise ConnectError("Not connected. Call connect() first.")

        request.id = self._next_request_id()

        future: asyncio.Future[RPCResponse] = asyncio.get_running_loop().create_future()
        self._pending[request.id] = future

        try:
            logger.debug("-> %s #%d", request.method, request.id)
            if self.protocol == "cbor":
                await self._ws.send_bytes(request.to_cbor())
            else:
                await self._ws.send_str(request.to_json())
            return await future
        except (aiohttp.ClientError, ConnectionResetError) as e:
            raise ConnectError(f"Request failed: {e}") from e
        finally:
            self._pending.pop(request.id, None)

    async def send(self, method: str, params: list[Any] | None = None) -> Any:
        """
        Execute an RPC call.

        Args:
            method: RPC method name
            params: Positional parameters

        Returns:
            The ``result`` of the response

        Raises:
            QueryError: If the server answers with an error
        """
        response = await self._send_rpc(RPCRequest(method=method, params=params))

        if response.error is not None:
            raise QueryError(message=response.error.message, code=response.error.code)

        return response.result

    # RPC methods

    async def use(self, namespace: str, database: str) -> None:
        """Select the namespace and database of the socket's session."""
        await self.send(RPCMethod.USE, [namespace, database])
        self.session.namespace = namespace
        self.session.database = database

    async def info(self) -> dict[str, Any] | None:
        """Information about the authenticated user."""
        result: dict[str, Any] | None = await self.send(RPCMethod.INFO)
        return result

    async def signup(self, credentials: Credentials | dict[str, Any]) -> str | None:
        """Sign up a scope user. Returns the issued token."""
        payload = credentials.to_wire() if isinstance(credentials, Credentials) else credentials
        try:
            token = await self.send(RPCMethod.SIGNUP, [payload])
        except QueryError as e:
            raise InvalidCredentialsError(f"signup failed: {e.message}", code=e.code) from e
        self.token = token or None
        return self.token

    async def signin(self, credentials: Credentials) -> str | None:
        """
        Sign in the socket's session.

        Returns:
            The issued token, or None when the server keeps the session without one

        Raises:
            InvalidCredentialsError: If the server rejects the credentials
        """
        try:
            token = await self.send(RPCMethod.SIGNIN, [credentials.to_wire()])
        except QueryError as e:
            raise InvalidCredentialsError(f"invalid credentials: {e.message}", code=e.code) from e
        self.token = token or None
        return self.token

    async def authenticate(self, token: str) -> None:
        """Authenticate the session with an existing token."""
        await self.send(RPCMethod.AUTHENTICATE, [token])
        self.token = token

    async def invalidate(self) -> None:
        """Drop the session's authentication."""
        await self.send(RPCMethod.INVALIDATE)
        self.token = None

    async def let(self, name: str, value: Any) -> None:
        """Set a session variable."""
        await self.send(RPCMethod.LET, [name, value])

    async def unset(self, name: str) -> None:
        """Remove a session variable."""
        await self.send(RPCMethod.UNSET, [name])

    async def query(self, sql: str, vars: dict[str, Any] | None = None) -> QueryResponse:
        """Execute SurrealQL with optional variables."""
        params: list[Any] = [sql]
        if vars:
            params.append(vars)
        result = await self.send(RPCMethod.QUERY, params)
        return QueryResponse.from_result(result)

    async def select(self, thing: str) -> Any:
        """Select a table or a record."""
        return await self.send(RPCMethod.SELECT, [thing])

    async def create(self, thing: str, data: Any = None) -> Any:
        """Create a record."""
        return await self.send(RPCMethod.CREATE, _with_data(thing, data))

    async def update(self, thing: str, data: Any = None) -> Any:
        """Replace record(s)."""
        return await self.send(RPCMethod.UPDATE, _with_data(thing, data))

    async def merge(self, thing: str, data: dict[str, Any]) -> Any:
        """Merge fields into record(s)."""
        return await self.send(RPCMethod.MERGE, [thing, data])

    async def patch(self, thing: str, patches: list[dict[str, Any]]) -> Any:
        """Apply JSON Patch operations to record(s)."""
        return await self.send(RPCMethod.PATCH, [thing, patches])

    async def delete(self, thing: str) -> Any:
        """Delete record(s)."""
        return await self.send(RPCMethod.DELETE, [thing])

    async def kill(self, live_id: str) -> None:
        """Kill a live query and end its listeners."""
        try:
            await self.send(RPCMethod.KILL, [live_id])
        finally:
            self._end_stream(live_id)

    async def ping(self) -> bool:
        """Check that the socket's session answers."""
        await self.send(RPCMethod.PING)
        return True

    async def version(self) -> str:
        """Server version."""
        result = await self.send(RPCMethod.VERSION)
        return str(result) if result else ""


def _with_data(thing: str, data: Any) -> list[Any]:
    return [thing] if data is None else [thing, data]
