"""
Pytest configuration for the SurrealDB client tests.

Unit tests run against in-memory fakes: ``FakeWebSocket`` stands in for the
aiohttp socket behind a WebSocketConnection, and ``httpx.MockTransport``
stands in for the HTTP server.

Integration tests (``-m integration``) need a running SurrealDB; they are
skipped when the server's /health endpoint does not answer. Shared connection
constants are defined here so every test file can import them.
"""

import asyncio
import itertools
import json
import os
import urllib.error
import urllib.request
from collections.abc import AsyncGenerator, Callable
from types import SimpleNamespace
from typing import Any

import aiohttp
import pytest

from surreal_client.connection.websocket import WebSocketConnection
from surreal_client.protocol import cbor as cbor_module

# ---------------------------------------------------------------------------
# Shared connection constants (import these in test files)
# ---------------------------------------------------------------------------
TEST_PORT = int(os.getenv("SURREALDB_PORT", "8000"))
SURREALDB_URL = os.getenv("SURREALDB_URL", f"http://localhost:{TEST_PORT}")
SURREALDB_WS_URL = os.getenv("SURREALDB_WS_URL", f"ws://localhost:{TEST_PORT}/rpc")
SURREALDB_USER = os.getenv("SURREALDB_USER", "root")
SURREALDB_PASS = os.getenv("SURREALDB_PASS", "root")
SURREALDB_NAMESPACE = os.getenv("SURREALDB_NAMESPACE", "test")
SURREALDB_DATABASE = os.getenv("SURREALDB_DATABASE", "test_client")


def is_surrealdb_healthy(port: int = TEST_PORT) -> bool:
    """Check if SurrealDB is healthy via /health endpoint."""
    try:
        req = urllib.request.Request(f"http://localhost:{port}/health", method="GET")
        with urllib.request.urlopen(req, timeout=2) as response:
            return response.status == 200
    except (urllib.error.URLError, TimeoutError, OSError):
        return False


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip integration tests when no SurrealDB answers."""
    if not any("integration" in item.keywords for item in items):
        return
    if is_surrealdb_healthy():
        return
    skip = pytest.mark.skip(reason=f"SurrealDB not available on port {TEST_PORT}")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip)


# ---------------------------------------------------------------------------
# WebSocket fakes
# ---------------------------------------------------------------------------

Responder = Callable[[dict[str, Any]], dict[str, Any] | None]


class FakeWebSocket:
    """
    In-memory stand-in for ``aiohttp.ClientWebSocketResponse``.

    Outgoing frames are decoded and recorded in ``sent``. Incoming frames are
    queued with ``push()`` and handed to the connection's read loop. When a
    ``responder`` is set, it is called with every outgoing request and its
    return value (if not None) is pushed back as the response.
    """

    def __init__(self, responder: Responder | None = None, binary: bool = False):
        self.sent: list[dict[str, Any]] = []
        self.responder = responder
        self.binary = binary
        self.closed = False
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()

    async def send_str(self, data: str) -> None:
        self._record(json.loads(data))

    async def send_bytes(self, data: bytes) -> None:
        self._record(cbor_module.decode(data))

    def _record(self, request: dict[str, Any]) -> None:
        self.sent.append(request)
        if self.responder is not None:
            reply = self.responder(request)
            if reply is not None:
                self.push(reply)

    def push(self, message: dict[str, Any]) -> None:
        """Queue a frame for the connection to read."""
        if self.binary:
            frame = SimpleNamespace(type=aiohttp.WSMsgType.BINARY, data=cbor_module.encode(message))
        else:
            frame = SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=json.dumps(message))
        self._incoming.put_nowait(frame)

    def push_raw(self, msg_type: aiohttp.WSMsgType, data: Any) -> None:
        self._incoming.put_nowait(SimpleNamespace(type=msg_type, data=data))

    def server_close(self) -> None:
        """Simulate the server closing the socket."""
        self._incoming.put_nowait(None)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def methods(self) -> list[str]:
        return [request["method"] for request in self.sent]

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> Any:
        frame = await self._incoming.get()
        if frame is None:
            raise StopAsyncIteration
        return frame


class FakeSurrealServer:
    """
    Responder answering RPC requests the way SurrealDB does.

    ``LIVE`` queries get a fresh live id each; other queries echo an OK
    envelope. ``signin`` fails when ``reject_signin`` is set.
    """

    def __init__(self) -> None:
        self.reject_signin = False
        self.live_ids: list[str] = []
        self.records: dict[str, Any] = {}
        self._live_counter = itertools.count(1)

    def __call__(self, request: dict[str, Any]) -> dict[str, Any] | None:
        method = request["method"]
        params = request.get("params") or []
        reply: dict[str, Any] = {"id": request["id"]}

        if method == "signin":
            if self.reject_signin:
                reply["error"] = {"code": -32000, "message": "There was a problem with authentication"}
            else:
                reply["result"] = "token-123"
        elif method == "signup":
            reply["result"] = "token-signup"
        elif method == "info":
            reply["result"] = {"id": "user:tobie"}
        elif method == "query":
            sql = params[0]
            if sql.startswith("LIVE "):
                live_id = f"live-{next(self._live_counter)}"
                self.live_ids.append(live_id)
                reply["result"] = [{"status": "OK", "time": "1ms", "result": live_id}]
            else:
                reply["result"] = [{"status": "OK", "time": "1ms", "result": []}]
        elif method in ("select", "delete"):
            reply["result"] = self.records.get(params[0], [])
        elif method in ("create", "update"):
            data = params[1] if len(params) > 1 else {}
            record = {"id": params[0], **data} if ":" in params[0] else [{"id": f"{params[0]}:1", **data}]
            reply["result"] = record
        elif method == "version":
            reply["result"] = "surrealdb-1.0.0"
        else:
            reply["result"] = None
        return reply


async def wait_for(predicate: Callable[[], bool], attempts: int = 1000) -> None:
    """Yield to the event loop until ``predicate`` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def server() -> FakeSurrealServer:
    return FakeSurrealServer()


@pytest.fixture
async def channel(server: FakeSurrealServer) -> AsyncGenerator[tuple[WebSocketConnection, FakeWebSocket], None]:
    """A WebSocketConnection attached to an auto-answering fake socket."""
    conn = WebSocketConnection("ws://localhost:8000/rpc")
    ws = FakeWebSocket(responder=server)
    conn._attach(ws)
    yield conn, ws
    await conn.close()


@pytest.fixture
async def silent_channel() -> AsyncGenerator[tuple[WebSocketConnection, FakeWebSocket], None]:
    """A WebSocketConnection whose fake socket never answers on its own."""
    conn = WebSocketConnection("ws://localhost:8000/rpc")
    ws = FakeWebSocket()
    conn._attach(ws)
    yield conn, ws
    await conn.close()
