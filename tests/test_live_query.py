"""Tests for live queries: callback mode and pull-based iteration."""

import asyncio
import contextlib
import logging
from typing import Any

import pytest

from conftest import FakeSurrealServer, FakeWebSocket, wait_for
from surreal_client.connection.websocket import WebSocketConnection
from surreal_client.exceptions import LiveQueryError, QueryError
from surreal_client.query import Template
from surreal_client.streaming.live_query import (
    LiveAction,
    LiveNotification,
    LiveQuery,
    collect,
    extract_live_id,
    scope_prefix,
)
from surreal_client.types import QueryResponse

Channel = tuple[WebSocketConnection, FakeWebSocket]


def push_change(ws: FakeWebSocket, live_id: str, action: str, result: Any) -> None:
    ws.push({"result": {"id": live_id, "action": action, "result": result}})


def change_with_live_response(ws: FakeWebSocket, server: FakeSurrealServer) -> None:
    """Answer LIVE with its response and a first change in the same burst."""

    def responder(request: dict[str, Any]) -> dict[str, Any] | None:
        reply = server(request)
        if request["method"] == "query" and request["params"][0].startswith("LIVE "):
            ws.push(reply)
            push_change(ws, server.live_ids[-1], "CREATE", {"id": "person:1"})
            return None
        return reply

    ws.responder = responder


def failing_kill(ws: FakeWebSocket, server: FakeSurrealServer) -> None:
    """Answer every kill request with an error."""

    def responder(request: dict[str, Any]) -> dict[str, Any] | None:
        if request["method"] == "kill":
            return {"id": request["id"], "error": {"code": -32000, "message": "Can not execute KILL"}}
        return server(request)

    ws.responder = responder


class TestLiveNotification:
    """Tests for LiveNotification."""

    def test_from_dict(self) -> None:
        data = {"id": "live-1", "action": "CREATE", "result": {"id": "person:1", "name": "Alice"}}
        notification = LiveNotification.from_dict(data)

        assert notification.id == "live-1"
        assert notification.action == LiveAction.CREATE
        assert notification.result == {"id": "person:1", "name": "Alice"}
        assert notification.record_id == "person:1"

    def test_record_id_of_diff(self) -> None:
        notification = LiveNotification.from_dict(
            {"id": "live-1", "action": "UPDATE", "result": [{"op": "replace", "path": "/name", "value": "Bob"}]}
        )
        assert notification.record_id is None


class TestExtractLiveId:
    """Tests for reading the live id from a LIVE statement response."""

    def test_plain_id(self) -> None:
        response = QueryResponse.from_result([{"status": "OK", "result": "abc-123"}])
        assert extract_live_id(response) == "abc-123"

    def test_nested_result(self) -> None:
        response = QueryResponse.from_result([{"status": "OK", "result": {"result": "abc-123"}}])
        assert extract_live_id(response) == "abc-123"

    def test_error_status(self) -> None:
        response = QueryResponse.from_result([{"status": "ERR", "result": "table does not exist"}])
        with pytest.raises(LiveQueryError):
            extract_live_id(response)

    def test_empty_response(self) -> None:
        with pytest.raises(LiveQueryError):
            extract_live_id(QueryResponse.from_result(None))

    def test_record_instead_of_id(self) -> None:
        response = QueryResponse.from_result([{"status": "OK", "result": [{"id": "person:1"}]}])
        with pytest.raises(LiveQueryError):
            extract_live_id(response)


class TestScopePrefix:
    """Tests for per-invocation variable prefixes."""

    def test_prefixes_are_unique(self) -> None:
        prefixes = {scope_prefix() for _ in range(100)}
        assert len(prefixes) == 100


class TestStart:
    """Tests for starting a live query on the server."""

    async def test_start_binds_variables_then_runs_live(self, channel: Channel) -> None:
        conn, ws = channel
        live = LiveQuery(conn, Template.parse("SELECT * FROM person WHERE age > {}", 18))

        live_id, variables = await live.start()

        assert live_id == "live-1"
        assert ws.methods() == ["let", "query"]
        name = ws.sent[0]["params"][0]
        assert ws.sent[0]["params"] == [name, 18]
        assert name.endswith("__a")
        assert ws.sent[1]["params"] == [f"LIVE SELECT * FROM person WHERE age > ${name}"]
        assert variables == [name]

    async def test_each_start_uses_its_own_scope(self, channel: Channel) -> None:
        conn, ws = channel
        live = LiveQuery(conn, Template.parse("SELECT * FROM person WHERE age > {}", 18))

        _, first = await live.start()
        _, second = await live.start()

        assert first != second

    async def test_start_without_arguments(self, channel: Channel) -> None:
        conn, ws = channel
        live = LiveQuery(conn, Template.of("SELECT * FROM person"))

        await live.start()

        assert ws.methods() == ["query"]
        assert ws.sent[0]["params"] == ["LIVE SELECT * FROM person"]

    async def test_start_failure(self, silent_channel: Channel) -> None:
        conn, ws = silent_channel
        live = LiveQuery(conn, Template.of("SELECT * FROM missing"))

        task = asyncio.create_task(live.start())
        await wait_for(lambda: len(ws.sent) == 1)
        ws.push({"id": ws.sent[0]["id"], "result": [{"status": "ERR", "result": "table not found"}]})

        with pytest.raises(LiveQueryError):
            await task


class TestSubscribe:
    """Tests for callback mode."""

    async def test_callback_receives_changes_in_order(self, channel: Channel) -> None:
        conn, ws = channel
        received: list[LiveNotification] = []

        kill = await LiveQuery(conn, Template.of("SELECT * FROM person")).subscribe(received.append)
        for n in range(3):
            push_change(ws, kill.live_id, "CREATE", {"id": f"person:{n}"})
        await wait_for(lambda: len(received) == 3)

        assert [change.result["id"] for change in received] == ["person:0", "person:1", "person:2"]
        assert all(change.action == LiveAction.CREATE for change in received)

    async def test_async_callback(self, channel: Channel) -> None:
        conn, ws = channel
        received: list[LiveNotification] = []

        async def on_change(change: LiveNotification) -> None:
            received.append(change)

        kill = await LiveQuery(conn, Template.of("SELECT * FROM person")).subscribe(on_change)
        push_change(ws, kill.live_id, "UPDATE", {"id": "person:1"})
        await wait_for(lambda: len(received) == 1)

        assert received[0].action == LiveAction.UPDATE

    async def test_kill_stops_delivery(self, channel: Channel) -> None:
        conn, ws = channel
        received: list[LiveNotification] = []

        kill = await LiveQuery(conn, Template.parse("SELECT * FROM person WHERE age > {}", 18)).subscribe(
            received.append
        )
        await kill()
        push_change(ws, kill.live_id, "CREATE", {"id": "person:1"})
        await conn.ping()

        assert received == []
        assert ws.methods() == ["let", "query", "kill", "unset", "ping"]
        assert ws.sent[2]["params"] == [kill.live_id]

    async def test_change_in_same_burst_as_live_response(self, channel: Channel, server: FakeSurrealServer) -> None:
        conn, ws = channel
        change_with_live_response(ws, server)
        received: list[LiveNotification] = []

        kill = await LiveQuery(conn, Template.of("SELECT * FROM person")).subscribe(received.append)
        push_change(ws, kill.live_id, "UPDATE", {"id": "person:1"})
        await wait_for(lambda: len(received) == 2)

        assert [change.action for change in received] == [LiveAction.CREATE, LiveAction.UPDATE]

    async def test_each_subscribe_gets_its_own_live_id(self, channel: Channel) -> None:
        conn, _ = channel
        live = LiveQuery(conn, Template.of("SELECT * FROM person"))

        first = await live.subscribe(lambda change: None)
        second = await live.subscribe(lambda change: None)

        assert first.live_id != second.live_id


class TestIteration:
    """Tests for pull-based iteration."""

    async def test_yields_in_arrival_order(self, channel: Channel) -> None:
        conn, ws = channel
        live = LiveQuery(conn, Template.of("SELECT * FROM person"))

        async with live.stream() as stream:
            for n in range(3):
                push_change(ws, stream.live_id, "CREATE", {"id": f"person:{n}"})

            seen = []
            async for change in stream:
                seen.append(change.result["id"])
                if len(seen) == 3:
                    break

        assert seen == ["person:0", "person:1", "person:2"]
        assert "kill" in ws.methods()

    async def test_changes_queue_while_consumer_is_busy(self, channel: Channel) -> None:
        conn, ws = channel
        live = LiveQuery(conn, Template.of("SELECT * FROM person"))

        async with live.stream() as stream:
            iterator = aiter(stream)
            push_change(ws, stream.live_id, "CREATE", {"id": "person:0"})
            first = await anext(iterator)

            push_change(ws, stream.live_id, "CREATE", {"id": "person:1"})
            push_change(ws, stream.live_id, "CREATE", {"id": "person:2"})
            await conn.ping()

            assert first.result["id"] == "person:0"
            assert (await anext(iterator)).result["id"] == "person:1"
            assert (await anext(iterator)).result["id"] == "person:2"
            await iterator.aclose()

    async def test_change_in_same_burst_as_live_response(self, channel: Channel, server: FakeSurrealServer) -> None:
        conn, ws = channel
        change_with_live_response(ws, server)

        async with LiveQuery(conn, Template.of("SELECT * FROM person")).stream() as stream:
            async with contextlib.aclosing(aiter(stream)) as changes, asyncio.timeout(1):
                first = await anext(changes)

        assert first.action == LiveAction.CREATE
        assert first.result == {"id": "person:1"}

    async def test_is_active(self, channel: Channel) -> None:
        conn, _ = channel
        stream = LiveQuery(conn, Template.of("SELECT * FROM person")).stream()
        assert stream.is_active is False

        await stream.start()
        assert stream.is_active is True

        await stream.kill()
        assert stream.is_active is False

    async def test_kill_failure_does_not_mask_body_exception(
        self, channel: Channel, server: FakeSurrealServer, caplog: pytest.LogCaptureFixture
    ) -> None:
        conn, ws = channel
        failing_kill(ws, server)
        stream = LiveQuery(conn, Template.of("SELECT * FROM person")).stream()
        await stream.start()
        push_change(ws, stream.live_id, "CREATE", {"id": "person:1"})

        with caplog.at_level(logging.ERROR, logger="surreal_client.streaming.live_query"):
            with pytest.raises(RuntimeError, match="consumer failed"):
                async with contextlib.aclosing(aiter(stream)) as changes:
                    async for change in changes:
                        raise RuntimeError("consumer failed")

        assert "kill" in ws.methods()
        assert "Failed to kill live query" in caplog.text
        assert conn.live_queries == []

    async def test_kill_failure_does_not_mask_context_exception(
        self, channel: Channel, server: FakeSurrealServer
    ) -> None:
        conn, ws = channel
        failing_kill(ws, server)

        with pytest.raises(RuntimeError, match="consumer failed"):
            async with LiveQuery(conn, Template.of("SELECT * FROM person")).stream():
                raise RuntimeError("consumer failed")

    async def test_kill_failure_raised_on_clean_exit(self, channel: Channel, server: FakeSurrealServer) -> None:
        conn, ws = channel
        failing_kill(ws, server)

        with pytest.raises(QueryError):
            async with LiveQuery(conn, Template.of("SELECT * FROM person")).stream():
                pass

    async def test_kill_before_any_change_ends_iteration(self, channel: Channel) -> None:
        conn, ws = channel
        stream = LiveQuery(conn, Template.of("SELECT * FROM person")).stream()
        await stream.start()

        await stream.kill()
        seen = [change async for change in stream]

        assert seen == []
        assert ws.methods().count("kill") == 1

    async def test_kill_while_waiting_ends_iteration(self, channel: Channel) -> None:
        conn, _ = channel
        stream = LiveQuery(conn, Template.of("SELECT * FROM person")).stream()
        seen: list[LiveNotification] = []

        async def consume() -> None:
            async for change in stream:
                seen.append(change)

        consumer = asyncio.create_task(consume())
        await wait_for(lambda: stream.live_id is not None)
        await stream.kill()
        await asyncio.wait_for(consumer, 1)

        assert seen == []

    async def test_exception_in_body_kills(self, channel: Channel, server: FakeSurrealServer) -> None:
        conn, ws = channel
        live = LiveQuery(conn, Template.parse("SELECT * FROM person WHERE age > {}", 18))

        async def feed() -> None:
            await wait_for(lambda: bool(server.live_ids) and conn.has_listeners(server.live_ids[0]))
            push_change(ws, server.live_ids[0], "CREATE", {"id": "person:1"})

        feeder = asyncio.create_task(feed())
        with pytest.raises(RuntimeError):
            async with contextlib.aclosing(aiter(live)) as changes:
                async for change in changes:
                    raise RuntimeError("consumer failed")
        await feeder

        assert ws.methods() == ["let", "query", "kill", "unset"]
        assert conn.live_queries == []

    async def test_exception_after_change_kills(self, channel: Channel) -> None:
        conn, ws = channel
        stream = LiveQuery(conn, Template.of("SELECT * FROM person")).stream()
        await stream.start()
        push_change(ws, stream.live_id, "CREATE", {"id": "person:1"})

        with pytest.raises(RuntimeError):
            async with contextlib.aclosing(aiter(stream)) as changes:
                async for change in changes:
                    raise RuntimeError("consumer failed")

        assert ws.methods().count("kill") == 1
        assert conn.live_queries == []

    async def test_server_killed_ends_iteration(self, channel: Channel) -> None:
        conn, ws = channel
        stream = LiveQuery(conn, Template.of("SELECT * FROM person")).stream()
        await stream.start()
        push_change(ws, stream.live_id, "CREATE", {"id": "person:1"})
        push_change(ws, stream.live_id, "KILLED", None)

        seen = [change async for change in stream]

        assert [change.action for change in seen] == [LiveAction.CREATE]
        assert "kill" not in ws.methods()

    async def test_connection_close_ends_iteration(self, channel: Channel) -> None:
        conn, _ = channel
        stream = LiveQuery(conn, Template.of("SELECT * FROM person")).stream()
        await stream.start()

        async def consume() -> list[LiveNotification]:
            return [change async for change in stream]

        consumer = asyncio.create_task(consume())
        await asyncio.sleep(0)
        await conn.close()

        assert await asyncio.wait_for(consumer, 1) == []

    async def test_cannot_iterate_twice(self, channel: Channel) -> None:
        conn, _ = channel
        stream = LiveQuery(conn, Template.of("SELECT * FROM person")).stream()
        await stream.start()
        await stream.kill()

        assert [change async for change in stream] == []
        with pytest.raises(LiveQueryError):
            async for _ in stream:
                pass

    async def test_cannot_start_twice(self, channel: Channel) -> None:
        conn, _ = channel
        stream = LiveQuery(conn, Template.of("SELECT * FROM person")).stream()
        await stream.start()

        with pytest.raises(LiveQueryError):
            await stream.start()
        await stream.kill()

    async def test_collect(self, server: FakeSurrealServer) -> None:
        conn = WebSocketConnection("ws://localhost:8000/rpc")
        ws = FakeWebSocket(responder=server)
        conn._attach(ws)
        try:

            async def feed() -> None:
                await wait_for(lambda: bool(server.live_ids) and conn.has_listeners(server.live_ids[0]))
                for n in range(5):
                    push_change(ws, server.live_ids[0], "CREATE", {"id": f"person:{n}"})

            feeder = asyncio.create_task(feed())
            changes = await collect(LiveQuery(conn, Template.of("SELECT * FROM person")), 2)
            await feeder

            assert [change.result["id"] for change in changes] == ["person:0", "person:1"]
            assert ws.methods().count("kill") == 1
        finally:
            await conn.close()
