"""
Live Query Streaming Implementation.

A LiveQuery is a declaration of a ``LIVE SELECT``; nothing is sent until it
is consumed. Two consumers sit on the same start/push/kill primitive:

- callback mode: ``kill = await live.subscribe(on_change)``
- iteration mode: ``async for change in live: ...``

Usage:
    live = db.live("SELECT * FROM person WHERE age > {}", 18)

    async with live.stream() as stream:
        async for change in stream:
            print(change.action, change.result)
"""

import asyncio
import itertools
import logging
import time
from collections import deque
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, Self

from ..connection.websocket import KillHandle, WebSocketConnection
from ..exceptions import LiveQueryError, SurrealDBError
from ..query import Template, index_to_name
from ..types import QueryResponse

logger = logging.getLogger(__name__)

_sequence = itertools.count()


class LiveAction(StrEnum):
    """Live query action types."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    KILLED = "KILLED"


@dataclass
class LiveNotification:
    """
    Live query notification.

    Attributes:
        id: Live query id
        action: CREATE, UPDATE or DELETE
        result: The affected record (or JSON Patch list in DIFF mode)
    """

    id: str
    action: LiveAction
    result: Any

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "LiveNotification":
        """Parse a notification payload."""
        return cls(
            id=str(data.get("id", "")),
            action=LiveAction(data.get("action", "UPDATE")),
            result=data.get("result"),
        )

    @property
    def record_id(self) -> str | None:
        """Id of the affected record, when the result is a record."""
        if isinstance(self.result, dict) and "id" in self.result:
            return str(self.result["id"])
        return None


LiveCallback = Callable[[LiveNotification], Any]


def scope_prefix() -> str:
    """Unique variable prefix for one live query invocation."""
    return f"{index_to_name(time.time_ns() // 1_000_000)}_{index_to_name(next(_sequence))}"


def extract_live_id(response: QueryResponse) -> str:
    """Read the live query id from the response to a ``LIVE`` statement."""
    first = response.first_result
    if first is None:
        raise LiveQueryError("No live query ID returned")
    if not first.is_ok:
        raise LiveQueryError(f"Failed to start live query: {first.result}")

    result = first.result
    if isinstance(result, dict) and "result" in result:
        result = result["result"]
    if result is None or isinstance(result, (dict, list)):
        raise LiveQueryError("Invalid live query response")
    # UUID objects from CBOR decoding are stringified too
    return str(result)


class LiveQuery:
    """
    A live query declaration bound to a WebSocket connection.

    Every ``subscribe()`` call and every iteration starts its own live query
    on the server, with its own live id.
    """

    def __init__(self, connection: WebSocketConnection, template: Template):
        """
        Initialize live query.

        Args:
            connection: WebSocket connection to use
            template: The query after ``LIVE``, e.g. ``SELECT * FROM person``
        """
        self.connection = connection
        self.template = template

    async def start(self) -> tuple[str, list[str]]:
        """
        Start one live query on the server.

        Interpolated values are bound as session variables under a prefix
        unique to this invocation, because the server re-evaluates them on
        every push.

        Returns:
            The live id and the names of the session variables it uses
        """
        prefix = scope_prefix()
        variables = self.template.variables(prefix)
        for name, value in variables.items():
            await self.connection.let(name, value)

        sql = f"LIVE {self.template.render(prefix)}"
        live_id = extract_live_id(await self.connection.query(sql))
        logger.debug("Live query %s started: %s", live_id, sql)
        return live_id, list(variables)

    async def subscribe(self, callback: LiveCallback) -> KillHandle:
        """
        Start the live query and call ``callback`` for every notification.

        ``callback`` may be a plain function or a coroutine function.

        Returns:
            Handle that stops the subscription when awaited
        """
        live_id, variables = await self.start()

        def listener(payload: dict[str, Any]) -> Any:
            return callback(LiveNotification.from_dict(payload))

        return self.connection.listen(live_id, listener, variables=variables)

    def stream(self) -> "LiveStream":
        """A pull-based stream over a new subscription."""
        return LiveStream(self)

    def __aiter__(self) -> AsyncIterator[LiveNotification]:
        return self.stream().__aiter__()


class LiveStream:
    """
    Pull-based consumer of one live query subscription.

    Notifications are queued as they arrive and handed out in arrival order.
    The subscription is killed on every exit from the iteration. A stream
    cannot be iterated twice.
    """

    def __init__(self, live_query: LiveQuery):
        self.live_query = live_query
        self._queue: deque[LiveNotification] = deque()
        self._wake = asyncio.Event()
        self._kill: KillHandle | None = None
        self._started = False
        self._iterating = False
        self._finished = False

    @property
    def live_id(self) -> str | None:
        return self._kill.live_id if self._kill else None

    @property
    def is_active(self) -> bool:
        return self._started and not self._finished

    async def start(self) -> str:
        """Start the subscription. Returns the live id."""
        if self._started:
            raise LiveQueryError("Live stream already started")
        self._started = True

        live_id, variables = await self.live_query.start()
        self._kill = self.live_query.connection.listen(
            live_id,
            self._push,
            on_close=self._finish,
            variables=variables,
        )
        return live_id

    def _push(self, payload: dict[str, Any]) -> None:
        self._queue.append(LiveNotification.from_dict(payload))
        self._wake.set()

    def _finish(self) -> None:
        self._finished = True
        self._wake.set()

    async def kill(self) -> None:
        """Stop the subscription; a waiting iteration ends after draining the queue."""
        self._finish()
        if self._kill is not None:
            await self._kill()

    async def _release(self) -> None:
        """Kill on the way out without masking the exception that ended the consumer."""
        try:
            await self.kill()
        except SurrealDBError:
            logger.exception("Failed to kill live query %s", self.live_id)

    async def __aiter__(self) -> AsyncIterator[LiveNotification]:
        if self._iterating:
            raise LiveQueryError("Live stream cannot be iterated twice")
        self._iterating = True

        if not self._started:
            await self.start()

        try:
            while True:
                if not self._queue:
                    if self._finished:
                        return
                    await self._wake.wait()
                    self._wake.clear()
                    continue
                yield self._queue.popleft()
        finally:
            await self._release()

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        if exc_type is None:
            await self.kill()
        else:
            await self._release()


async def collect(live_query: LiveQuery, limit: int) -> list[LiveNotification]:
    """Gather the next ``limit`` notifications of a new subscription."""
    changes: list[LiveNotification] = []
    async with live_query.stream() as stream:
        async for change in stream:
            changes.append(change)
            if len(changes) >= limit:
                break
    return changes
