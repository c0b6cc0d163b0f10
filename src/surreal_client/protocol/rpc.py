"""
SurrealDB RPC Protocol Implementation.

Handles the JSON-RPC style messaging format used over the WebSocket channel.
Supports both JSON and CBOR serialization formats.
"""

import json
from dataclasses import dataclass, field
from datetime import date, datetime, time
from decimal import Decimal
from typing import Any
from uuid import UUID

from . import cbor as cbor_module

# Request ids wrap at the largest integer a JSON number represents exactly.
MAX_REQUEST_ID = 2**53 - 1


class SurrealJSONEncoder(json.JSONEncoder):
    """
    JSON encoder for values the standard encoder rejects.

    - datetime, date, time → ISO 8601 string
    - Decimal → string (keeps precision)
    - UUID → string
    - RecordId → "table:id"
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, (datetime, date, time)):
            return obj.isoformat()
        if isinstance(obj, (Decimal, UUID, cbor_module.RecordId)):
            return str(obj)
        return super().default(obj)


@dataclass
class RPCRequest:
    """
    RPC Request message format.

    Attributes:
        id: Request identifier used to match the response
        method: RPC method name (query, select, create, etc.)
        params: Positional method parameters, or None for parameterless methods
    """

    method: str
    params: list[Any] | None = None
    id: int = 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to the wire dictionary. ``params`` is omitted when absent."""
        data: dict[str, Any] = {"id": self.id, "method": self.method}
        if self.params is not None:
            data["params"] = self.params
        return data

    def to_json(self) -> str:
        """Serialize to a JSON text frame."""
        return json.dumps(self.to_dict(), cls=SurrealJSONEncoder)

    def to_cbor(self) -> bytes:
        """Serialize to a CBOR binary frame."""
        return cbor_module.encode(self.to_dict())


@dataclass
class RPCError:
    """
    RPC Error format.

    Attributes:
        code: Error code
        message: Error message
    """

    code: int
    message: str

    @classmethod
    def from_dict(cls, data: dict[str, Any] | str) -> "RPCError":
        if isinstance(data, str):
            return cls(code=-1, message=data)
        return cls(
            code=data.get("code", -1),
            message=data.get("message", "Unknown error"),
        )


@dataclass
class RPCResponse:
    """
    RPC Response message format.

    Attributes:
        id: Request identifier this response matches
        result: Result data (if successful)
        error: Error information (if failed)
    """

    id: int
    result: Any = None
    error: RPCError | None = None

    @property
    def is_error(self) -> bool:
        """Check if response is an error."""
        return self.error is not None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RPCResponse":
        error = None
        if data.get("error") is not None:
            error = RPCError.from_dict(data["error"])

        return cls(
            id=int(data.get("id", 0)),
            result=data.get("result"),
            error=error,
        )


@dataclass
class Frame:
    """
    A decoded inbound message.

    Either a response to a pending request (``request_id`` set) or a live
    query notification (``live_id`` set). Frames matching neither are dropped
    by the channel.
    """

    raw: dict[str, Any] = field(default_factory=dict)
    request_id: int | None = None
    live_id: str | None = None

    @property
    def notification(self) -> dict[str, Any]:
        """The live notification payload, flattened to ``{id, action, result}``."""
        result = self.raw.get("result")
        if isinstance(result, dict) and "action" in result:
            return result
        return self.raw

    @classmethod
    def parse(cls, message: Any) -> "Frame":
        """Classify a decoded message (from JSON or CBOR)."""
        if not isinstance(message, dict):
            return cls()

        # Live notifications: {"result": {"id": <live id>, "action": ...}}
        # or the flat {"id": <live id>, "action": ...} form.
        result = message.get("result")
        if isinstance(result, dict) and "action" in result and result.get("id") is not None:
            if message.get("id") is None:
                return cls(raw=message, live_id=str(result["id"]))
        if "action" in message and message.get("id") is not None:
            return cls(raw=message, live_id=str(message["id"]))

        # SurrealDB may echo ids back as strings
        msg_id = message.get("id")
        if msg_id is not None:
            try:
                return cls(raw=message, request_id=int(msg_id))
            except (ValueError, TypeError):
                pass

        return cls(raw=message)


def next_request_id(current: int) -> int:
    """Return the id following ``current``, wrapping at MAX_REQUEST_ID."""
    return (current + 1) % MAX_REQUEST_ID


class RPCMethod:
    """RPC method name constants."""

    # Authentication
    SIGNIN = "signin"
    SIGNUP = "signup"
    AUTHENTICATE = "authenticate"
    INVALIDATE = "invalidate"
    INFO = "info"

    # Connection
    USE = "use"
    PING = "ping"
    VERSION = "version"

    # CRUD
    SELECT = "select"
    CREATE = "create"
    UPDATE = "update"
    MERGE = "merge"
    PATCH = "patch"
    DELETE = "delete"

    # Query
    QUERY = "query"

    # Live Queries
    KILL = "kill"

    # Variables
    LET = "let"
    UNSET = "unset"
