"""
CBOR frame codec for the SurrealDB RPC channel.

Used when a WebSocket connection is opened with ``protocol="cbor"``.
SurrealDB extends CBOR with custom tags:

- TAG_NONE (6): NONE value
- TAG_TABLE (7): Table name
- TAG_RECORDID (8): Record ID [table, id]
- TAG_STRING_UUID (9): UUID as string (live query ids)
- TAG_STRING_DECIMAL (10): Decimal as string
- TAG_DATETIME (12): DateTime (ISO 8601)
- TAG_BINARY_UUID (37): UUID as 16 bytes
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

import cbor2
from cbor2 import CBORTag

TAG_NONE = 6
TAG_TABLE = 7
TAG_RECORDID = 8
TAG_STRING_UUID = 9
TAG_STRING_DECIMAL = 10
TAG_DATETIME = 12
TAG_BINARY_UUID = 37


@dataclass(frozen=True)
class RecordId:
    """A SurrealDB record id (``table:id``)."""

    table: str
    id: Any

    def __str__(self) -> str:
        return f"{self.table}:{self.id}"

    @classmethod
    def parse(cls, value: str) -> RecordId:
        """Parse ``table:id``."""
        if ":" in value:
            table, id_part = value.split(":", 1)
            return cls(table=table, id=id_part)
        raise ValueError(f"Invalid record ID format: {value}")


def _to_tagged(value: Any) -> Any:
    """
    Replace values SurrealDB expects as custom tags.

    cbor2 has its own encodings for datetime, UUID and Decimal, so these are
    tagged up front rather than in a ``default`` hook.
    """
    if isinstance(value, dict):
        return {k: _to_tagged(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_to_tagged(v) for v in value]
    if isinstance(value, RecordId):
        return CBORTag(TAG_RECORDID, [value.table, _to_tagged(value.id)])
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return CBORTag(TAG_DATETIME, value.isoformat())
    if isinstance(value, UUID):
        return CBORTag(TAG_STRING_UUID, str(value))
    if isinstance(value, Decimal):
        return CBORTag(TAG_STRING_DECIMAL, str(value))
    return value


def _tag_decoder(decoder: Any, tag: Any) -> Any:
    if tag.tag == TAG_NONE:
        return None
    if tag.tag == TAG_TABLE:
        return str(tag.value)
    if tag.tag == TAG_RECORDID:
        if isinstance(tag.value, list) and len(tag.value) == 2:
            return RecordId(table=tag.value[0], id=tag.value[1])
        if isinstance(tag.value, str):
            return RecordId.parse(tag.value)
        return tag.value
    if tag.tag == TAG_STRING_UUID:
        return UUID(tag.value)
    if tag.tag == TAG_BINARY_UUID:
        return UUID(bytes=bytes(tag.value))
    if tag.tag == TAG_STRING_DECIMAL:
        return Decimal(tag.value)
    if tag.tag == TAG_DATETIME and isinstance(tag.value, str):
        return datetime.fromisoformat(tag.value.replace("Z", "+00:00"))
    return tag.value


def encode(data: Any) -> bytes:
    """Encode a frame to CBOR bytes."""
    result: bytes = cbor2.dumps(_to_tagged(data))
    return result


def decode(data: bytes) -> Any:
    """Decode CBOR bytes to Python objects."""
    return cbor2.loads(data, tag_hook=_tag_decoder)
