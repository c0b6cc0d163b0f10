"""
SurrealDB client protocol module.

Implements the RPC frame format used over WebSocket, in JSON or CBOR.
"""

from .cbor import RecordId, decode as cbor_decode, encode as cbor_encode
from .rpc import MAX_REQUEST_ID, Frame, RPCError, RPCMethod, RPCRequest, RPCResponse

__all__ = [
    # RPC
    "MAX_REQUEST_ID",
    "Frame",
    "RPCRequest",
    "RPCResponse",
    "RPCError",
    "RPCMethod",
    # CBOR
    "RecordId",
    "cbor_encode",
    "cbor_decode",
]
