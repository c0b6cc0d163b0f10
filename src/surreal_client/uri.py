"""
Transport URI resolution.

Turns one connection string, or an explicit pair of endpoints, into the HTTP
and WebSocket URIs the client should try, remembering which of them were
guessed from the other.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import SplitResult, urlsplit, urlunsplit

from .exceptions import NoValidTargetError, UnsupportedSchemeError

HTTP_SCHEMES = {"http": "ws", "https": "wss"}
WS_SCHEMES = {"ws": "http", "wss": "https"}
RPC_SEGMENT = "rpc"


class Origin(StrEnum):
    """Where an endpoint came from."""

    EXPLICIT = "explicit"
    INFERRED = "inferred"
    ABSENT = "absent"


@dataclass(frozen=True)
class ConnectionTarget:
    """
    Resolved connection endpoints.

    Attributes:
        http: HTTP endpoint, or None
        ws: WebSocket endpoint, or None
        http_origin: How the HTTP endpoint was obtained
        ws_origin: How the WebSocket endpoint was obtained
    """

    http: str | None
    ws: str | None
    http_origin: Origin = Origin.ABSENT
    ws_origin: Origin = Origin.ABSENT

    @property
    def inferred(self) -> str | None:
        """Name of the inferred transport ("http" or "ws"), if any."""
        if self.http_origin == Origin.INFERRED:
            return "http"
        if self.ws_origin == Origin.INFERRED:
            return "ws"
        return None


def _scheme(uri: str) -> str:
    return urlsplit(uri).scheme.lower()


def http_to_ws(uri: str) -> str:
    """
    Derive the RPC WebSocket URI from an HTTP URI.

    ``http://host:8000`` -> ``ws://host:8000/rpc``
    """
    parts = urlsplit(uri)
    path = parts.path if parts.path.endswith("/") else parts.path + "/"
    return urlunsplit(
        SplitResult(
            scheme=HTTP_SCHEMES[parts.scheme.lower()],
            netloc=parts.netloc,
            path=path + RPC_SEGMENT,
            query=parts.query,
            fragment=parts.fragment,
        )
    )


def ws_to_http(uri: str) -> str:
    """
    Derive the HTTP URI from an RPC WebSocket URI.

    ``ws://host:8000/rpc`` -> ``http://host:8000``
    """
    parts = urlsplit(uri)
    segments = parts.path.rstrip("/").split("/")
    if segments[-1] == RPC_SEGMENT:
        segments.pop()
    return urlunsplit(
        SplitResult(
            scheme=WS_SCHEMES[parts.scheme.lower()],
            netloc=parts.netloc,
            path="/".join(segments).rstrip("/"),
            query=parts.query,
            fragment=parts.fragment,
        )
    )


def resolve_target(uri: "str | Mapping[str, str | None] | ConnectionTarget") -> ConnectionTarget:
    """
    Resolve the endpoints to connect to.

    Args:
        uri: A single HTTP or WebSocket URI, or a mapping with optional
            ``http`` and ``ws`` keys. Only the single-string form infers the
            missing endpoint.

    Returns:
        The resolved ConnectionTarget

    Raises:
        UnsupportedSchemeError: If a URI has an unexpected scheme
        NoValidTargetError: If no endpoint could be resolved
    """
    if isinstance(uri, ConnectionTarget):
        return uri

    if isinstance(uri, str):
        scheme = _scheme(uri)
        if scheme in HTTP_SCHEMES:
            return ConnectionTarget(
                http=uri,
                ws=http_to_ws(uri),
                http_origin=Origin.EXPLICIT,
                ws_origin=Origin.INFERRED,
            )
        if scheme in WS_SCHEMES:
            return ConnectionTarget(
                http=ws_to_http(uri),
                ws=uri,
                http_origin=Origin.INFERRED,
                ws_origin=Origin.EXPLICIT,
            )
        raise UnsupportedSchemeError(uri)

    http = uri.get("http")
    ws = uri.get("ws")

    if http is not None and _scheme(http) not in HTTP_SCHEMES:
        raise UnsupportedSchemeError(http, expected="http")
    if ws is not None and _scheme(ws) not in WS_SCHEMES:
        raise UnsupportedSchemeError(ws, expected="ws")

    if not http and not ws:
        raise NoValidTargetError("no valid connection uri found")

    return ConnectionTarget(
        http=http or None,
        ws=ws or None,
        http_origin=Origin.EXPLICIT if http else Origin.ABSENT,
        ws_origin=Origin.EXPLICIT if ws else Origin.ABSENT,
    )
