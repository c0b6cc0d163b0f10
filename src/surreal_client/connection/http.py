"""
HTTP Connection Implementation for the SurrealDB client.

Provides the stateless request/response transport. Every call re-sends the
authorization, namespace and database headers from the session state, so
there is no server-side session to keep in sync.
"""

import base64
import logging
from typing import Any, Self

import httpx

from .base import BaseSurrealConnection, SessionState
from ..config import Credentials
from ..exceptions import ConnectError, InvalidCredentialsError, QueryError
from ..query import Template, serialize
from ..types import QueryResponse

logger = logging.getLogger(__name__)


class KeyResource:
    """
    REST-style CRUD on ``/key/:table``.

    Obtained with ``HTTPConnection.key(table)``.
    """

    def __init__(self, connection: "HTTPConnection", table: str):
        self.connection = connection
        self.table = table

    def _path(self, record_id: str | None = None) -> str:
        if record_id is None:
            return f"/key/{self.table}"
        return f"/key/{self.table}/{record_id}"

    async def get(self, record_id: str | None = None) -> QueryResponse:
        """`GET /key/:table` or `GET /key/:table/:id`."""
        return await self.connection._envelope("GET", self._path(record_id))

    async def post(self, data: Any, record_id: str | None = None) -> QueryResponse:
        """`POST /key/:table` (data may be a list) or `POST /key/:table/:id`."""
        return await self.connection._envelope("POST", self._path(record_id), json=data)

    async def put(self, record_id: str, data: dict[str, Any]) -> QueryResponse:
        """`PUT /key/:table/:id` - replace the record."""
        return await self.connection._envelope("PUT", self._path(record_id), json=data)

    async def patch(self, record_id: str, data: dict[str, Any]) -> QueryResponse:
        """`PATCH /key/:table/:id` - merge fields into the record."""
        return await self.connection._envelope("PATCH", self._path(record_id), json=data)

    async def delete(self, record_id: str | None = None) -> QueryResponse:
        """`DELETE /key/:table` or `DELETE /key/:table/:id`."""
        return await self.connection._envelope("DELETE", self._path(record_id))


class HTTPConnection(BaseSurrealConnection):
    """
    HTTP-based connection to SurrealDB.

    This connection is stateless - each request is independent and carries
    its own authorization and namespace/database headers.
    """

    def __init__(
        self,
        url: str,
        session: SessionState | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize HTTP connection.

        Args:
            url: SurrealDB HTTP URL (e.g., "http://localhost:8000")
            session: Session state shared with the owning client
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (e.g. ``httpx.MockTransport``)
        """
        super().__init__(url, session)
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def headers(self) -> dict[str, str]:
        """Headers sent with every data request."""
        return {
            "Accept": "application/json",
            "Authorization": self.session.authorization or "",
            "NS": self.session.namespace or "",
            "DB": self.session.database or "",
        }

    async def connect(self) -> Self:
        """Create the HTTP client. Returns self for fluent API."""
        if self._connected:
            return self

        self._client = httpx.AsyncClient(
            base_url=self.url,
            timeout=self.timeout,
            transport=self._transport,
        )
        self._connected = True
        return self

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
        self._connected = False

    def _require_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise ConnectError("Not connected. Call connect() first.")
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        client = self._require_client()
        headers = {**self.headers, **kwargs.pop("headers", {})}
        try:
            response = await client.request(method, path, headers=headers, **kwargs)
        except httpx.RequestError as e:
            raise ConnectError(f"Request failed: {e}") from e
        logger.debug("%s %s -> %s", method, path, response.status_code)
        return response

    async def _envelope(self, method: str, path: str, **kwargs: Any) -> QueryResponse:
        """Send a request answered with the ``[{time, status, result}]`` envelope."""
        response = await self._request(method, path, **kwargs)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise QueryError(
                message=f"HTTP error: {e.response.status_code} - {e.response.text}",
                query=kwargs.get("content") if isinstance(kwargs.get("content"), str) else None,
                code=e.response.status_code,
            ) from e
        return QueryResponse.from_result(response.json())

    def key(self, table: str) -> KeyResource:
        """CRUD resource for ``table``."""
        return KeyResource(self, table)

    async def signin(self, credentials: Credentials) -> str:
        """
        Sign in via `POST /signin`.

        Returns:
            The Authorization header value: ``Bearer <token>`` when the server
            issues a token, otherwise ``Basic <user:pass>``.

        Raises:
            InvalidCredentialsError: If the server rejects the credentials
        """
        response = await self._request(
            "POST",
            "/signin",
            json=credentials.to_wire(),
            headers={"Authorization": ""},
        )
        if not response.is_success:
            raise InvalidCredentialsError(
                f"invalid credentials: {response.status_code} - {response.text}",
                code=response.status_code,
            )

        token = None
        try:
            token = response.json().get("token")
        except ValueError:
            pass

        if token:
            authorization = f"Bearer {token}"
        else:
            raw = f"{credentials.user or ''}:{credentials.password or ''}".encode()
            authorization = f"Basic {base64.b64encode(raw).decode()}"

        self.session.authorization = authorization
        return authorization

    async def signup(self, data: dict[str, Any]) -> dict[str, Any]:
        """Sign up a scope user via `POST /signup`."""
        response = await self._request("POST", "/signup", json=data, headers={"Authorization": ""})
        if not response.is_success:
            raise InvalidCredentialsError(f"signup failed: {response.text}", code=response.status_code)
        result: dict[str, Any] = response.json()
        return result

    async def sql(self, query: "str | Template", vars: dict[str, Any] | None = None) -> QueryResponse:
        """
        Execute SurrealQL via `POST /sql`.

        Template values are sent as query-string parameters, never inlined.
        """
        if isinstance(query, Template):
            text = query.render()
            params = query.query_params()
        else:
            text = query
            params = None
        if vars:
            params = {**(params or {}), **{k: serialize(v) for k, v in vars.items()}}
        return await self._envelope("POST", "/sql", content=text, params=params)

    async def health(self) -> bool:
        """Check server health via `GET /health`."""
        if not self._client:
            return False

        try:
            response = await self._client.get("/health")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def status(self) -> bool:
        """Check server status via `GET /status`."""
        if not self._client:
            return False

        try:
            response = await self._client.get("/status")
            return response.status_code == 200
        except httpx.HTTPError:
            return False

    async def version(self) -> str:
        """Server version via `GET /version`."""
        response = await self._request("GET", "/version")
        return response.text.strip()

    async def export(self) -> bytes:
        """Export the selected database via `GET /export`."""
        response = await self._request("GET", "/export", headers={"Accept": "application/octet-stream"})
        if not response.is_success:
            raise QueryError(f"export failed: {response.text}", code=response.status_code)
        return response.content

    async def import_(self, data: bytes | str) -> QueryResponse:
        """Import a SurrealQL dump via `POST /import`."""
        return await self._envelope("POST", "/import", content=data)
