"""
Connection configuration.

Credentials and connection settings as pydantic models, with environment
loading for scripts and the CLI.
"""

import os
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from .exceptions import NoValidTargetError


class Credentials(BaseModel):
    """
    Sign-in credentials.

    Root credentials only carry ``user`` and ``password``. Namespace and
    database credentials add ``namespace``/``database``; scope credentials add
    ``scope`` plus any extra fields the scope's SIGNIN clause expects.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    user: str | None = None
    password: str | None = Field(default=None, alias="pass")
    namespace: str | None = Field(default=None, alias="NS")
    database: str | None = Field(default=None, alias="DB")
    scope: str | None = Field(default=None, alias="SC")

    def to_wire(self) -> dict[str, Any]:
        """Sign-in payload as sent to SurrealDB."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ConnectionSettings(BaseModel):
    """
    Settings for opening a client connection.

    ``url`` is a single endpoint from which the other transport is inferred.
    ``http_url`` / ``ws_url`` name explicit endpoints and take precedence.
    """

    url: str | None = None
    http_url: str | None = None
    ws_url: str | None = None
    user: str | None = None
    password: str | None = None
    namespace: str | None = None
    database: str | None = None
    protocol: Literal["json", "cbor"] = "json"

    @classmethod
    def from_env(cls, **overrides: Any) -> "ConnectionSettings":
        """Build settings from SURREALDB_* environment variables."""
        values: dict[str, Any] = {
            "url": os.getenv("SURREALDB_URL"),
            "http_url": os.getenv("SURREALDB_HTTP_URL"),
            "ws_url": os.getenv("SURREALDB_WS_URL"),
            "user": os.getenv("SURREALDB_USER"),
            "password": os.getenv("SURREALDB_PASS"),
            "namespace": os.getenv("SURREALDB_NAMESPACE"),
            "database": os.getenv("SURREALDB_DATABASE"),
            "protocol": os.getenv("SURREALDB_PROTOCOL", "json"),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    @property
    def target(self) -> str | dict[str, str | None]:
        """Connection target accepted by ``resolve_target``."""
        if self.http_url or self.ws_url:
            return {"http": self.http_url, "ws": self.ws_url}
        if self.url:
            return self.url
        raise NoValidTargetError("no connection url configured")

    @property
    def credentials(self) -> Credentials:
        """Root credentials built from ``user``/``password``."""
        return Credentials(user=self.user, password=self.password)
