"""
Base connection interface for the SurrealDB client.

Defines the state and lifecycle every transport shares.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Self


@dataclass
class SessionState:
    """
    Mutable session state attached to a client.

    Attributes:
        authorization: Value of the Authorization header ("Bearer ..." or "Basic ...")
        namespace: Selected namespace
        database: Selected database
    """

    authorization: str | None = None
    namespace: str | None = None
    database: str | None = None


class BaseSurrealConnection(ABC):
    """
    Abstract base class for SurrealDB transports.

    Both the HTTP transport and the WebSocket RPC channel inherit from this class.
    """

    def __init__(self, url: str, session: SessionState | None = None):
        """
        Initialize connection parameters.

        Args:
            url: SurrealDB endpoint URL
            session: Session state, shared with the owning client if given
        """
        self.url = url.rstrip("/")
        self.session = session if session is not None else SessionState()
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Check if connection is established."""
        return self._connected

    @property
    def namespace(self) -> str | None:
        return self.session.namespace

    @property
    def database(self) -> str | None:
        return self.session.database

    @abstractmethod
    async def connect(self) -> Self:
        """Establish the connection. Returns self for fluent API."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Close the connection."""
        ...

    async def __aenter__(self) -> Self:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
