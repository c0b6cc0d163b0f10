"""
SurrealDB client exceptions.

Custom exception hierarchy for the client.
"""


class SurrealDBError(Exception):
    """Base exception for all SurrealDB client errors."""

    def __init__(self, message: str, code: int | None = None):
        self.message = message
        self.code = code
        super().__init__(message)


class UnsupportedSchemeError(SurrealDBError):
    """Raised when a connection URI uses an unknown scheme."""

    def __init__(self, uri: str, expected: str | None = None):
        self.uri = uri
        self.expected = expected
        if expected:
            message = f"{expected} scheme not supported. got: {uri}"
        else:
            message = f"scheme not supported. got: {uri}"
        super().__init__(message)


class NoValidTargetError(SurrealDBError):
    """Raised when neither an HTTP nor a WebSocket endpoint can be resolved."""

    pass


class ConnectError(SurrealDBError):
    """Raised when a transport fails to connect or sign in."""

    pass


class InvalidCredentialsError(ConnectError):
    """Raised when the server rejects the sign-in credentials."""

    pass


class NoDriversAvailableError(SurrealDBError):
    """Raised when no transport survived connection."""

    pass


class TransportRequiredError(SurrealDBError):
    """Raised when an operation needs a transport the client does not have."""

    def __init__(self, transport: str, operation: str):
        self.transport = transport
        self.operation = operation
        super().__init__(f"{operation}() requires a {transport} driver")


class QueryError(SurrealDBError):
    """Raised when a query or RPC call fails."""

    def __init__(self, message: str, query: str | None = None, code: int | None = None):
        self.query = query
        super().__init__(message, code)


class LiveQueryError(SurrealDBError):
    """Raised when a live query operation fails."""

    pass
