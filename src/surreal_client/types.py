"""
Type definitions for SurrealDB responses.

Both transports answer queries with a list of per-statement envelopes
``{time, status, result}``; these wrappers give them a typed shape.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ResponseStatus(str, Enum):
    """Status of a statement result."""

    OK = "OK"
    ERR = "ERR"


@dataclass
class QueryResult:
    """
    Result of a single query statement.

    Attributes:
        status: OK or ERR
        result: The statement result (records, scalar, error detail, ...)
        time: Execution time as reported by SurrealDB
    """

    status: ResponseStatus
    result: Any = None
    time: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QueryResult":
        """Parse a statement envelope."""
        # HTTP errors use "detail" instead of "result"
        result = data.get("result", data.get("detail"))
        return cls(
            status=ResponseStatus(data.get("status", "OK")),
            result=result,
            time=data.get("time", ""),
        )

    @property
    def is_ok(self) -> bool:
        """Check if the statement succeeded."""
        return self.status == ResponseStatus.OK

    @property
    def records(self) -> list[dict[str, Any]]:
        """Result as a list of records. Empty if not applicable."""
        if isinstance(self.result, list):
            return [item for item in self.result if isinstance(item, dict)]
        if isinstance(self.result, dict):
            return [self.result]
        return []

    @property
    def first(self) -> dict[str, Any] | None:
        """First record or None."""
        records = self.records
        return records[0] if records else None


@dataclass
class QueryResponse:
    """
    Response to a query: one QueryResult per statement.
    """

    results: list[QueryResult] = field(default_factory=list)
    raw: Any = None

    @classmethod
    def from_result(cls, data: Any) -> "QueryResponse":
        """Parse the envelope list returned by ``query``/``sql``."""
        results: list[QueryResult] = []
        items = data if isinstance(data, list) else [data] if data is not None else []
        for item in items:
            if isinstance(item, dict) and "status" in item:
                results.append(QueryResult.from_dict(item))
            else:
                results.append(QueryResult(status=ResponseStatus.OK, result=item))
        return cls(results=results, raw=data)

    @property
    def is_ok(self) -> bool:
        """Check if every statement succeeded."""
        return all(r.is_ok for r in self.results)

    @property
    def first_result(self) -> QueryResult | None:
        """First statement result."""
        return self.results[0] if self.results else None

    @property
    def errors(self) -> list[QueryResult]:
        """Failed statements."""
        return [r for r in self.results if not r.is_ok]

    def __len__(self) -> int:
        return len(self.results)

    def __getitem__(self, index: int) -> QueryResult:
        return self.results[index]
