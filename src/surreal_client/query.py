"""
Parameterised query templates.

Interpolated values are never inlined into the query text. Each position is
replaced by a generated ``$name`` placeholder and the values travel next to
the query: as the vars map over WebSocket, as query-string parameters over
HTTP.

Usage:
    tpl = Template.parse("SELECT * FROM person WHERE age > {} AND name = {}", 18, "Tobie")
    tpl.render()     # 'SELECT * FROM person WHERE age > $a AND name = $b'
    tpl.variables()  # {'a': 18, 'b': 'Tobie'}
"""

import json
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from .protocol.rpc import SurrealJSONEncoder

PLACEHOLDER = "{}"


def index_to_name(n: int) -> str:
    """
    Map a non-negative integer to a lowercase name.

    Bijective base-26: 0 -> "a", 25 -> "z", 26 -> "aa", 27 -> "ab", ...
    """
    if n < 0:
        raise ValueError(f"index must be non-negative, got {n}")
    name = ""
    m = n
    while m >= 0:
        name = chr(m % 26 + 97) + name
        m = m // 26 - 1
    return name


def serialize(value: Any) -> str:
    """Serialize a value for an HTTP query-string parameter."""
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, cls=SurrealJSONEncoder)
    if isinstance(value, bool):
        return "true" if value else "false"
    if value is None:
        return "null"
    return str(value)


@dataclass(frozen=True)
class Template:
    """
    Query text split around its interpolations.

    ``strings`` always has exactly one more element than ``args``, in the
    manner of a tagged template literal.
    """

    strings: tuple[str, ...]
    args: tuple[Any, ...] = ()

    def __post_init__(self) -> None:
        if len(self.strings) != len(self.args) + 1:
            raise ValueError(
                f"template has {len(self.strings) - 1} placeholders but {len(self.args)} arguments"
            )

    @classmethod
    def parse(cls, text: str, *args: Any) -> "Template":
        """Build a template from text using ``{}`` as the placeholder."""
        return cls(tuple(text.split(PLACEHOLDER)), tuple(args))

    @classmethod
    def of(cls, query: "str | Template", args: Sequence[Any] = ()) -> "Template":
        """
        Coerce a string (plus arguments) or an existing template.

        A string without arguments is taken verbatim, braces included.
        """
        if isinstance(query, Template):
            if args:
                raise ValueError("arguments cannot be combined with a Template")
            return query
        if not args:
            return cls((query,))
        return cls.parse(query, *args)

    def names(self, prefix: str = "") -> list[str]:
        """Placeholder names, optionally scoped by ``prefix``."""
        scope = f"{prefix}__" if prefix else ""
        return [f"{scope}{index_to_name(i)}" for i in range(len(self.args))]

    def render(self, prefix: str = "") -> str:
        """Query text with ``$name`` placeholders."""
        parts = [self.strings[0]]
        for name, text in zip(self.names(prefix), self.strings[1:]):
            parts.append(f"${name}")
            parts.append(text)
        return "".join(parts)

    def variables(self, prefix: str = "") -> dict[str, Any]:
        """Placeholder name -> value mapping."""
        return dict(zip(self.names(prefix), self.args))

    def query_params(self) -> dict[str, str] | None:
        """Serialized variables for the HTTP ``/sql`` endpoint."""
        if not self.args:
            return None
        return {name: serialize(value) for name, value in self.variables().items()}
