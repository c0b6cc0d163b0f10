"""
SurrealDB client streaming module.

Provides live queries with callback and async iterator consumers.
"""

from .live_query import LiveAction, LiveCallback, LiveNotification, LiveQuery, LiveStream, collect

__all__ = [
    "LiveAction",
    "LiveCallback",
    "LiveNotification",
    "LiveQuery",
    "LiveStream",
    "collect",
]
