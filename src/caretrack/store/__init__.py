"""Reading store: persistence interface and its implementations."""

from caretrack.store.base import ReadingStore
from caretrack.store.memory import InMemoryReadingStore
from caretrack.store.postgres import PostgresReadingStore
from caretrack.store.schema import ensure_schema

__all__ = [
    "InMemoryReadingStore",
    "PostgresReadingStore",
    "ReadingStore",
    "ensure_schema",
]
