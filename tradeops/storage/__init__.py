"""Storage layer — abstract store plus in-memory and SQLite implementations."""

from tradeops.storage.base import MetricStore
from tradeops.storage.exceptions import StorageError, TransientStorageError
from tradeops.storage.memory import MemoryStore
from tradeops.storage.sqlite import SQLiteStore

__all__ = [
    "MemoryStore",
    "MetricStore",
    "SQLiteStore",
    "StorageError",
    "TransientStorageError",
]
