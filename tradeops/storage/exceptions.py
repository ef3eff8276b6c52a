"""Exception hierarchy for the storage layer."""

from __future__ import annotations


class StorageError(Exception):
    """Base exception for all storage errors."""


class TransientStorageError(StorageError):
    """A read or write failed but may succeed if retried."""

