"""
Item stores for ItemDB.

This module provides the two persistence contracts used by the update path:
- VersionedRecordStore: latest value per item, written by conditional save
- HistoryStore: append-only log of superseded values

Backends:
- SQLite (durable, safe across threads and processes)
- In-memory (for testing)

Invariants:
    - conditional_save() checks the version and writes atomically
    - History entries are never updated or deleted
    - Failed writes must not result in partial writes
"""

from .base import (
    DuplicateItemError,
    HistoricalEntry,
    HistoryStore,
    ItemValue,
    LatestRecord,
    StoreError,
    StoreUnavailableError,
    VersionConflictError,
    VersionedRecordStore,
    create_stores,
)
from .memory import InMemoryHistoryStore, InMemoryRecordStore
from .sqlite import SqliteDatabase, SqliteHistoryStore, SqliteRecordStore

__all__ = [
    # Protocols and types
    "VersionedRecordStore",
    "HistoryStore",
    "LatestRecord",
    "HistoricalEntry",
    "ItemValue",
    "StoreError",
    "StoreUnavailableError",
    "VersionConflictError",
    "DuplicateItemError",
    # Factory
    "create_stores",
    # Implementations
    "InMemoryRecordStore",
    "InMemoryHistoryStore",
    "SqliteDatabase",
    "SqliteRecordStore",
    "SqliteHistoryStore",
]
