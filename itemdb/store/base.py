"""
Base protocols and types for the item stores.

This module defines the two store contracts the update path relies on,
the record types they persist, and the store error taxonomy:

- VersionedRecordStore: one "latest" record per item, stamped with an
  integer version and written only through a conditional save
- HistoryStore: append-only log of values displaced by committed updates

Invariants:
    - A LatestRecord's version equals the number of committed updates
    - conditional_save() checks the version and writes in one atomic step
    - HistoricalEntry rows are never updated or deleted
    - History order follows the version of the commit that displaced each
      value, then insertion order

How to change safely:
    - Protocol changes require updating every backend
    - Never split conditional_save() into a separate read and write
    - Keep row mapping explicit in each backend (no reflection)
"""

from __future__ import annotations

import time
from abc import abstractmethod
from dataclasses import dataclass, field, replace
from typing import (
    TYPE_CHECKING,
    Any,
    Optional,
    Protocol,
    Union,
    runtime_checkable,
)

if TYPE_CHECKING:
    from ..config import Settings

ItemValue = Union[str, bytes]


class StoreError(Exception):
    """Base exception for store operations.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "STORE_ERROR"
        self.details = details or {}


class StoreUnavailableError(StoreError):
    """The backend could not be reached or refused the operation."""

    def __init__(self, message: str, backend: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="STORE_UNAVAILABLE",
            details={"backend": backend},
        )
        self.backend = backend


class VersionConflictError(StoreError):
    """Conditional save found a different version than the writer read.

    Attributes:
        item_id: Item whose save was rejected
        expected_version: Version the writer observed
        actual_version: Version currently stored (None if the row is gone)
    """

    def __init__(
        self,
        item_id: int,
        expected_version: int,
        actual_version: Optional[int],
    ) -> None:
        super().__init__(
            f"Version conflict on item {item_id}: expected {expected_version}, "
            f"found {actual_version}",
            code="VERSION_CONFLICT",
            details={
                "item_id": item_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.item_id = item_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class DuplicateItemError(StoreError):
    """insert() was called for an item id that already exists."""

    def __init__(self, item_id: int) -> None:
        super().__init__(
            f"Item already exists: {item_id}",
            code="DUPLICATE_ITEM",
            details={"item_id": item_id},
        )
        self.item_id = item_id


@dataclass(frozen=True)
class LatestRecord:
    """Current value of an item.

    Attributes:
        item_id: Immutable identity key
        value: Current payload
        version: Number of committed updates (0 right after insert)
    """

    item_id: int
    value: ItemValue
    version: int = 0

    def next(self, value: ItemValue) -> tuple[LatestRecord, ItemValue]:
        """Build the candidate that would replace this record.

        Returns:
            Tuple of (candidate with value and version + 1, value being replaced)
        """
        return replace(self, value=value, version=self.version + 1), self.value

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for display."""
        return {
            "item_id": self.item_id,
            "value": _display_value(self.value),
            "version": self.version,
        }


@dataclass(frozen=True)
class HistoricalEntry:
    """A value that was current right before a committed update.

    Attributes:
        item_id: Item the value belonged to
        value: Superseded payload
        archived_at: When the entry was appended (Unix ms)
    """

    item_id: int
    value: ItemValue
    archived_at: int = field(default_factory=lambda: int(time.time() * 1000))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for display."""
        return {
            "item_id": self.item_id,
            "value": _display_value(self.value),
            "archived_at": self.archived_at,
        }


def _display_value(value: ItemValue) -> Any:
    if isinstance(value, bytes):
        return value.hex()
    return value


def check_next_version(record: LatestRecord, expected_version: int) -> None:
    """Reject candidates that would skip or repeat a version.

    Raises:
        ValueError: If record.version is not expected_version + 1
    """
    if record.version != expected_version + 1:
        raise ValueError(
            f"Candidate for item {record.item_id} has version {record.version}, "
            f"expected {expected_version + 1}"
        )


@runtime_checkable
class VersionedRecordStore(Protocol):
    """Protocol for stores holding the latest record of each item.

    Concurrency contract:
        - conditional_save() compares the stored version with
          expected_version and writes in a single atomic step
        - A rejected save leaves the stored record untouched
        - A successful save is visible to every later get()
    """

    @abstractmethod
    async def get(self, item_id: int) -> Optional[LatestRecord]:
        """Point lookup.

        Returns:
            The stored record, or None if the item does not exist
        """
        ...

    @abstractmethod
    async def insert(self, record: LatestRecord) -> LatestRecord:
        """Create the initial record for an item.

        Raises:
            DuplicateItemError: If the item already exists
        """
        ...

    @abstractmethod
    async def conditional_save(
        self,
        record: LatestRecord,
        expected_version: int,
    ) -> LatestRecord:
        """Persist record only if the stored version is expected_version.

        Args:
            record: Candidate with version == expected_version + 1
            expected_version: Version the caller read

        Returns:
            The record as stored

        Raises:
            VersionConflictError: If another writer committed first
            ValueError: If record.version is not expected_version + 1
        """
        ...


@runtime_checkable
class HistoryStore(Protocol):
    """Protocol for the append-only history log.

    Ordering contract:
        - Entries are listed by superseded_by, then by insertion order
        - Entries appended without superseded_by sort ahead of versioned ones
        - superseded_by is a backend ordering key, not part of HistoricalEntry
    """

    @abstractmethod
    async def append(
        self,
        entry: HistoricalEntry,
        superseded_by: Optional[int] = None,
    ) -> HistoricalEntry:
        """Append an entry unconditionally.

        Args:
            entry: Value to archive
            superseded_by: Version of the committed update that displaced
                the value

        Raises:
            StoreUnavailableError: If the backend cannot accept the write
        """
        ...

    @abstractmethod
    async def list_for(self, item_id: int) -> list[HistoricalEntry]:
        """Return all entries for an item, oldest first."""
        ...


def create_stores(settings: Settings) -> tuple[VersionedRecordStore, HistoryStore]:
    """Factory for the configured backend.

    Args:
        settings: Application settings

    Returns:
        Tuple of (record store, history store) sharing one backend
    """
    from ..config import StoreBackend

    if settings.backend == StoreBackend.MEMORY:
        from .memory import InMemoryHistoryStore, InMemoryRecordStore

        return InMemoryRecordStore(), InMemoryHistoryStore()

    if settings.backend == StoreBackend.SQLITE:
        from .sqlite import SqliteDatabase, SqliteHistoryStore, SqliteRecordStore

        database = SqliteDatabase(
            settings.db_path,
            wal_mode=settings.wal_mode,
            busy_timeout_ms=settings.busy_timeout_ms,
        )
        database.initialize()
        return SqliteRecordStore(database), SqliteHistoryStore(database)

    raise ValueError(f"Unknown store backend: {settings.backend}")
