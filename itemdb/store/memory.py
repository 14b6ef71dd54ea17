"""
In-memory item stores for testing.

This module provides dictionary-backed implementations of both store
protocols for:
- Unit tests
- Integration tests of the update path
- Local development without a database file

Invariants:
    - All data is lost on process exit
    - Provides the same conditional-save guarantee as the SQLite backend
    - Thread-safe for concurrent access

How to change safely:
    - This is test-only code, changes don't affect the SQLite backend
    - Keep interface compatible with the store protocols
    - Add features to help with testing scenarios
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import threading
from collections import defaultdict
from typing import Dict, List, Optional, Tuple

from .base import (
    DuplicateItemError,
    HistoricalEntry,
    LatestRecord,
    StoreUnavailableError,
    VersionConflictError,
    check_next_version,
)

logger = logging.getLogger(__name__)


class InMemoryRecordStore:
    """In-memory implementation of VersionedRecordStore.

    Attributes:
        yield_on_io: Suspend the calling coroutine before every operation,
            so concurrent updates in one event loop interleave the way they
            would against a networked store

    Thread safety:
        A threading.Lock guards every read and every compare-and-set,
        so the store is safe from multiple threads and coroutines.

    Example:
        >>> store = InMemoryRecordStore()
        >>> await store.insert(LatestRecord(1, "a"))
        >>> current = await store.get(1)
        >>> candidate, _ = current.next("b")
        >>> await store.conditional_save(candidate, current.version)
    """

    def __init__(self, yield_on_io: bool = False) -> None:
        self.yield_on_io = yield_on_io
        self._records: Dict[int, LatestRecord] = {}
        self._committed: Dict[int, List[int]] = defaultdict(list)
        self._lock = threading.Lock()
        self._unavailable: Optional[str] = None

    async def get(self, item_id: int) -> Optional[LatestRecord]:
        await self._io()
        with self._lock:
            return self._records.get(item_id)

    async def insert(self, record: LatestRecord) -> LatestRecord:
        await self._io()
        with self._lock:
            if record.item_id in self._records:
                raise DuplicateItemError(record.item_id)
            self._records[record.item_id] = record
            self._committed[record.item_id].append(record.version)

        logger.debug(
            "Inserted item",
            extra={"item_id": record.item_id, "version": record.version},
        )
        return record

    async def conditional_save(
        self,
        record: LatestRecord,
        expected_version: int,
    ) -> LatestRecord:
        check_next_version(record, expected_version)
        await self._io()
        with self._lock:
            stored = self._records.get(record.item_id)
            actual = stored.version if stored else None
            if actual != expected_version:
                raise VersionConflictError(record.item_id, expected_version, actual)
            self._records[record.item_id] = record
            self._committed[record.item_id].append(record.version)

        return record

    async def _io(self) -> None:
        if self.yield_on_io:
            await asyncio.sleep(0)
        if self._unavailable is not None:
            raise StoreUnavailableError(self._unavailable, backend="memory")

    # Testing helpers

    def committed_versions(self, item_id: int) -> List[int]:
        """Every version written for an item, in commit order (testing helper)."""
        with self._lock:
            return list(self._committed.get(item_id, []))

    def set_unavailable(self, message: Optional[str] = "record store unavailable") -> None:
        """Make every following operation fail (testing helper).

        Pass None to bring the store back.
        """
        self._unavailable = message


class InMemoryHistoryStore:
    """In-memory implementation of HistoryStore.

    Entries are kept in one list of (superseded_by, seq, entry) tuples;
    list_for() sorts an item's slice by the first two fields.
    """

    def __init__(self, yield_on_io: bool = False) -> None:
        self.yield_on_io = yield_on_io
        self._entries: List[Tuple[int, int, HistoricalEntry]] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()
        self._unavailable: Optional[str] = None

    async def append(
        self,
        entry: HistoricalEntry,
        superseded_by: Optional[int] = None,
    ) -> HistoricalEntry:
        await self._io()
        # Unversioned entries sort ahead of versioned ones, like NULL in SQLite
        order = superseded_by if superseded_by is not None else -1
        with self._lock:
            self._entries.append((order, next(self._seq), entry))

        logger.debug(
            "Appended history entry",
            extra={"item_id": entry.item_id, "superseded_by": superseded_by},
        )
        return entry

    async def list_for(self, item_id: int) -> list[HistoricalEntry]:
        await self._io()
        with self._lock:
            matching = [t for t in self._entries if t[2].item_id == item_id]
        return [entry for _, _, entry in sorted(matching, key=lambda t: t[:2])]

    async def _io(self) -> None:
        if self.yield_on_io:
            await asyncio.sleep(0)
        if self._unavailable is not None:
            raise StoreUnavailableError(self._unavailable, backend="memory")

    # Testing helpers

    def get_entry_count(self) -> int:
        """Total entries across all items (testing helper)."""
        with self._lock:
            return len(self._entries)

    def set_unavailable(self, message: Optional[str] = "history store unavailable") -> None:
        """Make every following operation fail (testing helper).

        Pass None to bring the store back.
        """
        self._unavailable = message
