"""
Unit tests for SQLite item stores.

Tests cover:
- Schema initialization
- Insert, lookup and duplicate rejection
- Conditional save against the stored version
- str and bytes payloads
- History ordering
- Error mapping for unreachable databases
"""

import tempfile
from pathlib import Path

import pytest

from itemdb.store.base import (
    DuplicateItemError,
    HistoricalEntry,
    LatestRecord,
    StoreUnavailableError,
    VersionConflictError,
)
from itemdb.store.sqlite import SqliteDatabase, SqliteHistoryStore, SqliteRecordStore


class TestSqliteStores:
    """Tests for SqliteRecordStore and SqliteHistoryStore."""

    @pytest.fixture
    def data_dir(self):
        """Create temporary data directory."""
        with tempfile.TemporaryDirectory() as tmpdir:
            yield tmpdir

    @pytest.fixture
    def database(self, data_dir):
        """Create and initialize a database file."""
        db = SqliteDatabase(Path(data_dir) / "nested" / "items.db", wal_mode=False)
        db.initialize()
        return db

    @pytest.fixture
    def records(self, database):
        return SqliteRecordStore(database)

    @pytest.fixture
    def history(self, database):
        return SqliteHistoryStore(database)

    def test_initialize_creates_file(self, database):
        """initialize() creates parent directories and the file."""
        assert database.path.exists()

    def test_initialize_is_idempotent(self, database):
        """Running initialize() twice keeps the schema intact."""
        database.initialize()

        with database.connection() as conn:
            versions = conn.execute("SELECT version FROM schema_version").fetchall()
        assert [row["version"] for row in versions] == [SqliteDatabase.SCHEMA_VERSION]

    @pytest.mark.asyncio
    async def test_insert_then_get(self, records):
        """Inserted record round-trips."""
        await records.insert(LatestRecord(1, "a"))

        assert await records.get(1) == LatestRecord(1, "a", 0)
        assert await records.get(2) is None

    @pytest.mark.asyncio
    async def test_insert_duplicate_rejected(self, records):
        """Primary key guards the first insert."""
        await records.insert(LatestRecord(1, "a"))

        with pytest.raises(DuplicateItemError):
            await records.insert(LatestRecord(1, "b"))

        assert (await records.get(1)).value == "a"

    @pytest.mark.asyncio
    async def test_conditional_save(self, records):
        """Save with the current version advances the record."""
        await records.insert(LatestRecord(1, "a"))
        current = await records.get(1)
        candidate, _ = current.next("b")

        saved = await records.conditional_save(candidate, current.version)

        assert saved == LatestRecord(1, "b", 1)
        assert await records.get(1) == LatestRecord(1, "b", 1)

    @pytest.mark.asyncio
    async def test_conditional_save_conflict(self, records):
        """Stale writer is rejected and the stored record is unchanged."""
        await records.insert(LatestRecord(1, "a"))
        stale = await records.get(1)

        first, _ = stale.next("b")
        await records.conditional_save(first, stale.version)

        second, _ = stale.next("c")
        with pytest.raises(VersionConflictError) as exc_info:
            await records.conditional_save(second, stale.version)

        assert exc_info.value.item_id == 1
        assert exc_info.value.actual_version == 1
        assert await records.get(1) == LatestRecord(1, "b", 1)

    @pytest.mark.asyncio
    async def test_conditional_save_missing_item(self, records):
        """Conflict on an item that does not exist reports no version."""
        with pytest.raises(VersionConflictError) as exc_info:
            await records.conditional_save(LatestRecord(9, "x", 1), 0)

        assert exc_info.value.actual_version is None

    @pytest.mark.asyncio
    async def test_bytes_payload(self, records, history):
        """Opaque blobs are stored without conversion."""
        await records.insert(LatestRecord(1, b"\x00\x01"))
        await history.append(HistoricalEntry(1, b"\xff"))

        assert (await records.get(1)).value == b"\x00\x01"
        assert (await history.list_for(1))[0].value == b"\xff"

    @pytest.mark.asyncio
    async def test_history_order(self, history):
        """History is returned in insertion order per item."""
        await history.append(HistoricalEntry(1, "a", archived_at=30))
        await history.append(HistoricalEntry(2, "x", archived_at=20))
        await history.append(HistoricalEntry(1, "b", archived_at=10))

        entries = await history.list_for(1)
        assert [e.value for e in entries] == ["a", "b"]
        assert [e.archived_at for e in entries] == [30, 10]

    @pytest.mark.asyncio
    async def test_history_sorted_by_superseding_version(self, history):
        """Entries are listed by the version that displaced them, not by append order."""
        await history.append(HistoricalEntry(1, "b"), superseded_by=2)
        await history.append(HistoricalEntry(1, "a"), superseded_by=1)
        await history.append(HistoricalEntry(1, "c"), superseded_by=3)
        await history.append(HistoricalEntry(1, "legacy"))

        entries = await history.list_for(1)
        assert [e.value for e in entries] == ["legacy", "a", "b", "c"]

    @pytest.mark.asyncio
    async def test_stores_share_one_file(self, database):
        """A second store instance sees the same data."""
        await SqliteRecordStore(database).insert(LatestRecord(1, "a"))

        assert (await SqliteRecordStore(database).get(1)).value == "a"

    @pytest.mark.asyncio
    async def test_missing_schema_is_unavailable(self, data_dir):
        """Errors from an uninitialized database map to StoreUnavailableError."""
        db = SqliteDatabase(Path(data_dir) / "empty.db", wal_mode=False)

        with pytest.raises(StoreUnavailableError):
            await SqliteRecordStore(db).get(1)

        with pytest.raises(StoreUnavailableError):
            await SqliteHistoryStore(db).append(HistoricalEntry(1, "a"))
