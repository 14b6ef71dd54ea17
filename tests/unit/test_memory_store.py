"""
Unit tests for in-memory item stores.

Tests cover:
- Insert and lookup
- Conditional save accept/reject
- Candidate version validation
- History ordering
- Testing helpers
"""

import pytest

from itemdb.store.base import (
    DuplicateItemError,
    HistoricalEntry,
    LatestRecord,
    StoreUnavailableError,
    VersionConflictError,
)
from itemdb.store.memory import InMemoryHistoryStore, InMemoryRecordStore


class TestInMemoryRecordStore:
    """Tests for InMemoryRecordStore."""

    @pytest.fixture
    def store(self):
        """Create a fresh record store."""
        return InMemoryRecordStore()

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, store):
        """Lookup of an unknown item returns None."""
        assert await store.get(1) is None

    @pytest.mark.asyncio
    async def test_insert_then_get(self, store):
        """Inserted record is visible at version 0."""
        await store.insert(LatestRecord(1, "a"))

        record = await store.get(1)
        assert record == LatestRecord(item_id=1, value="a", version=0)

    @pytest.mark.asyncio
    async def test_insert_duplicate_rejected(self, store):
        """Second insert for the same id fails and keeps the first value."""
        await store.insert(LatestRecord(1, "a"))

        with pytest.raises(DuplicateItemError) as exc_info:
            await store.insert(LatestRecord(1, "other"))

        assert exc_info.value.item_id == 1
        assert (await store.get(1)).value == "a"

    @pytest.mark.asyncio
    async def test_conditional_save_matching_version(self, store):
        """Save succeeds when the stored version is the one read."""
        await store.insert(LatestRecord(1, "a"))
        current = await store.get(1)
        candidate, previous = current.next("b")

        await store.conditional_save(candidate, current.version)

        assert previous == "a"
        assert await store.get(1) == LatestRecord(1, "b", 1)

    @pytest.mark.asyncio
    async def test_conditional_save_stale_version(self, store):
        """A writer holding an old version is rejected."""
        await store.insert(LatestRecord(1, "a"))
        stale = await store.get(1)

        winner, _ = stale.next("b")
        await store.conditional_save(winner, stale.version)

        loser, _ = stale.next("c")
        with pytest.raises(VersionConflictError) as exc_info:
            await store.conditional_save(loser, stale.version)

        assert exc_info.value.expected_version == 0
        assert exc_info.value.actual_version == 1
        assert await store.get(1) == LatestRecord(1, "b", 1)

    @pytest.mark.asyncio
    async def test_conditional_save_missing_item(self, store):
        """Saving an item that was never inserted is a conflict."""
        with pytest.raises(VersionConflictError) as exc_info:
            await store.conditional_save(LatestRecord(5, "x", 1), 0)

        assert exc_info.value.actual_version is None

    @pytest.mark.asyncio
    async def test_conditional_save_rejects_version_skip(self, store):
        """Candidates must be exactly one version ahead."""
        await store.insert(LatestRecord(1, "a"))

        with pytest.raises(ValueError):
            await store.conditional_save(LatestRecord(1, "b", 2), 0)

        assert (await store.get(1)).version == 0

    @pytest.mark.asyncio
    async def test_committed_versions_helper(self, store):
        """Every committed version is recorded in order."""
        await store.insert(LatestRecord(1, "a"))
        for value in ("b", "c"):
            current = await store.get(1)
            candidate, _ = current.next(value)
            await store.conditional_save(candidate, current.version)

        assert store.committed_versions(1) == [0, 1, 2]
        assert store.committed_versions(2) == []

    @pytest.mark.asyncio
    async def test_unavailable(self, store):
        """Unavailable store fails every operation until restored."""
        store.set_unavailable()

        with pytest.raises(StoreUnavailableError):
            await store.get(1)

        store.set_unavailable(None)
        assert await store.get(1) is None

    @pytest.mark.asyncio
    async def test_yield_on_io(self):
        """Suspending store behaves the same for a single caller."""
        store = InMemoryRecordStore(yield_on_io=True)
        await store.insert(LatestRecord(1, "a"))

        assert (await store.get(1)).value == "a"


class TestInMemoryHistoryStore:
    """Tests for InMemoryHistoryStore."""

    @pytest.fixture
    def history(self):
        """Create a fresh history store."""
        return InMemoryHistoryStore()

    @pytest.mark.asyncio
    async def test_list_empty(self, history):
        """No entries for an unknown item."""
        assert await history.list_for(1) == []

    @pytest.mark.asyncio
    async def test_append_keeps_order_and_duplicates(self, history):
        """Entries come back in insertion order, duplicates included."""
        for value in ("a", "b", "a"):
            await history.append(HistoricalEntry(1, value))
        await history.append(HistoricalEntry(2, "z"))

        entries = await history.list_for(1)
        assert [e.value for e in entries] == ["a", "b", "a"]
        assert history.get_entry_count() == 4

    @pytest.mark.asyncio
    async def test_list_sorted_by_superseding_version(self, history):
        """Entries are listed by the version that displaced them, not by append order."""
        await history.append(HistoricalEntry(1, "b"), superseded_by=2)
        await history.append(HistoricalEntry(1, "a"), superseded_by=1)
        await history.append(HistoricalEntry(1, "c"), superseded_by=3)
        await history.append(HistoricalEntry(1, "legacy"))

        entries = await history.list_for(1)
        assert [e.value for e in entries] == ["legacy", "a", "b", "c"]

    @pytest.mark.asyncio
    async def test_append_unavailable(self, history):
        """Append fails when the store is down."""
        history.set_unavailable()

        with pytest.raises(StoreUnavailableError):
            await history.append(HistoricalEntry(1, "a"))

        assert history.get_entry_count() == 0
