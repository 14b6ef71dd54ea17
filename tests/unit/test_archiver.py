"""
Unit tests for the history archiver.

Tests cover:
- Append of superseded values
- History order follows the displacing commit
- Failure surfaced as ArchivalFailedError
"""

import pytest

from itemdb.store.base import StoreError, StoreUnavailableError
from itemdb.store.memory import InMemoryHistoryStore
from itemdb.update.archiver import ArchivalFailedError, Archiver


class TestArchiver:
    """Tests for Archiver."""

    @pytest.fixture
    def history(self):
        return InMemoryHistoryStore()

    @pytest.fixture
    def archiver(self, history):
        return Archiver(history)

    @pytest.mark.asyncio
    async def test_archive_appends_entry(self, archiver, history):
        """Archived values show up in order."""
        first = await archiver.archive(1, "a", committed_version=1)
        await archiver.archive(1, "b", committed_version=2)

        assert first.item_id == 1
        assert first.value == "a"
        assert first.archived_at > 0
        assert [e.value for e in await history.list_for(1)] == ["a", "b"]
        assert archiver.archived_count == 2

    @pytest.mark.asyncio
    async def test_late_append_keeps_commit_order(self, archiver, history):
        """An append that lands late is still listed by its commit version."""
        await archiver.archive(1, "b", committed_version=2)
        await archiver.archive(1, "c", committed_version=3)
        await archiver.archive(1, "a", committed_version=1)

        assert [e.value for e in await history.list_for(1)] == ["a", "b", "c"]

    @pytest.mark.asyncio
    async def test_archive_failure(self, archiver, history):
        """Store failure becomes ArchivalFailedError chained to the cause."""
        history.set_unavailable()

        with pytest.raises(ArchivalFailedError) as exc_info:
            await archiver.archive(7, "old", committed_version=4)

        error = exc_info.value
        assert error.item_id == 7
        assert error.previous_value == "old"
        assert error.code == "ARCHIVAL_FAILED"
        assert error.message.endswith(": history store unavailable")
        assert isinstance(error.__cause__, StoreUnavailableError)
        assert archiver.archived_count == 0

    @pytest.mark.asyncio
    async def test_archive_is_not_retried(self):
        """A single failed append is not attempted again."""

        class CountingFailingHistory:
            def __init__(self):
                self.appends = 0

            async def append(self, entry, superseded_by=None):
                self.appends += 1
                raise StoreError("disk full")

            async def list_for(self, item_id):
                return []

        history = CountingFailingHistory()

        with pytest.raises(ArchivalFailedError):
            await Archiver(history).archive(1, "a", committed_version=1)

        assert history.appends == 1


class TestArchivalFailedError:
    """Tests for ArchivalFailedError."""

    def test_message_with_reason(self):
        error = ArchivalFailedError(3, "x", "disk full")

        assert error.message == "Failed to archive previous value of item 3: disk full"

    def test_message_without_reason(self):
        error = ArchivalFailedError(3, "x")

        assert error.message == "Failed to archive previous value of item 3"
        assert str(error) == error.message
        assert error.result is None
