"""
Item updater: the host-facing entry point of ItemDB.

Composes the update engine and the archiver over a record store and a
history store passed in explicitly.

Invariants:
    - A history entry is written if and only if an update committed
    - History is listed in commit order, even when concurrent archive
      appends complete out of order
    - The first value of an item is archived only once it is displaced
    - Not-found updates touch neither store
"""

from __future__ import annotations

import logging
from typing import Optional

from ..store.base import (
    HistoricalEntry,
    HistoryStore,
    ItemValue,
    LatestRecord,
    VersionedRecordStore,
)
from .archiver import Archiver, ArchivalFailedError
from .engine import RetryPolicy, UpdateEngine, UpdateResult

logger = logging.getLogger(__name__)


class ItemUpdater:
    """Adds items and updates them with optimistic retries plus history.

    Example:
        >>> updater = ItemUpdater(record_store, history_store)
        >>> await updater.add_item(1, "a")
        >>> result = await updater.update_item(1, "b")
        >>> [e.value for e in await updater.get_history(1)]
        ['a']
    """

    def __init__(
        self,
        record_store: VersionedRecordStore,
        history_store: HistoryStore,
        engine: UpdateEngine | None = None,
        archiver: Archiver | None = None,
        policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize the updater.

        Args:
            record_store: Store for latest records
            history_store: Store for superseded values
            engine: Update engine (built from record_store and policy if omitted)
            archiver: Archiver (built from history_store if omitted)
            policy: Retry policy for a default engine
        """
        self.record_store = record_store
        self.history_store = history_store
        self.engine = engine or UpdateEngine(record_store, policy)
        self.archiver = archiver or Archiver(history_store)

    async def add_item(self, item_id: int, value: ItemValue) -> LatestRecord:
        """Create an item at version 0.

        Raises:
            DuplicateItemError: If the item already exists
        """
        record = await self.record_store.insert(LatestRecord(item_id=item_id, value=value))
        logger.info("Added item", extra={"item_id": item_id})
        return record

    async def update_item(self, item_id: int, value: ItemValue) -> UpdateResult:
        """Replace an item's value and archive the one it displaced.

        Returns:
            UpdateResult; check .committed / .not_found

        Raises:
            RetriesExhaustedError: If contention outlasted the retry bound
            ArchivalFailedError: If the update committed but the history
                append failed (error.result holds the committed result)
            StoreError: Any other store failure
        """
        result = await self.engine.update(item_id, value)
        if not result.committed:
            return result

        try:
            await self.archiver.archive(item_id, result.previous_value, result.version)
        except ArchivalFailedError as e:
            e.result = result
            raise

        return result

    async def get_item(self, item_id: int) -> Optional[LatestRecord]:
        return await self.record_store.get(item_id)

    async def get_history(self, item_id: int) -> list[HistoricalEntry]:
        """Superseded values of an item, oldest first."""
        return await self.history_store.list_for(item_id)
