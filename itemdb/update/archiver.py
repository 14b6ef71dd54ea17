"""
History archiver for ItemDB.

The Archiver appends the value displaced by a committed update to the
history store. It only ever writes values handed to it by the update
engine and never reads the latest records.

Invariants:
    - One append per call, no retry
    - A failed append never undoes the update that produced the value

How to change safely:
    - Keep archival separate from the conditional save; the two stores
      are not written in one transaction
    - If archival retries are ever added, they must not re-run the update
"""

from __future__ import annotations

import logging

from ..store.base import HistoricalEntry, HistoryStore, ItemValue, StoreError
from .engine import UpdateError

logger = logging.getLogger(__name__)


class ArchivalFailedError(UpdateError):
    """The superseded value could not be appended to the history.

    The latest record has already advanced when this is raised.

    Attributes:
        item_id: Item whose history is missing an entry
        previous_value: Value that was not archived
        result: UpdateResult of the committed update, when known
    """

    def __init__(self, item_id: int, previous_value: ItemValue, reason: str = "") -> None:
        message = f"Failed to archive previous value of item {item_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            code="ARCHIVAL_FAILED",
            details={"item_id": item_id},
        )
        self.item_id = item_id
        self.previous_value = previous_value
        self.result = None


class Archiver:
    """Appends superseded values to a HistoryStore.

    Example:
        >>> archiver = Archiver(history_store)
        >>> await archiver.archive(1, "old value", committed_version=1)
    """

    def __init__(self, history_store: HistoryStore) -> None:
        self.history_store = history_store
        self._archived_count = 0

    @property
    def archived_count(self) -> int:
        """Entries appended by this archiver."""
        return self._archived_count

    async def archive(
        self,
        item_id: int,
        previous_value: ItemValue,
        committed_version: int,
    ) -> HistoricalEntry:
        """Append a history entry.

        Args:
            item_id: Item the value belonged to
            previous_value: Value returned by the update engine
            committed_version: Version of the update that displaced the
                value; history is listed in this order

        Returns:
            The appended entry

        Raises:
            ArchivalFailedError: If the history store rejects the append
        """
        entry = HistoricalEntry(item_id=item_id, value=previous_value)
        try:
            await self.history_store.append(entry, superseded_by=committed_version)
        except StoreError as e:
            logger.error(
                f"Archival failed: {e}",
                extra={"item_id": item_id, "version": committed_version, "code": e.code},
            )
            raise ArchivalFailedError(item_id, previous_value, str(e)) from e

        self._archived_count += 1
        return entry
