"""
SQLite item stores for ItemDB.

This module manages one SQLite database file holding both logical
collections:
- latest_items: the current value of each item plus its version stamp
- historical_items: append-only trail of superseded values

The version check of a conditional save is part of the UPDATE statement
itself, so concurrent writers in other threads or processes sharing the
file can never both commit against the same version.

Invariants:
    - One row per item in latest_items
    - latest_items.version only moves through conditional_save()
    - historical_items rows are never updated or deleted
    - History is listed in the order of the commits that produced it,
      even when archive appends land out of that order
    - All write operations are atomic (single transaction)

How to change safely:
    - Schema migrations must be backward compatible
    - Keep the version predicate inside the UPDATE statement
    - Use transactions for all write operations

Table schema:
    latest_items:
        - item_id INTEGER PRIMARY KEY
        - value (no affinity; TEXT or BLOB as written)
        - version INTEGER
        - updated_at INTEGER (Unix ms)

    historical_items:
        - seq INTEGER PRIMARY KEY AUTOINCREMENT (insertion order)
        - item_id INTEGER
        - value (no affinity)
        - archived_at INTEGER (Unix ms)
        - superseded_by INTEGER (version of the displacing commit)
        - INDEX on (item_id, superseded_by, seq)
"""

from __future__ import annotations

import asyncio
import functools
import logging
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

from .base import (
    DuplicateItemError,
    HistoricalEntry,
    LatestRecord,
    StoreUnavailableError,
    VersionConflictError,
    check_next_version,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SqliteDatabase:
    """Connection factory and schema owner for the item database.

    Thread safety:
        Each operation opens its own connection.
        SQLite handles concurrent access via WAL mode and the busy timeout.

    Example:
        >>> db = SqliteDatabase("/var/lib/itemdb/items.db")
        >>> db.initialize()
        >>> records = SqliteRecordStore(db)
        >>> history = SqliteHistoryStore(db)
    """

    SCHEMA_VERSION = 1

    def __init__(
        self,
        path: str | Path,
        wal_mode: bool = True,
        busy_timeout_ms: int = 5000,
    ) -> None:
        """Initialize the database handle.

        Args:
            path: SQLite database file
            wal_mode: Enable SQLite WAL mode
            busy_timeout_ms: SQLite busy timeout
        """
        self.path = Path(path)
        self.wal_mode = wal_mode
        self.busy_timeout_ms = busy_timeout_ms

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        """Open a configured connection.

        Yields:
            SQLite connection in autocommit mode (transactions are explicit)

        Raises:
            StoreUnavailableError: If the file cannot be opened
        """
        try:
            conn = sqlite3.connect(
                str(self.path),
                timeout=self.busy_timeout_ms / 1000.0,
                isolation_level=None,
            )
        except sqlite3.Error as e:
            raise StoreUnavailableError(
                f"Cannot open item database {self.path}: {e}", backend="sqlite"
            ) from e
        conn.row_factory = sqlite3.Row

        try:
            conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
            if self.wal_mode:
                conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = NORMAL")

            yield conn
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the database file and schema if missing."""
        self.path.parent.mkdir(parents=True, exist_ok=True)

        with self.connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS schema_version (
                    version INTEGER PRIMARY KEY,
                    applied_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS latest_items (
                    item_id INTEGER PRIMARY KEY,
                    value,
                    version INTEGER NOT NULL DEFAULT 0,
                    updated_at INTEGER NOT NULL
                );

                CREATE TABLE IF NOT EXISTS historical_items (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    item_id INTEGER NOT NULL,
                    value,
                    superseded_by INTEGER,
                    archived_at INTEGER NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_historical_item
                    ON historical_items(item_id, superseded_by, seq);
            """)
            conn.execute(
                "INSERT OR IGNORE INTO schema_version (version, applied_at) VALUES (?, ?)",
                (self.SCHEMA_VERSION, int(time.time() * 1000)),
            )

        logger.info(f"Initialized item database: {self.path}")

    async def run(self, fn: Callable[..., T], *args: Any) -> T:
        """Run a blocking database call in the default executor."""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, functools.partial(fn, *args))
        except sqlite3.IntegrityError:
            raise
        except sqlite3.Error as e:
            raise StoreUnavailableError(
                f"Item database error: {e}", backend="sqlite"
            ) from e


def _row_to_record(row: sqlite3.Row) -> LatestRecord:
    return LatestRecord(
        item_id=row["item_id"],
        value=row["value"],
        version=row["version"],
    )


def _row_to_entry(row: sqlite3.Row) -> HistoricalEntry:
    return HistoricalEntry(
        item_id=row["item_id"],
        value=row["value"],
        archived_at=row["archived_at"],
    )


class SqliteRecordStore:
    """VersionedRecordStore backed by the latest_items table."""

    def __init__(self, database: SqliteDatabase) -> None:
        self.database = database

    async def get(self, item_id: int) -> Optional[LatestRecord]:
        return await self.database.run(self._get, item_id)

    async def insert(self, record: LatestRecord) -> LatestRecord:
        try:
            await self.database.run(self._insert, record)
        except sqlite3.IntegrityError as e:
            raise DuplicateItemError(record.item_id) from e

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
        await self.database.run(self._conditional_save, record, expected_version)
        return record

    def _get(self, item_id: int) -> Optional[LatestRecord]:
        with self.database.connection() as conn:
            row = conn.execute(
                "SELECT item_id, value, version FROM latest_items WHERE item_id = ?",
                (item_id,),
            ).fetchone()
        return _row_to_record(row) if row else None

    def _insert(self, record: LatestRecord) -> None:
        with self.database.connection() as conn:
            conn.execute(
                """
                INSERT INTO latest_items (item_id, value, version, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (record.item_id, record.value, record.version, int(time.time() * 1000)),
            )

    def _conditional_save(self, record: LatestRecord, expected_version: int) -> None:
        with self.database.connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                cursor = conn.execute(
                    """
                    UPDATE latest_items SET value = ?, version = ?, updated_at = ?
                    WHERE item_id = ? AND version = ?
                    """,
                    (
                        record.value,
                        record.version,
                        int(time.time() * 1000),
                        record.item_id,
                        expected_version,
                    ),
                )
                if cursor.rowcount == 0:
                    row = conn.execute(
                        "SELECT version FROM latest_items WHERE item_id = ?",
                        (record.item_id,),
                    ).fetchone()
                    conn.execute("ROLLBACK")
                    raise VersionConflictError(
                        record.item_id,
                        expected_version,
                        row["version"] if row else None,
                    )

                conn.execute("COMMIT")

            except VersionConflictError:
                raise
            except Exception:
                conn.execute("ROLLBACK")
                raise


class SqliteHistoryStore:
    """HistoryStore backed by the historical_items table."""

    def __init__(self, database: SqliteDatabase) -> None:
        self.database = database

    async def append(
        self,
        entry: HistoricalEntry,
        superseded_by: Optional[int] = None,
    ) -> HistoricalEntry:
        await self.database.run(self._append, entry, superseded_by)
        logger.debug(
            "Appended history entry",
            extra={"item_id": entry.item_id, "superseded_by": superseded_by},
        )
        return entry

    async def list_for(self, item_id: int) -> list[HistoricalEntry]:
        return await self.database.run(self._list_for, item_id)

    def _append(self, entry: HistoricalEntry, superseded_by: Optional[int]) -> None:
        with self.database.connection() as conn:
            conn.execute(
                """
                INSERT INTO historical_items (item_id, value, superseded_by, archived_at)
                VALUES (?, ?, ?, ?)
                """,
                (entry.item_id, entry.value, superseded_by, entry.archived_at),
            )

    def _list_for(self, item_id: int) -> list[HistoricalEntry]:
        # NULL superseded_by sorts first
        with self.database.connection() as conn:
            rows = conn.execute(
                """
                SELECT item_id, value, archived_at FROM historical_items
                WHERE item_id = ? ORDER BY superseded_by, seq
                """,
                (item_id,),
            ).fetchall()
        return [_row_to_entry(row) for row in rows]
