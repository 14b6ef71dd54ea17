#!/usr/bin/env python3
"""
ItemDB Demo - Shows optimistic updates racing on one item.

Runs the same scenario twice: once against the in-memory stores (with
every store call suspending, so the updates interleave) and once against
a temporary SQLite database.
"""

import asyncio
import logging
import tempfile
from pathlib import Path

from itemdb.store.memory import InMemoryHistoryStore, InMemoryRecordStore
from itemdb.store.sqlite import SqliteDatabase, SqliteHistoryStore, SqliteRecordStore
from itemdb.update import ItemUpdater, RetryPolicy


async def run_scenario(name: str, updater: ItemUpdater) -> None:
    print(f"\n[{name}] Adding item 1 with value 'a'...")
    record = await updater.add_item(1, "a")
    print(f"  -> {record.to_dict()}")

    print(f"[{name}] Updating item 1 to 'b' and 'c' concurrently...")
    results = await asyncio.gather(
        updater.update_item(1, "b"),
        updater.update_item(1, "c"),
    )
    for value, result in zip(("b", "c"), results):
        print(
            f"  -> '{value}': {result.state.value} at version {result.version} "
            f"after {result.attempts} attempt(s), replaced {result.previous_value!r}"
        )

    latest = await updater.get_item(1)
    history = await updater.get_history(1)
    print(f"[{name}] Latest:  {latest.to_dict()}")
    print(f"[{name}] History: {[e.value for e in history]}")

    print(f"[{name}] Sequential updates d, e, f...")
    for value in ("d", "e", "f"):
        await updater.update_item(1, value)

    latest = await updater.get_item(1)
    history = await updater.get_history(1)
    print(f"[{name}] Latest:  {latest.to_dict()}")
    print(f"[{name}] History: {[e.value for e in history]}")

    missing = await updater.update_item(99, "x")
    print(f"[{name}] Update of unknown item 99: {missing.state.value}")


async def main():
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    print("=" * 60)
    print("ItemDB Demo - Optimistic updates with history")
    print("=" * 60)

    policy = RetryPolicy(max_attempts=10, backoff_base_ms=1.0, backoff_max_ms=20.0)

    memory_updater = ItemUpdater(
        InMemoryRecordStore(yield_on_io=True),
        InMemoryHistoryStore(),
        policy=policy,
    )
    await run_scenario("memory", memory_updater)

    with tempfile.TemporaryDirectory() as data_dir:
        database = SqliteDatabase(Path(data_dir) / "items.db")
        database.initialize()
        sqlite_updater = ItemUpdater(
            SqliteRecordStore(database),
            SqliteHistoryStore(database),
            policy=policy,
        )
        await run_scenario("sqlite", sqlite_updater)

    print("\n" + "=" * 60)
    print("Demo complete")
    print("=" * 60)


if __name__ == "__main__":
    asyncio.run(main())
