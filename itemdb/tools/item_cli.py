"""
Item CLI tool for ItemDB.

This tool drives an ItemDB database from the shell:
- add: Create an item at version 0
- update: Replace an item's value and archive the old one
- show: Print the latest record
- history: Print the superseded values, oldest first
- race: Fire several updates at one item concurrently

Usage:
    itemdb add 1 first
    itemdb update 1 second
    itemdb race 1 b c d
    itemdb history 1

Invariants:
    - Output is JSON on stdout; logs go to stderr
    - Exit code 0 on success, 1 on a failed operation, 2 on usage errors

How to change safely:
    - Add new commands, don't modify existing ones
    - Keep output format stable for scripting
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

from ..config import Settings
from ..main import create_updater, setup_logging
from ..store.base import DuplicateItemError, StoreError
from ..update import ArchivalFailedError, ItemUpdater, RetriesExhaustedError, UpdateResult

logger = logging.getLogger(__name__)


def _result_to_dict(result: UpdateResult) -> dict[str, Any]:
    previous = result.previous_value
    if isinstance(previous, bytes):
        previous = previous.hex()
    return {
        "item_id": result.item_id,
        "state": result.state.value,
        "previous_value": previous,
        "version": result.version,
        "attempts": result.attempts,
    }


class ItemCLI:
    """CLI commands over an ItemUpdater.

    Each command returns (exit_code, payload) so it can be tested without
    going through argparse.

    Example:
        >>> cli = ItemCLI(create_updater())
        >>> code, payload = await cli.add(1, "a")
    """

    def __init__(self, updater: ItemUpdater) -> None:
        self.updater = updater

    async def add(self, item_id: int, value: str) -> tuple[int, dict[str, Any]]:
        try:
            record = await self.updater.add_item(item_id, value)
        except DuplicateItemError as e:
            return 1, {"error": e.message, "code": e.code}
        return 0, record.to_dict()

    async def update(self, item_id: int, value: str) -> tuple[int, dict[str, Any]]:
        try:
            result = await self.updater.update_item(item_id, value)
        except (RetriesExhaustedError, ArchivalFailedError) as e:
            return 1, {"error": e.message, "code": e.code}

        if result.not_found:
            return 1, {"error": f"Item not found: {item_id}", "code": "NOT_FOUND"}
        return 0, _result_to_dict(result)

    async def show(self, item_id: int) -> tuple[int, dict[str, Any]]:
        record = await self.updater.get_item(item_id)
        if record is None:
            return 1, {"error": f"Item not found: {item_id}", "code": "NOT_FOUND"}
        return 0, record.to_dict()

    async def history(self, item_id: int) -> tuple[int, dict[str, Any]]:
        entries = await self.updater.get_history(item_id)
        return 0, {"item_id": item_id, "history": [e.to_dict() for e in entries]}

    async def race(self, item_id: int, values: list[str]) -> tuple[int, dict[str, Any]]:
        """Issue one update per value concurrently and report the outcome."""
        outcomes = await asyncio.gather(
            *(self.updater.update_item(item_id, v) for v in values),
            return_exceptions=True,
        )

        updates = []
        failed = False
        for value, outcome in zip(values, outcomes):
            if isinstance(outcome, UpdateResult):
                updates.append({"value": value, **_result_to_dict(outcome)})
                failed = failed or outcome.not_found
            elif isinstance(outcome, (StoreError, RetriesExhaustedError, ArchivalFailedError)):
                updates.append({"value": value, "error": outcome.message, "code": outcome.code})
                failed = True
            else:
                raise outcome

        _, latest = await self.show(item_id)
        _, history = await self.history(item_id)
        return (1 if failed else 0), {
            "updates": updates,
            "latest": latest,
            "history": history["history"],
        }


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="itemdb",
        description="Versioned items with history",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    add_parser = subparsers.add_parser("add", help="Create an item")
    add_parser.add_argument("item_id", type=int)
    add_parser.add_argument("value")

    update_parser = subparsers.add_parser("update", help="Update an item")
    update_parser.add_argument("item_id", type=int)
    update_parser.add_argument("value")

    show_parser = subparsers.add_parser("show", help="Show the latest record")
    show_parser.add_argument("item_id", type=int)

    history_parser = subparsers.add_parser("history", help="Show superseded values")
    history_parser.add_argument("item_id", type=int)

    race_parser = subparsers.add_parser("race", help="Update one item concurrently")
    race_parser.add_argument("item_id", type=int)
    race_parser.add_argument("values", nargs="+")

    return parser


async def _run(cli: ItemCLI, args: argparse.Namespace) -> tuple[int, dict[str, Any]]:
    if args.command == "add":
        return await cli.add(args.item_id, args.value)
    if args.command == "update":
        return await cli.update(args.item_id, args.value)
    if args.command == "show":
        return await cli.show(args.item_id)
    if args.command == "history":
        return await cli.history(args.item_id)
    if args.command == "race":
        return await cli.race(args.item_id, args.values)
    raise ValueError(f"Unknown command: {args.command}")


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        return int(e.code or 0)

    settings = Settings()
    setup_logging(settings)
    cli = ItemCLI(create_updater(settings))

    try:
        code, payload = asyncio.run(_run(cli, args))
    except StoreError as e:
        logger.error(f"Store error: {e}")
        code, payload = 1, {"error": e.message, "code": e.code}

    print(json.dumps(payload, indent=2))
    return code


if __name__ == "__main__":
    sys.exit(main())
