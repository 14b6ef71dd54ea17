"""
Update module for ItemDB - optimistic updates and archival.

This module handles:
- The retrying read-modify-conditional-write cycle (UpdateEngine)
- Appending superseded values to the history (Archiver)
- The host-facing facade combining both (ItemUpdater)

Invariants:
    - Only version conflicts are retried, and only a bounded number of times
    - A history entry exists for every committed update
    - Archival failure never rolls back a committed update
"""

from .archiver import ArchivalFailedError, Archiver
from .engine import (
    RetriesExhaustedError,
    RetryPolicy,
    UpdateEngine,
    UpdateError,
    UpdateResult,
    UpdateState,
)
from .updater import ItemUpdater

__all__ = [
    "Archiver",
    "ArchivalFailedError",
    "ItemUpdater",
    "RetriesExhaustedError",
    "RetryPolicy",
    "UpdateEngine",
    "UpdateError",
    "UpdateResult",
    "UpdateState",
]
