"""
ItemDB - latest value plus history under concurrent writers.

This package keeps, for every item, one "latest" record stamped with an
integer version and an append-only trail of the values it replaced:

    ┌─────────────┐     ┌──────────────┐     ┌─────────────────────┐
    │   Caller    │────▶│ ItemUpdater  │────▶│    UpdateEngine     │
    └─────────────┘     └──────┬───────┘     │ read → next → CAS   │
                               │             │ (retry on conflict) │
                               │             └──────────┬──────────┘
                               ▼                        ▼
                        ┌─────────────┐        ┌─────────────────┐
                        │  Archiver   │        │ latest_items    │
                        └──────┬──────┘        │ (versioned)     │
                               ▼               └─────────────────┘
                        ┌─────────────────┐
                        │ historical_items│
                        │ (append-only)   │
                        └─────────────────┘

Invariants:
    - An item's version equals the number of committed updates
    - Every committed update archives exactly the value it displaced
    - Concurrency control lives in the store's conditional save, not in
      process-local locks

How to change safely:
    - New backends must implement both store protocols
    - Never weaken conditional_save() into a read followed by a write
"""

from ._version import __version__
from .store import (
    DuplicateItemError,
    HistoricalEntry,
    LatestRecord,
    StoreError,
    StoreUnavailableError,
    VersionConflictError,
)
from .update import (
    ArchivalFailedError,
    ItemUpdater,
    RetriesExhaustedError,
    RetryPolicy,
    UpdateEngine,
    UpdateResult,
    UpdateState,
)

__all__ = [
    "__version__",
    "ArchivalFailedError",
    "DuplicateItemError",
    "HistoricalEntry",
    "ItemUpdater",
    "LatestRecord",
    "RetriesExhaustedError",
    "RetryPolicy",
    "StoreError",
    "StoreUnavailableError",
    "UpdateEngine",
    "UpdateResult",
    "UpdateState",
    "VersionConflictError",
]
