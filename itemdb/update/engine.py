"""
Optimistic update engine for ItemDB.

The UpdateEngine replaces the value of an item without holding any lock
across the read-compute-write window. Each cycle:
1. Reads the latest record
2. Builds a candidate with the new value and version + 1
3. Saves it conditionally on the version it read

A version conflict means another writer committed in between; the engine
throws the candidate away and starts over from a fresh read, up to a fixed
number of cycles with jittered backoff between them.

State machine for one update() call:
    READING -> COMPUTING -> WRITING -> COMMITTED
                                    -> CONFLICTED -> READING
                                    -> RETRIES_EXHAUSTED
    READING -> NOT_FOUND

Invariants:
    - Only VersionConflictError is retried; every other error propagates
    - The number of conditional saves never exceeds policy.max_attempts
    - A committed candidate's version is exactly one above what was read
    - The loop is iterative; stack depth does not grow with retries

How to change safely:
    - Never retry on generic store errors here
    - Keep the previous value flowing out of the engine untouched; the
      archiver depends on it
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from ..store.base import ItemValue, VersionConflictError, VersionedRecordStore

logger = logging.getLogger(__name__)


class UpdateError(Exception):
    """Base exception for update path failures.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "UPDATE_ERROR"
        self.details = details or {}


class RetriesExhaustedError(UpdateError):
    """Every allowed cycle ended in a version conflict.

    Attributes:
        item_id: Item that could not be updated
        attempts: Number of conditional saves tried
    """

    def __init__(self, item_id: int, attempts: int) -> None:
        super().__init__(
            f"Gave up updating item {item_id} after {attempts} conflicting attempts",
            code="RETRIES_EXHAUSTED",
            details={"item_id": item_id, "attempts": attempts},
        )
        self.item_id = item_id
        self.attempts = attempts


class UpdateState(Enum):
    """States of a single update() call."""

    READING = "reading"
    COMPUTING = "computing"
    WRITING = "writing"
    CONFLICTED = "conflicted"
    COMMITTED = "committed"
    NOT_FOUND = "not_found"
    RETRIES_EXHAUSTED = "retries_exhausted"


@dataclass(frozen=True)
class RetryPolicy:
    """Bound and pacing of conflict retries.

    Attributes:
        max_attempts: Maximum read-modify-write cycles
        backoff_base_ms: Delay before the second attempt
        backoff_max_ms: Ceiling for the exponential delay
        jitter: Scale each delay by a uniform factor in [0, 1)
    """

    max_attempts: int = 10
    backoff_base_ms: float = 5.0
    backoff_max_ms: float = 250.0
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff_base_ms < 0 or self.backoff_max_ms < 0:
            raise ValueError("backoff delays must be >= 0")

    def delay_ms(self, attempt: int, rng: random.Random) -> float:
        """Delay to wait after the given failed attempt (1-based)."""
        delay = min(self.backoff_max_ms, self.backoff_base_ms * (2 ** (attempt - 1)))
        if self.jitter:
            delay *= rng.random()
        return delay


@dataclass
class UpdateResult:
    """Outcome of an update() call that did not raise.

    Attributes:
        item_id: Item that was targeted
        state: COMMITTED or NOT_FOUND
        previous_value: Value displaced by the commit (None if not found)
        version: Version now stored (None if not found)
        attempts: Conditional saves tried, including the winning one
        transitions: Every state visited, in order
    """

    item_id: int
    state: UpdateState
    previous_value: Optional[ItemValue] = None
    version: Optional[int] = None
    attempts: int = 0
    transitions: list[UpdateState] = field(default_factory=list)

    @property
    def committed(self) -> bool:
        return self.state == UpdateState.COMMITTED

    @property
    def not_found(self) -> bool:
        return self.state == UpdateState.NOT_FOUND


class UpdateEngine:
    """Retrying read-modify-conditional-write over a VersionedRecordStore.

    The engine keeps no per-item state and takes no locks, so one instance
    can serve any number of concurrent callers; all mutual exclusion comes
    from the store's conditional save.

    Example:
        >>> engine = UpdateEngine(record_store, RetryPolicy(max_attempts=10))
        >>> result = await engine.update(1, "new value")
        >>> if result.committed:
        ...     await archiver.archive(1, result.previous_value, result.version)
    """

    def __init__(
        self,
        record_store: VersionedRecordStore,
        policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            record_store: Store holding the latest records
            policy: Retry bound and backoff (defaults to 10 attempts)
            sleep: Coroutine used for backoff waits, in seconds
            rng: Random source for jitter
        """
        self.record_store = record_store
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._rng = rng or random.Random()

    async def update(self, item_id: int, value: ItemValue) -> UpdateResult:
        """Replace the value of an item, retrying on version conflicts.

        Args:
            item_id: Item to update
            value: New value

        Returns:
            UpdateResult in state COMMITTED (with the superseded value) or
            NOT_FOUND (nothing was written)

        Raises:
            RetriesExhaustedError: If every attempt conflicted
            StoreError: Any other store failure, unretried
        """
        transitions: list[UpdateState] = []

        for attempt in range(1, self.policy.max_attempts + 1):
            transitions.append(UpdateState.READING)
            current = await self.record_store.get(item_id)
            if current is None:
                transitions.append(UpdateState.NOT_FOUND)
                logger.info("Item not found, nothing to update", extra={"item_id": item_id})
                return UpdateResult(
                    item_id=item_id,
                    state=UpdateState.NOT_FOUND,
                    attempts=attempt - 1,
                    transitions=transitions,
                )

            transitions.append(UpdateState.COMPUTING)
            candidate, previous = current.next(value)

            transitions.append(UpdateState.WRITING)
            logger.info(
                "Updating item",
                extra={
                    "item_id": item_id,
                    "version": current.version,
                    "attempt": attempt,
                    "from_value": previous,
                    "to_value": value,
                },
            )
            try:
                await self.record_store.conditional_save(candidate, current.version)
            except VersionConflictError as e:
                transitions.append(UpdateState.CONFLICTED)
                logger.warning(
                    "Version conflict, retrying update",
                    extra={
                        "item_id": item_id,
                        "attempt": attempt,
                        "expected_version": e.expected_version,
                        "actual_version": e.actual_version,
                    },
                )
                if attempt < self.policy.max_attempts:
                    await self._backoff(attempt)
                continue

            transitions.append(UpdateState.COMMITTED)
            logger.info(
                "Updated item",
                extra={
                    "item_id": item_id,
                    "version": candidate.version,
                    "attempt": attempt,
                    "from_value": previous,
                    "to_value": value,
                },
            )
            return UpdateResult(
                item_id=item_id,
                state=UpdateState.COMMITTED,
                previous_value=previous,
                version=candidate.version,
                attempts=attempt,
                transitions=transitions,
            )

        transitions.append(UpdateState.RETRIES_EXHAUSTED)
        logger.error(
            "Update retries exhausted",
            extra={"item_id": item_id, "attempts": self.policy.max_attempts},
        )
        error = RetriesExhaustedError(item_id, self.policy.max_attempts)
        error.details["transitions"] = [s.value for s in transitions]
        raise error

    async def _backoff(self, attempt: int) -> None:
        delay_ms = self.policy.delay_ms(attempt, self._rng)
        if delay_ms > 0:
            await self._sleep(delay_ms / 1000.0)
