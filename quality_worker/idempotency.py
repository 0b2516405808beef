"""Idempotency guard for audio analysis work units.

A work unit is identified by its audio file name. Before any expensive call
the guard decides whether the file was already analysed, has no business
record to attach to, or should proceed. Work for one file name is
serialised inside the process with an asyncio lock; across processes the
store's unique result index and conditional treated update close the race.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

from quality_worker.pipeline import AnalysisResult
from quality_worker.storage.mongo_store import AssociatedRecord
from quality_worker.utils.errors import DuplicateResultError, StorageError
from quality_worker.utils.retry import execute_with_backoff

logger = logging.getLogger(__name__)


class GuardOutcome(str, Enum):
    PROCEED = "proceed"
    ALREADY_DONE = "already_done"
    REPAIRED = "repaired"
    UNASSOCIATED = "unassociated"


@dataclass(frozen=True)
class GuardDecision:
    outcome: GuardOutcome
    record: AssociatedRecord | None = None


@dataclass
class _LockEntry:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0


class ResultStore(Protocol):
    """Store operations the guard relies on."""

    async def find_result(self, file_name: str) -> Any: ...

    async def find_record(self, file_name: str) -> AssociatedRecord | None: ...

    async def insert_result(self, result: AnalysisResult) -> str: ...

    async def mark_treated(self, record: AssociatedRecord) -> bool: ...


class IdempotencyGuard:
    """Check-then-commit guard keyed by file name."""

    def __init__(
        self,
        store: ResultStore,
        mark_attempts: int = 3,
        mark_base_delay: float = 0.5,
    ) -> None:
        self._store = store
        self._mark_attempts = mark_attempts
        self._mark_base_delay = mark_base_delay
        self._locks: dict[str, _LockEntry] = {}

    @asynccontextmanager
    async def lock(self, file_name: str) -> AsyncIterator[None]:
        """Serialise work for one file name within this process."""
        entry = self._locks.setdefault(file_name, _LockEntry())
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                self._locks.pop(file_name, None)

    @property
    def active_locks(self) -> int:
        return len(self._locks)

    async def check(self, file_name: str) -> GuardDecision:
        """Decide what to do with a file before processing it.

        Returns:
            ALREADY_DONE when a result exists or the record is treated,
            UNASSOCIATED when no record matches, REPAIRED when a stored
            result was found with its record still untreated and this call
            set the flag, otherwise PROCEED with the record attached.

        Raises:
            StorageError: If the store cannot be queried.
        """
        if await self._store.find_result(file_name) is not None:
            record = await self._store.find_record(file_name)
            if record is not None and not record.treated:
                # An earlier commit stored the result but never set the flag
                logger.warning(
                    "Result exists but record %s is untreated, marking it",
                    record.record_id,
                    extra={"file_name": file_name},
                )
                if await self._mark_treated(record):
                    return GuardDecision(GuardOutcome.REPAIRED, record)
            return GuardDecision(GuardOutcome.ALREADY_DONE, record)

        record = await self._store.find_record(file_name)
        if record is None:
            return GuardDecision(GuardOutcome.UNASSOCIATED)
        if record.treated:
            return GuardDecision(GuardOutcome.ALREADY_DONE, record)
        return GuardDecision(GuardOutcome.PROCEED, record)

    async def commit(self, record: AssociatedRecord, result: AnalysisResult) -> bool:
        """Store the result and claim the record's treated flag.

        The treated write is retried on StorageError; if it still fails the
        error propagates and a later check() completes the commit.

        Returns:
            True if this call stored the result and flipped the flag, False
            if another delivery got there first.

        Raises:
            StorageError: If a write fails for reasons other than a lost race.
        """
        try:
            result_id = await self._store.insert_result(result)
        except DuplicateResultError:
            logger.info(
                "Result already stored by another delivery",
                extra={"file_name": result.file_name},
            )
            return False

        logger.info(
            "Result stored: %s", result_id, extra={"file_name": result.file_name}
        )

        if not await self._mark_treated(record):
            logger.warning(
                "Record %s was already treated when committing",
                record.record_id,
                extra={"file_name": result.file_name},
            )
            return False
        return True

    async def _mark_treated(self, record: AssociatedRecord) -> bool:
        return await execute_with_backoff(
            lambda: self._store.mark_treated(record),
            max_attempts=self._mark_attempts,
            base_delay=self._mark_base_delay,
            label="mark_treated",
            retryable_exceptions=(StorageError,),
        )
