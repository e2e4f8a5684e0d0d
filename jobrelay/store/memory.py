"""
In-memory job record store.
"""

import logging
from typing import Any

from jobrelay.errors import JobNotFoundError, StoreError
from jobrelay.store.base import JobCursor, JobStore, record_id
from jobrelay.types.job import JobFilter, JobRecord

logger = logging.getLogger(__name__)


class MemoryJobStore(JobStore):
    """
    Dictionary-backed store holding deep copies of records.

    Suitable for tests and for embedding the engine where durability
    across restarts is not needed.
    """

    def __init__(self) -> None:
        self._records: dict[str, JobRecord] = {}

    async def insert(self, record: JobRecord) -> str:
        if record.id in self._records:
            raise StoreError(f"Duplicate job id: {record.id}", job_id=record.id)
        self._records[record.id] = record.model_copy(deep=True)
        return record.id

    async def find_by_id(self, job_id: str) -> JobRecord | None:
        record = self._records.get(job_id)
        return record.model_copy(deep=True) if record is not None else None

    async def update_by_id(self, job_id: str, patch: dict[str, Any]) -> None:
        record = self._records.get(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        self._records[job_id] = record.apply(patch)

    def scan(self, filter: JobFilter | None = None) -> "MemoryJobCursor":
        return MemoryJobCursor(self, filter or JobFilter())

    def delete(self, job_id: str) -> bool:
        """Remove a record; returns False if it was not present."""
        return self._records.pop(job_id, None) is not None

    def __len__(self) -> int:
        return len(self._records)


class MemoryJobCursor(JobCursor):
    """
    Cursor over a snapshot of the matching records.

    The snapshot is taken on first iteration, so removing records while
    iterating never skips or repeats entries.
    """

    def __init__(self, store: MemoryJobStore, filter: JobFilter):
        super().__init__()
        self._store = store
        self._filter = filter
        self._pending: list[JobRecord] | None = None

    async def __anext__(self) -> JobRecord:
        if self._closed:
            raise StopAsyncIteration

        if self._pending is None:
            self._pending = [
                record.model_copy(deep=True)
                for record in self._store._records.values()
                if self._filter.matches(record)
            ]
            self._pending.reverse()

        if not self._pending:
            raise StopAsyncIteration
        return self._pending.pop()

    async def remove(self, record: JobRecord | str) -> None:
        job_id = record_id(record)
        if not self._store.delete(job_id):
            logger.debug("Removed record was already gone", extra={"job_id": job_id})
