"""
Job record store interface.

The engine only needs point operations by id plus a cursor over a filtered
scan that can delete records while iterating.
"""

from abc import ABC, abstractmethod
from typing import Any

from jobrelay.types.job import JobFilter, JobRecord


class JobCursor(ABC):
    """
    Asynchronous cursor over a filtered scan.

    Iterating yields matching records ("data"), exhaustion is the end of
    the scan ("end"), a StoreError raised from iteration is the "error"
    signal, and `close()` (or leaving an `async with` block) is "finish".
    """

    def __init__(self) -> None:
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> "JobCursor":
        return self

    @abstractmethod
    async def __anext__(self) -> JobRecord:
        ...

    @abstractmethod
    async def remove(self, record: JobRecord | str) -> None:
        """Delete a record (or id) from the store while iterating."""
        ...

    async def close(self) -> None:
        """Finish the scan; further iteration ends immediately."""
        self._closed = True

    async def to_list(self) -> list[JobRecord]:
        """Drain the cursor into a list."""
        return [record async for record in self]

    async def __aenter__(self) -> "JobCursor":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


class JobStore(ABC):
    """Abstract interface for job record persistence."""

    async def init(self) -> None:
        """Prepare the store for use (create schema, open pools)."""

    async def close(self) -> None:
        """Release store resources."""

    @abstractmethod
    async def insert(self, record: JobRecord) -> str:
        """
        Insert a new job record.

        Returns:
            The record id.

        Raises:
            StoreError: If the record could not be written.
        """
        ...

    @abstractmethod
    async def find_by_id(self, job_id: str) -> JobRecord | None:
        """Get a record by id, or None if absent."""
        ...

    @abstractmethod
    async def update_by_id(self, job_id: str, patch: dict[str, Any]) -> None:
        """
        Apply a partial update to a record.

        Raises:
            JobNotFoundError: If no record has this id.
            StoreError: If the update could not be written.
        """
        ...

    @abstractmethod
    def scan(self, filter: JobFilter | None = None) -> JobCursor:
        """Open a cursor over records matching the filter."""
        ...


def record_id(record: JobRecord | str) -> str:
    """Accept either a record or a bare id."""
    return record if isinstance(record, str) else record.id
