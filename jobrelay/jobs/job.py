"""
Job entity.

A Job is both the handle returned to producers and the in-memory lifecycle
record the dispatcher mutates. Every status change goes through `claim` or
`settle`, which are the compare-and-set gates that make the first resolver
win and every later one a no-op.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from jobrelay.constants import JobStatus
from jobrelay.jobs.channel import EventChannel, Observer
from jobrelay.types.job import JobRecord


def utcnow() -> datetime:
    """Current UTC time as an aware datetime."""
    return datetime.now(timezone.utc)


class Job:
    """
    Unit of work with identity, payload and lifecycle status.

    Producers observe it through `on(event, observer)`:
    - "add": (job) once the record was inserted
    - "progress": (loaded, total) after each persisted progress update
    - "success": (result) after the successful outcome was persisted
    - "error": (message) after a failed, expired or canceled outcome,
      or when a store write for this job failed
    """

    def __init__(
        self,
        name: str,
        data: Any = None,
        job_id: str | None = None,
        added_on: datetime | None = None,
    ):
        self.id = job_id or uuid4().hex
        self.name = name
        self.data = data
        self.status = JobStatus.PENDING
        self.added_on = added_on or utcnow()
        self.end_on: datetime | None = None
        self.result: Any = None
        self.error: str | None = None
        self.loaded: float | None = None
        self.total: float | None = None

        self.channel = EventChannel()
        self.saved = False
        self._finished = asyncio.Event()
        # Tail of this job's serialized store writes
        self._last_write: asyncio.Task | None = None

    # Event subscription

    def on(self, event: str, observer: Observer) -> "Job":
        self.channel.on(event, observer)
        return self

    def once(self, event: str, observer: Observer) -> "Job":
        self.channel.once(event, observer)
        return self

    def off(self, event: str, observer: Observer | None = None) -> "Job":
        self.channel.off(event, observer)
        return self

    # Lifecycle gates

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def claim(self) -> bool:
        """
        Transition PENDING -> RUNNING.

        Returns:
            True if this caller won the claim, False if the job was already
            claimed or resolved.
        """
        if self.status is not JobStatus.PENDING:
            return False
        self.status = JobStatus.RUNNING
        return True

    def settle(
        self,
        status: JobStatus,
        result: Any = None,
        error: str | None = None,
    ) -> bool:
        """
        Move the job to a terminal status and stamp end_on.

        Only the first call on a non-terminal job has any effect.

        Args:
            status: SUCCESS or ERROR.
            result: Stored when status is SUCCESS.
            error: Stored when status is ERROR.

        Returns:
            True if this call resolved the job.
        """
        if not status.is_terminal:
            raise ValueError(f"Not a terminal status: {status}")
        if self.is_terminal:
            return False

        self.status = status
        self.end_on = utcnow()
        if status is JobStatus.SUCCESS:
            self.result = result
        else:
            self.error = error
        return True

    def update_progress(
        self,
        loaded: float | None = None,
        total: float | None = None,
    ) -> bool:
        """Record progress counters; ignored unless the job is running."""
        if self.status is not JobStatus.RUNNING:
            return False
        if loaded is not None:
            self.loaded = loaded
        if total is not None:
            self.total = total
        return True

    # Completion

    def mark_finished(self) -> None:
        """Signal waiters that the terminal state has been persisted."""
        self._finished.set()
        self.channel.close()

    @property
    def finished(self) -> bool:
        return self._finished.is_set()

    async def wait(self, timeout: float | None = None) -> "Job":
        """
        Wait until the job is terminal and its final state was persisted.

        Raises:
            TimeoutError: If the timeout elapses first.
        """
        await asyncio.wait_for(self._finished.wait(), timeout)
        return self

    # Snapshots

    def snapshot(self) -> JobRecord:
        """Build the record representation of the current state."""
        return JobRecord(
            id=self.id,
            name=self.name,
            data=self.data,
            status=self.status,
            added_on=self.added_on,
            end_on=self.end_on,
            result=self.result,
            error=self.error,
            loaded=self.loaded,
            total=self.total,
        )

    def __repr__(self) -> str:
        return f"Job(id={self.id}, name={self.name}, status={self.status})"
