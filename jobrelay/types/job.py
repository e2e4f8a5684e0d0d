"""
Job-related type definitions shared by the engine and the stores.
"""

import copy
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from jobrelay.constants import JobStatus


class JobRecord(BaseModel):
    """
    Persisted snapshot of a job.
    This is what stores hold and what `JobEngine.get` returns.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    data: Any = None
    status: JobStatus = JobStatus.PENDING
    added_on: datetime
    end_on: datetime | None = None
    result: Any = None
    error: str | None = None
    loaded: float | None = None
    total: float | None = None

    @property
    def is_terminal(self) -> bool:
        """Check if the job reached success or error."""
        return self.status.is_terminal

    def apply(self, patch: dict[str, Any]) -> "JobRecord":
        """Return a copy with the patch fields applied."""
        return self.model_copy(update=copy.deepcopy(patch), deep=True)


class ListenerOptions(BaseModel):
    """
    Per-listener delivery options.

    delay: seconds to wait between hand-off and claim.
    ttl: seconds a claimed job may run before it is expired (None = never).
    """

    model_config = ConfigDict(frozen=True)

    delay: float = Field(default=0.0, ge=0)
    ttl: float | None = Field(default=None, gt=0)


@dataclass
class JobFilter:
    """Filter criteria for scanning job records."""

    name: str | None = None
    status: JobStatus | set[JobStatus] | None = None

    def matches(self, record: JobRecord) -> bool:
        """Check if a record matches this filter."""
        if self.name is not None and record.name != self.name:
            return False
        if self.status:
            if isinstance(self.status, set):
                if record.status not in self.status:
                    return False
            elif record.status != self.status:
                return False
        return True
