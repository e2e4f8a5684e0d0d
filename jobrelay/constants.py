"""
Application constants.
Centralized location for all constant values used across the engine.
"""

from enum import StrEnum


class JobStatus(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> RUNNING (claimed by a listener)
    - RUNNING -> SUCCESS (handler completed)
    - RUNNING -> ERROR (handler failed, expired or canceled)
    - PENDING -> ERROR (canceled or insert failed before any handler ran)
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        """Check if no further transitions are allowed."""
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.SUCCESS, JobStatus.ERROR}
)


class JobEventType(StrEnum):
    """Events emitted on a job's event channel."""

    ADD = "add"
    PROGRESS = "progress"
    SUCCESS = "success"
    ERROR = "error"


# Forced resolution messages
CANCELED_MESSAGE = "Canceled"
EXPIRED_MESSAGE = "Expired due to inactivity"

# Default listener options
DEFAULT_DELAY_SECONDS = 0.0
DEFAULT_TTL_SECONDS: float | None = None

# Metrics names
METRIC_PENDING_DEPTH = "job_pending_depth"
METRIC_JOBS_SUBMITTED = "jobs_submitted_total"
METRIC_JOBS_COMPLETED = "jobs_completed_total"
METRIC_JOB_DURATION = "job_duration_seconds"
METRIC_JOBS_EXPIRED = "jobs_expired_total"
METRIC_JOBS_CANCELED = "jobs_canceled_total"

# Trace span names
SPAN_SUBMIT_JOB = "submit_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_CANCEL_JOB = "cancel_job"
