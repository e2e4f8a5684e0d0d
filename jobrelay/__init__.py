"""
In-Process Job Relay

A single-process job dispatch engine: named jobs are queued until a listener
appears, claimed exactly once, supervised for inactivity and cancellation,
and mirrored into a pluggable job record store.
"""

__version__ = "1.0.0"

from jobrelay.constants import JobEventType, JobStatus
from jobrelay.engine import JobEngine
from jobrelay.errors import (
    InvalidListenerError,
    JobNotFoundError,
    JobRelayError,
    StoreError,
)
from jobrelay.jobs import EventChannel, Job, JobContext
from jobrelay.types import JobFilter, JobRecord, ListenerOptions

__all__ = [
    "__version__",
    "JobEngine",
    "Job",
    "JobContext",
    "EventChannel",
    "JobRecord",
    "JobFilter",
    "ListenerOptions",
    "JobStatus",
    "JobEventType",
    "JobRelayError",
    "JobNotFoundError",
    "StoreError",
    "InvalidListenerError",
]
