"""
Type definitions for the job relay.
Contains the record, filter and listener option types shared across modules.
"""

from jobrelay.types.job import (
    JobFilter,
    JobRecord,
    ListenerOptions,
)

__all__ = [
    "JobRecord",
    "JobFilter",
    "ListenerOptions",
]
