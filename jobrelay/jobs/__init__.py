"""
Jobs module.
Contains the job entity, its event channel and the handler context.
"""

from jobrelay.jobs.channel import EventChannel, Observer
from jobrelay.jobs.context import JobContext
from jobrelay.jobs.job import Job, utcnow

__all__ = [
    "EventChannel",
    "Observer",
    "Job",
    "JobContext",
    "utcnow",
]
