"""
Exception types raised by the engine and its job record stores.
"""

from typing import Any


class JobRelayError(Exception):
    """Base class for all engine errors."""

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        return self.message


class StoreError(JobRelayError):
    """A job record store operation failed."""


class JobNotFoundError(JobRelayError):
    """No job record exists for the requested id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}", job_id=job_id)
        self.job_id = job_id


class InvalidListenerError(JobRelayError):
    """A listener was registered with an unusable handler or options."""
