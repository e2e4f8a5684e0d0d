"""
Expiry supervisor for running jobs.

Each job whose listener sets a ttl gets an inactivity timer when its
handler is invoked. A job still not terminal when the timer fires is
handed to the expire callback, which force-resolves it through the same
gate as normal completion.
"""

import logging
from typing import Callable

from jobrelay.jobs.job import Job
from jobrelay.timers import Scheduler, Timer

logger = logging.getLogger(__name__)


class ExpirySupervisor:
    """
    Tracks one inactivity timer per running job.

    Arming a job twice replaces its timer; disarming is idempotent.
    """

    def __init__(self, scheduler: Scheduler, on_expire: Callable[[Job], None]):
        """
        Initialize the supervisor.

        Args:
            scheduler: Timer source.
            on_expire: Called with a job whose timer fired while it was
                still not terminal.
        """
        self._scheduler = scheduler
        self._on_expire = on_expire
        self._timers: dict[str, tuple[Job, Timer]] = {}

    def arm(self, job: Job, ttl: float) -> None:
        """Start (or restart) the inactivity timer for a job."""
        self.disarm(job)
        timer = self._scheduler.call_later(ttl, self._fire, job.id)
        self._timers[job.id] = (job, timer)
        logger.debug("Armed expiry timer", extra={"job_id": job.id, "ttl": ttl})

    def disarm(self, job: Job) -> bool:
        """
        Cancel a job's timer.

        Returns:
            True if a timer was pending.
        """
        entry = self._timers.pop(job.id, None)
        if entry is None:
            return False
        entry[1].cancel()
        return True

    def armed(self, job: Job) -> bool:
        return job.id in self._timers

    def _fire(self, job_id: str) -> None:
        entry = self._timers.pop(job_id, None)
        if entry is None:
            return

        job = entry[0]
        if job.is_terminal:
            return

        logger.warning(
            "Job expired due to inactivity",
            extra={"job_id": job.id, "job_name": job.name}
        )
        self._on_expire(job)

    def clear(self) -> None:
        """Cancel every pending timer."""
        for _, timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    def __len__(self) -> int:
        return len(self._timers)
