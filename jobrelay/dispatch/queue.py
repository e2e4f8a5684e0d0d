"""
Pending queue for jobs submitted while no listener is registered.
"""

from collections import deque
from typing import Iterable

from jobrelay.jobs.job import Job


class PendingQueue:
    """Per-name FIFO buffers of pending jobs."""

    def __init__(self) -> None:
        self._queues: dict[str, deque[Job]] = {}

    def append(self, job: Job) -> int:
        """
        Queue a job behind the others with the same name.

        Returns:
            Queue depth for the job's name.
        """
        queue = self._queues.setdefault(job.name, deque())
        queue.append(job)
        return len(queue)

    def restore(self, name: str, jobs: Iterable[Job]) -> int:
        """Put jobs back at the head of a queue, keeping their order."""
        queue = self._queues.setdefault(name, deque())
        queue.extendleft(reversed(list(jobs)))
        if not queue:
            del self._queues[name]
            return 0
        return len(queue)

    def drain(self, name: str) -> list[Job]:
        """Remove and return every queued job for a name, oldest first."""
        return list(self._queues.pop(name, ()))

    def remove(self, job: Job) -> bool:
        """Drop a specific job (e.g. canceled while queued)."""
        queue = self._queues.get(job.name)
        if not queue or job not in queue:
            return False
        queue.remove(job)
        if not queue:
            del self._queues[job.name]
        return True

    def depth(self, name: str) -> int:
        return len(self._queues.get(name, ()))

    def names(self) -> list[str]:
        return list(self._queues.keys())

    def __len__(self) -> int:
        return sum(len(queue) for queue in self._queues.values())
