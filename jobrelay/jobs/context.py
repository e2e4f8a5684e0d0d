"""
Handler-facing view of a claimed job.
"""

from typing import Any, Callable

from jobrelay.constants import JobEventType
from jobrelay.jobs.channel import Observer
from jobrelay.jobs.job import Job

# Lifecycle events only the dispatcher may emit
RESERVED_EVENTS = frozenset(
    {JobEventType.ADD, JobEventType.SUCCESS, JobEventType.ERROR}
)


class JobContext:
    """
    Context passed to listener handlers.

    Handlers finish the job with `done(error, result)` (or by returning /
    raising from an async handler), report progress with
    `emit("progress", loaded, total)`, and can watch for forced
    termination with `on("error", observer)`.
    """

    def __init__(
        self,
        job: Job,
        on_done: Callable[[Job, Any, Any], None],
        on_progress: Callable[[Job, Any, Any], None],
    ):
        self._job = job
        self._on_done = on_done
        self._on_progress = on_progress

    @property
    def job_id(self) -> str:
        return self._job.id

    @property
    def name(self) -> str:
        return self._job.name

    @property
    def data(self) -> Any:
        return self._job.data

    @property
    def aborted(self) -> bool:
        """True once the job was resolved, by this handler or by force."""
        return self._job.is_terminal

    def done(self, error: Any = None, result: Any = None) -> None:
        """
        Complete the job.

        A truthy error fails the job; anything else succeeds it with
        `result`. Calls after the job is resolved are ignored.
        """
        self._on_done(self._job, error, result)

    def progress(self, loaded: float | None = None, total: float | None = None) -> None:
        """Persist progress counters for the running job."""
        self._on_progress(self._job, loaded, total)

    def emit(self, event: str, *args: Any) -> None:
        """
        Emit an event on the job's channel.

        "progress" is persisted before observers are notified. Lifecycle
        events (add, success, error) cannot be emitted by handlers.
        """
        if event == JobEventType.PROGRESS:
            self.progress(*args)
            return
        if event in RESERVED_EVENTS:
            raise ValueError(f"Handlers cannot emit lifecycle event: {event}")
        self._job.channel.emit(event, *args)

    def on(self, event: str, observer: Observer) -> Observer:
        return self._job.channel.on(event, observer)

    def once(self, event: str, observer: Observer) -> Observer:
        return self._job.channel.once(event, observer)

    def off(self, event: str, observer: Observer | None = None) -> None:
        self._job.channel.off(event, observer)

    def __repr__(self) -> str:
        return f"JobContext(job_id={self.job_id}, name={self.name})"
