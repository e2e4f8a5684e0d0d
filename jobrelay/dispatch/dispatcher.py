"""
Dispatcher for delivering jobs to listeners.

The dispatcher owns every lifecycle transition of a job:
1. Route the submitted job to its listener, or park it in the pending queue
2. After the listener's delay, claim it (PENDING -> RUNNING) and invoke the handler
3. Record the outcome (SUCCESS / ERROR), whichever resolver gets there first

All store writes for one job run strictly in the order they were requested,
and each event is emitted only after the write backing it has completed.
"""

import asyncio
import inspect
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Coroutine

from jobrelay.constants import (
    CANCELED_MESSAGE,
    EXPIRED_MESSAGE,
    SPAN_EXECUTE_JOB,
    JobEventType,
    JobStatus,
)
from jobrelay.dispatch.expiry import ExpirySupervisor
from jobrelay.dispatch.queue import PendingQueue
from jobrelay.dispatch.registry import Handler, Listener, ListenerRegistry
from jobrelay.jobs.context import JobContext
from jobrelay.jobs.job import Job
from jobrelay.observability.logging import bind_context
from jobrelay.observability.metrics import MetricsCollector, get_metrics
from jobrelay.observability.tracing import get_tracer, set_span_attributes
from jobrelay.store.base import JobStore
from jobrelay.timers import LoopScheduler, Scheduler, Timer
from jobrelay.types.job import JobRecord, ListenerOptions

logger = logging.getLogger(__name__)


def describe_error(error: Any) -> str:
    """Stringify a handler error for storage."""
    if isinstance(error, BaseException):
        return f"{type(error).__name__}: {error}"
    return error if isinstance(error, str) else str(error)


@dataclass
class Delivery:
    """A job handed to a listener and waiting for its delay to elapse."""

    job: Job
    listener: Listener
    timer: Timer


class Dispatcher:
    """
    Routes jobs to listeners and drives their lifecycle.

    Features:
    - FIFO pending queue per name while no listener is registered
    - Compare-and-set claim so a job runs at most once, even when the
      listener is replaced while a delivery is in flight
    - Single resolution gate shared by completion, expiry and cancellation
    - Per-job serialized persistence; events follow their writes
    """

    def __init__(
        self,
        store: JobStore,
        registry: ListenerRegistry | None = None,
        queue: PendingQueue | None = None,
        scheduler: Scheduler | None = None,
        metrics: MetricsCollector | None = None,
    ):
        self.store = store
        self.registry = registry or ListenerRegistry()
        self.queue = queue or PendingQueue()
        self.scheduler = scheduler or LoopScheduler()
        self.supervisor = ExpirySupervisor(self.scheduler, self._expire)

        self._metrics = metrics or get_metrics()
        self._jobs: dict[str, Job] = {}
        self._deliveries: dict[str, dict[str, Delivery]] = defaultdict(dict)
        self._handler_tasks: dict[str, asyncio.Task] = {}
        self._tasks: set[asyncio.Task] = set()
        self._inserts: dict[str, asyncio.Task] = {}
        self._claim_chains: dict[str, asyncio.Task] = {}

    # ------------------------------------------------------------------
    # Submission and routing
    # ------------------------------------------------------------------

    def accept(self, job: Job) -> None:
        """
        Take ownership of a newly submitted job.

        The insert is queued as the job's first write, then the job is
        routed. Neither step waits for I/O.
        """
        self._jobs[job.id] = job
        self._metrics.record_job_submitted(job.name)

        record = job.snapshot()
        self._inserts[job.id] = self._write(job, lambda: self._insert(job, record))
        self._route(job)

    def _route(self, job: Job) -> None:
        listener = self.registry.get(job.name)
        if listener is not None:
            self._deliver(job, listener)
            return

        depth = self.queue.append(job)
        self._metrics.update_pending_depth(job.name, depth)
        logger.debug(
            "No listener, job queued",
            extra={"job_id": job.id, "job_name": job.name, "depth": depth}
        )

    async def _insert(self, job: Job, record: JobRecord) -> None:
        try:
            await self.store.insert(record)
        except Exception as e:
            self._inserts.pop(job.id, None)
            logger.error(
                "Failed to store job",
                extra={"job_id": job.id, "job_name": job.name, "error": str(e)}
            )
            self._fail_unsaved(job, e)
            return

        job.saved = True
        self._inserts.pop(job.id, None)
        logger.info("Job added", extra={"job_id": job.id, "job_name": job.name})
        job.channel.emit(JobEventType.ADD, job)

    def _fail_unsaved(self, job: Job, error: Exception) -> None:
        # Nothing was stored, so the outcome lives on the handle only
        job.settle(JobStatus.ERROR, error=str(error))
        self._withdraw(job)
        self._cancel_handler(job)
        job.channel.emit(JobEventType.ERROR, str(error))
        self._finish(job)

    # ------------------------------------------------------------------
    # Delivery and claim
    # ------------------------------------------------------------------

    def _deliver(self, job: Job, listener: Listener) -> None:
        timer = self.scheduler.call_later(
            listener.options.delay, self._claim, job, listener
        )
        self._deliveries[job.name][job.id] = Delivery(job, listener, timer)

    def _claim(self, job: Job, listener: Listener) -> None:
        """
        Delay elapsed: start the job now, or behind earlier claims.

        A claim waits while the job's insert is in flight or an earlier
        claim for the same name is still waiting, so handlers are invoked
        in delivery order. The delivery stays recallable until then.
        """
        previous = self._claim_chains.get(job.name)
        insert = self._inserts.get(job.id)
        if previous is None and insert is None:
            self._start(job, listener)
            return

        task = self._spawn(self._claim_after(job, listener, previous, insert))
        self._claim_chains[job.name] = task
        task.add_done_callback(lambda t: self._release_chain(job.name, t))

    async def _claim_after(
        self,
        job: Job,
        listener: Listener,
        *waits: asyncio.Task | None,
    ) -> None:
        pending = {task for task in waits if task is not None and not task.done()}
        if pending:
            await asyncio.wait(pending)
        self._start(job, listener)

    def _release_chain(self, name: str, task: asyncio.Task) -> None:
        if self._claim_chains.get(name) is task:
            del self._claim_chains[name]

    def _start(self, job: Job, listener: Listener) -> None:
        deliveries = self._deliveries.get(job.name)
        if deliveries is not None:
            delivery = deliveries.get(job.id)
            if delivery is not None and delivery.listener is listener:
                del deliveries[job.id]
            if not deliveries:
                self._deliveries.pop(job.name, None)

        if not self.registry.is_current(listener):
            logger.debug(
                "Discarding delivery to replaced listener",
                extra={"job_id": job.id, "job_name": job.name}
            )
            return

        if not job.claim():
            logger.debug(
                "Job already claimed, skipping duplicate delivery",
                extra={"job_id": job.id, "status": job.status}
            )
            return

        # Queued before anything the handler writes
        self._write(job, lambda: self._persist(job, {"status": JobStatus.RUNNING}))
        self._invoke(job, listener)

    def _invoke(self, job: Job, listener: Listener) -> None:
        if listener.options.ttl is not None:
            self.supervisor.arm(job, listener.options.ttl)

        context = JobContext(job, self._complete, self._progress)

        logger.info(
            "Executing job",
            extra={"job_id": job.id, "job_name": job.name}
        )

        # Async handler tasks copy the bound context when they are created
        with (
            bind_context(job_id=job.id, job_name=job.name),
            get_tracer().start_as_current_span(SPAN_EXECUTE_JOB),
        ):
            set_span_attributes(job_id=job.id, job_name=job.name)

            try:
                outcome = listener.handler(context)
            except Exception as e:
                logger.warning(
                    "Handler raised",
                    extra={"job_id": job.id, "error": describe_error(e)}
                )
                self._complete(job, e, None)
                return

            if inspect.isawaitable(outcome):
                task = asyncio.ensure_future(self._await_handler(job, outcome))
                self._handler_tasks[job.id] = task
                task.add_done_callback(lambda t: self._handler_tasks.pop(job.id, None))

    async def _await_handler(self, job: Job, outcome: Awaitable[Any]) -> None:
        try:
            result = await outcome
        except asyncio.CancelledError:
            if job.is_terminal:
                return
            raise
        except Exception as e:
            logger.warning(
                "Handler raised",
                extra={"job_id": job.id, "error": describe_error(e)}
            )
            self._complete(job, e, None)
            return

        self._complete(job, None, result)

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _complete(self, job: Job, error: Any, result: Any) -> None:
        if error:
            self._resolve(job, JobStatus.ERROR, error=describe_error(error))
        else:
            self._resolve(job, JobStatus.SUCCESS, result=result)

    def _resolve(
        self,
        job: Job,
        status: JobStatus,
        result: Any = None,
        error: str | None = None,
        forced: bool = False,
    ) -> asyncio.Task | None:
        """
        Pass the job through the terminal gate and queue the final write.

        Returns:
            The commit task, or None if another resolver already won.
        """
        if not job.settle(status, result=result, error=error):
            logger.debug(
                "Ignoring resolution of finished job",
                extra={"job_id": job.id, "status": job.status, "attempted": status}
            )
            return None

        self._withdraw(job)
        return self._write(job, lambda: self._commit(job, forced))

    async def _commit(self, job: Job, forced: bool) -> None:
        patch: dict[str, Any] = {"status": job.status, "end_on": job.end_on}
        if job.status is JobStatus.SUCCESS:
            patch["result"] = job.result
        else:
            patch["error"] = job.error

        await self._persist(job, patch)

        duration = (job.end_on - job.added_on).total_seconds() if job.end_on else 0.0
        self._metrics.record_job_completed(job.name, job.status.value, duration)

        if job.status is JobStatus.SUCCESS:
            logger.info(
                "Job completed successfully",
                extra={"job_id": job.id, "duration": f"{duration:.3f}s"}
            )
            job.channel.emit(JobEventType.SUCCESS, job.result)
        else:
            logger.warning(
                "Job failed",
                extra={"job_id": job.id, "error": job.error, "forced": forced}
            )
            job.channel.emit(JobEventType.ERROR, job.error)

        # The handler has seen the error event; stop whatever it is awaiting
        if forced:
            self._cancel_handler(job)
        self._finish(job)

    def _withdraw(self, job: Job) -> None:
        """Stop any timer or queue slot still referring to a resolved job."""
        self.supervisor.disarm(job)

        deliveries = self._deliveries.get(job.name)
        if deliveries is not None:
            delivery = deliveries.pop(job.id, None)
            if delivery is not None:
                delivery.timer.cancel()
            if not deliveries:
                self._deliveries.pop(job.name, None)

        if self.queue.remove(job):
            self._metrics.update_pending_depth(job.name, self.queue.depth(job.name))

    def _cancel_handler(self, job: Job) -> None:
        task = self._handler_tasks.pop(job.id, None)
        if task is not None and not task.done():
            task.cancel()

    def _finish(self, job: Job) -> None:
        self._jobs.pop(job.id, None)
        job.mark_finished()

    def force_resolve(self, job: Job, message: str) -> asyncio.Task | None:
        """
        Resolve a job as failed from outside its handler.

        The job's error observers are notified after the outcome is stored,
        then an async handler still running is cancelled.

        Returns:
            The commit task, or None if the job was already resolved.
        """
        return self._resolve(job, JobStatus.ERROR, error=message, forced=True)

    def _expire(self, job: Job) -> None:
        if self.force_resolve(job, EXPIRED_MESSAGE) is not None:
            self._metrics.record_job_expired(job.name)

    async def cancel_job(self, job: Job) -> bool:
        """
        Cancel a live job and wait for the outcome to be stored.

        Returns:
            True if this call canceled the job, False if it was already resolved.
        """
        commit = self.force_resolve(job, CANCELED_MESSAGE)
        if commit is None:
            return False

        self._metrics.record_job_canceled(job.name)
        logger.info("Job canceled", extra={"job_id": job.id, "job_name": job.name})
        await asyncio.wait({commit})
        return True

    # ------------------------------------------------------------------
    # Progress
    # ------------------------------------------------------------------

    def _progress(self, job: Job, loaded: Any, total: Any) -> None:
        if not job.update_progress(loaded, total):
            logger.debug(
                "Ignoring progress for job that is not running",
                extra={"job_id": job.id, "status": job.status}
            )
            return

        patch = {"loaded": job.loaded, "total": job.total}
        self._write(job, lambda: self._commit_progress(job, patch))

    async def _commit_progress(self, job: Job, patch: dict[str, Any]) -> None:
        if await self._persist(job, patch):
            job.channel.emit(JobEventType.PROGRESS, patch["loaded"], patch["total"])

    # ------------------------------------------------------------------
    # Listener registration
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        handler: Handler,
        options: ListenerOptions | None = None,
    ) -> Listener:
        """
        Register a listener and deliver every job waiting for the name.

        Jobs handed to a replaced listener but not yet claimed are moved to
        the new one ahead of the pending queue, preserving submission order.
        """
        listener, previous = self.registry.register(name, handler, options)

        waiting: list[Job] = []
        if previous is not None:
            waiting.extend(self._recall(name))
        waiting.extend(self.queue.drain(name))
        self._metrics.update_pending_depth(name, 0)

        for job in waiting:
            self._deliver(job, listener)

        if waiting:
            logger.info(
                "Delivering waiting jobs",
                extra={"job_name": name, "count": len(waiting)}
            )
        return listener

    def unregister(self, name: str | None = None) -> list[str]:
        """
        Remove one listener or all of them.

        Unclaimed deliveries go back to the pending queue; claimed jobs keep
        running under the handler they were claimed with.

        Returns:
            Names whose listener was removed.
        """
        removed = self.registry.unregister(name)
        for listener in removed:
            recalled = self._recall(listener.name)
            if recalled:
                depth = self.queue.restore(listener.name, recalled)
                self._metrics.update_pending_depth(listener.name, depth)
        return [listener.name for listener in removed]

    def _recall(self, name: str) -> list[Job]:
        deliveries = self._deliveries.pop(name, {})
        for delivery in deliveries.values():
            delivery.timer.cancel()
        return [delivery.job for delivery in deliveries.values()]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _write(self, job: Job, op: Callable[[], Coroutine[Any, Any, Any]]) -> asyncio.Task:
        """
        Queue a store write behind the job's previous writes.

        Returns:
            The task running the write.
        """
        previous = job._last_write

        async def chained() -> Any:
            if previous is not None and not previous.done():
                await asyncio.wait({previous})
            return await op()

        task = self._spawn(chained())
        job._last_write = task
        return task

    async def _persist(self, job: Job, patch: dict[str, Any]) -> bool:
        if not job.saved:
            return False
        try:
            await self.store.update_by_id(job.id, patch)
        except Exception as e:
            logger.error(
                "Failed to persist job update",
                extra={"job_id": job.id, "fields": sorted(patch), "error": str(e)}
            )
            job.channel.emit(JobEventType.ERROR, str(e))
            return False
        return True

    # ------------------------------------------------------------------
    # Task bookkeeping
    # ------------------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Dispatcher task failed", exc_info=error)

    def get_live(self, job_id: str) -> Job | None:
        """Get a job this dispatcher is still tracking."""
        return self._jobs.get(job_id)

    async def drain(self) -> None:
        """Wait until no persistence or event task is outstanding."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Stop deliveries, timers and handler tasks, then drain writes."""
        self.unregister()
        self.supervisor.clear()
        for task in list(self._handler_tasks.values()):
            task.cancel()
        self._handler_tasks.clear()
        await self.drain()
        logger.info("Dispatcher stopped", extra={"live_jobs": len(self._jobs)})
