"""
Job engine facade.

Ties the store, listener registry, pending queue, dispatcher, expiry
supervisor and cancellation channel together behind the public API:

    engine = JobEngine()
    engine.register("resize", handler, delay=0.5, ttl=30)
    job = engine.submit("resize", {"path": "a.png"})
    record = await engine.get(job)

`submit` schedules work on the running event loop, so the engine must be
used from inside one.
"""

import logging
from typing import Any

from pydantic import ValidationError

from jobrelay.config import Settings, get_settings
from jobrelay.constants import SPAN_CANCEL_JOB, SPAN_SUBMIT_JOB
from jobrelay.dispatch.cancellation import CancellationChannel
from jobrelay.dispatch.dispatcher import Dispatcher
from jobrelay.dispatch.queue import PendingQueue
from jobrelay.dispatch.registry import Handler, Listener, ListenerRegistry
from jobrelay.errors import InvalidListenerError, JobNotFoundError
from jobrelay.jobs.job import Job
from jobrelay.observability.logging import setup_logging
from jobrelay.observability.metrics import MetricsCollector
from jobrelay.observability.tracing import get_tracer, setup_tracing
from jobrelay.store import create_store
from jobrelay.store.base import JobStore
from jobrelay.store.memory import MemoryJobStore
from jobrelay.timers import Scheduler
from jobrelay.types.job import JobFilter, JobRecord, ListenerOptions

logger = logging.getLogger(__name__)


class JobEngine:
    """
    In-process job dispatch engine.

    Each engine owns its own registry, queue and timers; two engines never
    share listeners.
    """

    def __init__(
        self,
        store: JobStore | None = None,
        scheduler: Scheduler | None = None,
        metrics: MetricsCollector | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the engine.

        Args:
            store: Job record store. Defaults to an in-memory store.
            scheduler: Timer source. Defaults to the running event loop.
            metrics: Metrics collector. Defaults to the process-wide one.
            settings: Settings used for listener defaults.
        """
        self.settings = settings or get_settings()
        self.store = store if store is not None else MemoryJobStore()
        self.registry = ListenerRegistry()
        self.queue = PendingQueue()
        self.dispatcher = Dispatcher(
            store=self.store,
            registry=self.registry,
            queue=self.queue,
            scheduler=scheduler,
            metrics=metrics,
        )
        self.cancellation = CancellationChannel(self.dispatcher)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        observability: bool = False,
        **kwargs: Any,
    ) -> "JobEngine":
        """
        Build an engine whose store is selected by `store_url`.

        Args:
            settings: Settings to read; defaults to the cached settings.
            observability: Also configure structured logging and tracing
                from the same settings.
            **kwargs: Passed on to the constructor.
        """
        settings = settings or get_settings()
        if observability:
            setup_logging(settings)
            setup_tracing(settings)
        return cls(store=create_store(settings), settings=settings, **kwargs)

    async def start(self) -> "JobEngine":
        """Initialize the store (creates the schema for SQL stores)."""
        await self.store.init()
        logger.info("Job engine started", extra={"store": type(self.store).__name__})
        return self

    async def close(self) -> None:
        """Unregister all listeners, stop timers and handlers, close the store."""
        await self.dispatcher.close()
        await self.store.close()
        logger.info("Job engine closed")

    async def __aenter__(self) -> "JobEngine":
        return await self.start()

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Producer API
    # ------------------------------------------------------------------

    def submit(self, name: str, data: Any = None) -> Job:
        """
        Submit a job.

        The record is inserted in the background; observe the handle's
        "add" event (or "error" if the insert fails).

        Args:
            name: Job name used to pick the listener.
            data: Payload handed to the handler.

        Returns:
            The pending job handle.
        """
        with get_tracer().start_as_current_span(SPAN_SUBMIT_JOB) as span:
            job = Job(name=name, data=data)
            span.set_attribute("job_id", job.id)
            span.set_attribute("job_name", name)
            self.dispatcher.accept(job)
        return job

    async def get(self, ref: Job | str) -> JobRecord:
        """
        Fetch the stored state of a job.

        Args:
            ref: Job handle or job id.

        Raises:
            JobNotFoundError: If the job has no stored record.
            StoreError: If the store lookup failed.
        """
        job_id = ref.id if isinstance(ref, Job) else ref
        record = await self.store.find_by_id(job_id)
        if record is None:
            raise JobNotFoundError(job_id)
        return record

    async def cancel(self, ref: Job | str) -> bool:
        """
        Cancel a job that has not finished yet.

        Returns:
            True if canceled, False if the job was already terminal.

        Raises:
            JobNotFoundError: If no job with this id exists.
        """
        with get_tracer().start_as_current_span(SPAN_CANCEL_JOB) as span:
            span.set_attribute("job_id", ref.id if isinstance(ref, Job) else ref)
            return await self.cancellation.cancel(ref)

    # ------------------------------------------------------------------
    # Consumer API
    # ------------------------------------------------------------------

    def register(
        self,
        name: str,
        handler: Handler,
        options: ListenerOptions | dict[str, Any] | None = None,
        **option_kwargs: Any,
    ) -> Listener:
        """
        Register the listener for a job name, replacing any previous one.

        Jobs waiting for the name are delivered right away, oldest first.

        Args:
            name: Job name.
            handler: Callable taking a JobContext; may be `async def`.
            options: ListenerOptions or a dict with delay/ttl (seconds).
            **option_kwargs: delay/ttl given as keywords instead.

        Raises:
            InvalidListenerError: If the handler or options are invalid.
        """
        return self.dispatcher.register(
            name, handler, self._listener_options(options, option_kwargs)
        )

    def unregister(self, name: str | None = None) -> list[str]:
        """
        Remove the listener for a name, or all listeners.

        Returns:
            Names that had a listener.
        """
        return self.dispatcher.unregister(name)

    def _listener_options(
        self,
        options: ListenerOptions | dict[str, Any] | None,
        overrides: dict[str, Any],
    ) -> ListenerOptions:
        if isinstance(options, ListenerOptions) and not overrides:
            return options

        values: dict[str, Any] = {
            "delay": self.settings.default_delay_seconds,
            "ttl": self.settings.default_ttl_seconds,
        }
        if isinstance(options, ListenerOptions):
            values.update(options.model_dump())
        elif options is not None:
            values.update(options)
        values.update(overrides)

        try:
            return ListenerOptions(**values)
        except ValidationError as e:
            raise InvalidListenerError(f"Invalid listener options: {e}") from e

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def purge(self, filter: JobFilter | None = None) -> int:
        """
        Delete stored records matching the filter.

        Live jobs keep running; only their records are removed.

        Returns:
            Number of records removed.
        """
        removed = 0
        async with self.store.scan(filter) as cursor:
            async for record in cursor:
                await cursor.remove(record)
                removed += 1

        logger.info("Purged job records", extra={"count": removed})
        return removed

    def pending(self, name: str) -> int:
        """Number of jobs waiting for a listener under this name."""
        return self.queue.depth(name)

    def listeners(self) -> list[str]:
        """Names that currently have a listener."""
        return self.registry.names()

    async def drain(self) -> None:
        """Wait for outstanding store writes and their events."""
        await self.dispatcher.drain()
