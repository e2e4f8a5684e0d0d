"""
Integration tests for the job engine on the real event loop.
"""

import asyncio
from datetime import datetime, timezone

import pytest

from jobrelay.config import Settings
from jobrelay.constants import CANCELED_MESSAGE, EXPIRED_MESSAGE, JobStatus
from jobrelay.engine import JobEngine
from jobrelay.errors import InvalidListenerError, JobNotFoundError, StoreError
from jobrelay.observability.metrics import MetricsCollector
from jobrelay.store.memory import MemoryJobStore
from jobrelay.types.job import JobFilter, JobRecord


def echo(ctx):
    ctx.done(None, ctx.data)


class TestSubmit:
    """Tests for submitting jobs."""

    async def test_submit_returns_pending_job(self, engine: JobEngine):
        """A submitted job is pending and its record shows up after "add"."""
        added = asyncio.Event()

        job = engine.submit("test", {"hello": "world"})
        job.on("add", lambda j: added.set())

        assert job.status is JobStatus.PENDING
        await asyncio.wait_for(added.wait(), 1)

        record = await engine.get(job)
        assert record.id == job.id
        assert record.name == "test"
        assert record.data == {"hello": "world"}
        assert record.status is JobStatus.PENDING
        assert record.end_on is None

    async def test_insert_failure_emits_error(
        self,
        engine: JobEngine,
        store: MemoryJobStore,
        monkeypatch,
    ):
        """A job whose record cannot be stored fails without being delivered."""
        async def failing_insert(record):
            raise StoreError("disk full")

        monkeypatch.setattr(store, "insert", failing_insert)
        calls = []
        errors = []
        engine.register("test", calls.append)

        job = engine.submit("test", {})
        job.on("error", errors.append)
        await job.wait(1)

        assert errors == ["disk full"]
        assert job.status is JobStatus.ERROR
        assert calls == []
        with pytest.raises(JobNotFoundError):
            await engine.get(job)

    async def test_get_by_id(self, engine: JobEngine):
        """get accepts a plain id as well as the handle."""
        engine.register("test", echo)
        job = engine.submit("test", [1, 2, 3])
        await job.wait(1)

        record = await engine.get(job.id)

        assert record.status is JobStatus.SUCCESS
        assert record.result == [1, 2, 3]

    async def test_get_unknown_id(self, engine: JobEngine):
        """Looking up an unknown id raises."""
        with pytest.raises(JobNotFoundError):
            await engine.get("missing")


class TestDelivery:
    """Tests for routing jobs to listeners."""

    async def test_queued_until_register(
        self,
        engine: JobEngine,
        sample_payloads,
    ):
        """Jobs wait for a listener and are delivered oldest first."""
        seen = []

        def handler(ctx):
            seen.append(ctx.data)
            ctx.done(None, ctx.data)

        jobs = [engine.submit("test", payload) for payload in sample_payloads]
        assert engine.pending("test") == 3

        engine.register("test", handler)
        assert engine.pending("test") == 0
        await asyncio.gather(*(job.wait(1) for job in jobs))

        assert seen == sample_payloads

    async def test_push_to_existing_listener(self, engine: JobEngine):
        """A job submitted after register is delivered after the delay."""
        seen = []

        def handler(ctx):
            seen.append(ctx.data)
            ctx.done()

        engine.register("test", handler, delay=0.01)
        job = engine.submit("test", {"foo": "bar"})
        await job.wait(1)

        assert seen == [{"foo": "bar"}]
        assert (await engine.get(job)).status is JobStatus.SUCCESS

    async def test_unregister_stops_delivery(self, engine: JobEngine):
        """After unregister, new jobs wait in the queue."""
        calls = []
        engine.register("test", calls.append)
        engine.unregister("test")

        job = engine.submit("test", {})
        await asyncio.sleep(0.05)

        assert calls == []
        assert engine.pending("test") == 1
        assert (await engine.get(job)).status is JobStatus.PENDING

    async def test_override_listener(self, engine: JobEngine):
        """Registering again replaces the previous handler."""
        calls = []

        def first(ctx):
            calls.append("first")
            ctx.done()

        def second(ctx):
            calls.append("second")
            ctx.done()

        engine.register("test", first)
        engine.register("test", second)
        job = engine.submit("test", {})
        await job.wait(1)

        assert calls == ["second"]

    async def test_no_duplicate_processing(self, engine: JobEngine):
        """Re-registering a handler while a job is in flight runs it once."""
        inputs = []

        def handler(ctx):
            inputs.append(ctx.data)
            ctx.done()

        job = engine.submit("test", {"n": 1})
        engine.register("test", handler)
        engine.register("test", handler)
        await job.wait(1)
        await asyncio.sleep(0.02)

        assert inputs == [{"n": 1}]

    async def test_listeners_are_per_engine(
        self,
        engine: JobEngine,
        metrics: MetricsCollector,
        test_settings: Settings,
    ):
        """Two engines do not see each other's listeners."""
        other = JobEngine(metrics=metrics, settings=test_settings)
        other.register("test", echo)

        job = engine.submit("test", {})
        await asyncio.sleep(0.02)

        assert job.status is JobStatus.PENDING
        assert engine.listeners() == []
        await other.close()


class TestSlowStore:
    """Delivery when store writes take time to land."""

    async def test_order_kept_when_updates_lag(
        self,
        lagging_engine: JobEngine,
        lagging_store,
        sample_payloads,
    ):
        """Handlers run in submission order even if earlier jobs write slower."""
        seen = []

        def handler(ctx):
            seen.append(ctx.data)
            ctx.done(None, ctx.data)

        jobs = [lagging_engine.submit("test", payload) for payload in sample_payloads]
        for job, lag in zip(jobs, (0.03, 0.02, 0.01)):
            lagging_store.update_lag[job.id] = lag

        lagging_engine.register("test", handler)
        await asyncio.gather(*(job.wait(1) for job in jobs))

        assert seen == sample_payloads
        for job in jobs:
            assert (await lagging_engine.get(job)).status is JobStatus.SUCCESS

    async def test_handler_does_not_wait_for_running_write(
        self,
        lagging_engine: JobEngine,
        lagging_store,
    ):
        """The handler is called at claim while the running status is still being saved."""
        calls = []

        def handler(ctx):
            calls.append(ctx.data)
            ctx.done()

        lagging_store.default_update_lag = 0.05
        lagging_engine.register("test", handler)
        job = lagging_engine.submit("test", {"n": 1})
        await asyncio.sleep(0.01)

        assert calls == [{"n": 1}]
        assert (await lagging_store.find_by_id(job.id)).status is JobStatus.PENDING

        await job.wait(1)
        assert (await lagging_engine.get(job)).status is JobStatus.SUCCESS

    async def test_override_before_claim_lands(
        self,
        lagging_engine: JobEngine,
        lagging_store,
    ):
        """A handler replaced while the job is still being inserted never runs."""
        calls = []

        def first(ctx):
            calls.append("first")
            ctx.done()

        def second(ctx):
            calls.append("second")
            ctx.done()

        lagging_store.insert_lag = 0.03
        lagging_engine.register("test", first)
        job = lagging_engine.submit("test", {})
        await asyncio.sleep(0.01)

        assert calls == []

        lagging_engine.register("test", second)
        await job.wait(1)
        await asyncio.sleep(0.01)

        assert calls == ["second"]
        assert (await lagging_engine.get(job)).status is JobStatus.SUCCESS

    async def test_unregister_before_claim_lands(
        self,
        lagging_engine: JobEngine,
        lagging_store,
    ):
        """Unregistering while the insert is in flight puts the job back in the queue."""
        calls = []
        lagging_store.insert_lag = 0.03
        lagging_engine.register("test", calls.append)
        job = lagging_engine.submit("test", {})
        await asyncio.sleep(0.01)

        lagging_engine.unregister("test")
        await asyncio.sleep(0.05)

        assert calls == []
        assert lagging_engine.pending("test") == 1
        assert job.status is JobStatus.PENDING


class TestOutcomes:
    """Tests for stored results and errors."""

    async def test_stores_result(self, engine: JobEngine):
        """done(None, result) stores the result."""
        engine.register("test", lambda ctx: ctx.done(None, {"answer": 42}))

        job = engine.submit("test", {})
        await job.wait(1)

        record = await engine.get(job)
        assert record.status is JobStatus.SUCCESS
        assert record.result == {"answer": 42}
        assert record.end_on is not None
        assert record.end_on >= record.added_on

    async def test_stores_error_string(self, engine: JobEngine):
        """done(error) stores the error as given."""
        engine.register("test", lambda ctx: ctx.done("Something went wrong"))

        job = engine.submit("test", {})
        await job.wait(1)

        record = await engine.get(job)
        assert record.status is JobStatus.ERROR
        assert record.error == "Something went wrong"
        assert record.result is None

    async def test_handler_exception(self, engine: JobEngine):
        """A raised exception fails the job with its type and message."""
        def handler(ctx):
            raise ValueError("Something went wrong")

        engine.register("test", handler)
        job = engine.submit("test", {})
        await job.wait(1)

        record = await engine.get(job)
        assert record.status is JobStatus.ERROR
        assert record.error == "ValueError: Something went wrong"

    async def test_async_handler_result(self, engine: JobEngine):
        """The return value of an async handler is the result."""
        async def handler(ctx):
            await asyncio.sleep(0)
            return {"doubled": ctx.data["n"] * 2}

        engine.register("test", handler)
        job = engine.submit("test", {"n": 21})
        await job.wait(1)

        record = await engine.get(job)
        assert record.status is JobStatus.SUCCESS
        assert record.result == {"doubled": 42}

    async def test_async_handler_exception(self, engine: JobEngine):
        """An exception from an async handler fails the job."""
        async def handler(ctx):
            await asyncio.sleep(0)
            raise RuntimeError("boom")

        engine.register("test", handler)
        job = engine.submit("test", {})
        await job.wait(1)

        record = await engine.get(job)
        assert record.status is JobStatus.ERROR
        assert record.error == "RuntimeError: boom"

    async def test_success_event(self, engine: JobEngine):
        """Observers of "success" get the result."""
        results = []
        engine.register("test", echo)

        job = engine.submit("test", "payload")
        job.on("success", results.append)
        await job.wait(1)

        assert results == ["payload"]

    async def test_progress_visible_while_running(self, engine: JobEngine):
        """Progress is stored before observers hear about it."""
        release = asyncio.Event()
        progressed = asyncio.Event()
        reports = []

        async def handler(ctx):
            ctx.emit("progress", 3, 10)
            await release.wait()
            return "done"

        def on_progress(loaded, total):
            reports.append((loaded, total))
            progressed.set()

        job = engine.submit("test", {})
        job.on("progress", on_progress)
        engine.register("test", handler)
        await asyncio.wait_for(progressed.wait(), 1)

        record = await engine.get(job)
        assert record.status is JobStatus.RUNNING
        assert record.loaded == 3
        assert record.total == 10
        assert reports == [(3, 10)]

        release.set()
        await job.wait(1)
        assert (await engine.get(job)).result == "done"


class TestCancel:
    """Tests for canceling jobs."""

    async def test_cancel_running_sync_handler(
        self,
        engine: JobEngine,
        metrics: MetricsCollector,
    ):
        """Canceling a running job notifies the handler and stores the error."""
        started = asyncio.Event()
        errors = []
        contexts = []

        def handler(ctx):
            contexts.append(ctx)
            ctx.on("error", errors.append)
            started.set()

        engine.register("test", handler)
        job = engine.submit("test", {})
        await asyncio.wait_for(started.wait(), 1)

        assert await engine.cancel(job) is True
        assert errors == [CANCELED_MESSAGE]
        assert contexts[0].aborted is True
        assert await engine.cancel(job) is False

        record = await engine.get(job)
        assert record.status is JobStatus.ERROR
        assert record.error == CANCELED_MESSAGE
        assert metrics.registry.get_sample_value(
            "jobs_canceled_total", {"name": "test"}
        ) == 1

    async def test_late_done_after_cancel(self, engine: JobEngine):
        """A handler finishing after cancellation does not change the outcome."""
        started = asyncio.Event()
        contexts = []

        def handler(ctx):
            contexts.append(ctx)
            started.set()

        engine.register("test", handler)
        job = engine.submit("test", {})
        await asyncio.wait_for(started.wait(), 1)
        await engine.cancel(job.id)

        contexts[0].done(None, "late")
        await engine.drain()

        record = await engine.get(job)
        assert record.status is JobStatus.ERROR
        assert record.error == CANCELED_MESSAGE
        assert record.result is None

    async def test_cancel_async_handler(self, engine: JobEngine):
        """The task of an async handler is cancelled."""
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def handler(ctx):
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        engine.register("test", handler)
        job = engine.submit("test", {})
        await asyncio.wait_for(started.wait(), 1)

        assert await engine.cancel(job) is True
        await asyncio.wait_for(cancelled.wait(), 1)
        assert (await engine.get(job)).error == CANCELED_MESSAGE

    async def test_cancel_queued_job(self, engine: JobEngine):
        """A job waiting for a listener can be canceled and is never run."""
        calls = []
        job = engine.submit("test", {})
        await engine.drain()

        assert await engine.cancel(job) is True
        assert engine.pending("test") == 0

        engine.register("test", calls.append)
        await asyncio.sleep(0.02)

        assert calls == []
        assert (await engine.get(job)).status is JobStatus.ERROR

    async def test_cancel_unknown_id(self, engine: JobEngine):
        """Canceling an unknown id raises."""
        with pytest.raises(JobNotFoundError):
            await engine.cancel("missing")

    async def test_cancel_orphaned_record(
        self,
        engine: JobEngine,
        store: MemoryJobStore,
    ):
        """A stored record no engine owns is closed in the store."""
        await store.insert(
            JobRecord(id="orphan", name="test", added_on=datetime.now(timezone.utc))
        )

        assert await engine.cancel("orphan") is True

        record = await engine.get("orphan")
        assert record.status is JobStatus.ERROR
        assert record.error == CANCELED_MESSAGE
        assert record.end_on is not None

    async def test_cancel_finished_record(
        self,
        engine: JobEngine,
        store: MemoryJobStore,
    ):
        """A terminal record is left alone."""
        await store.insert(
            JobRecord(
                id="done",
                name="test",
                status=JobStatus.SUCCESS,
                added_on=datetime.now(timezone.utc),
                result=1,
            )
        )

        assert await engine.cancel("done") is False
        assert (await engine.get("done")).status is JobStatus.SUCCESS


class TestExpiry:
    """Tests for inactivity expiry."""

    async def test_expires_inactive_job(
        self,
        engine: JobEngine,
        metrics: MetricsCollector,
    ):
        """A job running longer than the ttl fails."""
        errors = []

        def handler(ctx):
            ctx.on("error", errors.append)

        engine.register("test", handler, ttl=0.02)
        job = engine.submit("test", {})
        await job.wait(1)

        record = await engine.get(job)
        assert record.status is JobStatus.ERROR
        assert record.error == EXPIRED_MESSAGE
        assert errors == [EXPIRED_MESSAGE]
        assert metrics.registry.get_sample_value(
            "jobs_expired_total", {"name": "test"}
        ) == 1

    async def test_completion_within_ttl(self, engine: JobEngine):
        """A job finishing in time is not expired afterwards."""
        engine.register("test", echo, ttl=0.02)

        job = engine.submit("test", "ok")
        await job.wait(1)
        await asyncio.sleep(0.05)

        record = await engine.get(job)
        assert record.status is JobStatus.SUCCESS
        assert record.result == "ok"


class TestMaintenance:
    """Tests for purge, metrics and lifecycle helpers."""

    async def test_purge_by_status(
        self,
        engine: JobEngine,
        store: MemoryJobStore,
        sample_payloads,
    ):
        """purge removes only the matching records."""
        engine.register("test", echo)
        jobs = [engine.submit("test", payload) for payload in sample_payloads]
        waiting = engine.submit("other", {})
        await asyncio.gather(*(job.wait(1) for job in jobs))
        await engine.drain()

        removed = await engine.purge(JobFilter(status=JobStatus.SUCCESS))

        assert removed == 3
        assert len(store) == 1
        assert (await engine.get(waiting)).status is JobStatus.PENDING
        with pytest.raises(JobNotFoundError):
            await engine.get(jobs[0])

    async def test_metrics(self, engine: JobEngine, metrics: MetricsCollector):
        """Submissions and completions are counted per name."""
        engine.register("test", echo)

        jobs = [engine.submit("test", n) for n in range(3)]
        await asyncio.gather(*(job.wait(1) for job in jobs))

        registry = metrics.registry
        assert registry.get_sample_value("jobs_submitted_total", {"name": "test"}) == 3
        assert registry.get_sample_value(
            "jobs_completed_total", {"name": "test", "status": "success"}
        ) == 3
        assert registry.get_sample_value(
            "job_duration_seconds_count", {"name": "test", "status": "success"}
        ) == 3

    async def test_invalid_handler(self, engine: JobEngine):
        """Non-callable handlers and empty names are rejected."""
        with pytest.raises(InvalidListenerError):
            engine.register("test", "not callable")
        with pytest.raises(InvalidListenerError):
            engine.register("", echo)

    async def test_context_manager(
        self,
        metrics: MetricsCollector,
        test_settings: Settings,
    ):
        """The engine can be used as an async context manager."""
        async with JobEngine.from_settings(test_settings, metrics=metrics) as engine:
            assert isinstance(engine.store, MemoryJobStore)
            engine.register("test", echo)
            job = engine.submit("test", 1)
            await job.wait(1)

            assert (await engine.get(job)).result == 1

    async def test_close_cancels_handlers(
        self,
        metrics: MetricsCollector,
        test_settings: Settings,
    ):
        """Closing the engine cancels async handlers still running."""
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def handler(ctx):
            started.set()
            try:
                await asyncio.sleep(10)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        engine = JobEngine(metrics=metrics, settings=test_settings)
        await engine.start()
        engine.register("test", handler)
        engine.submit("test", {})
        await asyncio.wait_for(started.wait(), 1)

        await engine.close()

        await asyncio.wait_for(cancelled.wait(), 1)
        assert engine.listeners() == []
