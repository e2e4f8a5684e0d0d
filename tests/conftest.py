"""
Pytest configuration and shared fixtures.
"""

import asyncio
from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio
from prometheus_client import CollectorRegistry

from jobrelay.config import Settings
from jobrelay.engine import JobEngine
from jobrelay.observability.metrics import MetricsCollector
from jobrelay.store.memory import MemoryJobStore
from jobrelay.timers import ManualScheduler
from jobrelay.types.job import JobRecord


@pytest.fixture
def test_settings() -> Settings:
    """Create test settings."""
    return Settings(
        store_url=None,
        default_delay_seconds=0.0,
        default_ttl_seconds=None,
        log_level="DEBUG",
        log_format="console",
    )


@pytest.fixture
def metrics() -> MetricsCollector:
    """Metrics collector on an isolated registry."""
    return MetricsCollector(registry=CollectorRegistry())


@pytest.fixture
def store() -> MemoryJobStore:
    """Create an empty in-memory store."""
    return MemoryJobStore()


class LaggingJobStore(MemoryJobStore):
    """Memory store that sleeps before inserts and updates, like a remote database."""

    def __init__(self) -> None:
        super().__init__()
        self.insert_lag = 0.0
        self.default_update_lag = 0.0
        # Per job id, overrides default_update_lag
        self.update_lag: dict[str, float] = {}

    async def insert(self, record: JobRecord) -> str:
        await asyncio.sleep(self.insert_lag)
        return await super().insert(record)

    async def update_by_id(self, job_id: str, patch: dict[str, Any]) -> None:
        await asyncio.sleep(self.update_lag.get(job_id, self.default_update_lag))
        await super().update_by_id(job_id, patch)


@pytest.fixture
def lagging_store() -> LaggingJobStore:
    """Create an empty store with configurable write latency."""
    return LaggingJobStore()


@pytest.fixture
def scheduler() -> ManualScheduler:
    """Virtual-clock scheduler."""
    return ManualScheduler()


@pytest_asyncio.fixture
async def engine(
    store: MemoryJobStore,
    metrics: MetricsCollector,
    test_settings: Settings,
) -> AsyncGenerator[JobEngine]:
    """Engine driven by the real event loop clock."""
    engine = JobEngine(store=store, metrics=metrics, settings=test_settings)
    await engine.start()

    yield engine

    await engine.close()


@pytest_asyncio.fixture
async def manual_engine(
    store: MemoryJobStore,
    scheduler: ManualScheduler,
    metrics: MetricsCollector,
    test_settings: Settings,
) -> AsyncGenerator[JobEngine]:
    """Engine whose delays and ttls only advance with the scheduler."""
    engine = JobEngine(
        store=store,
        scheduler=scheduler,
        metrics=metrics,
        settings=test_settings,
    )
    await engine.start()

    yield engine

    await engine.close()


@pytest.fixture
def sample_payloads() -> list[dict[str, Any]]:
    """Payloads used to check delivery order."""
    return [
        {"hello": "world"},
        {"foo": "bar"},
        {"alice": "bob"},
    ]


@pytest_asyncio.fixture
async def lagging_engine(
    lagging_store: LaggingJobStore,
    metrics: MetricsCollector,
    test_settings: Settings,
) -> AsyncGenerator[JobEngine]:
    """Engine on the real loop whose store writes take time."""
    engine = JobEngine(store=lagging_store, metrics=metrics, settings=test_settings)
    await engine.start()

    yield engine

    await engine.close()
