"""
Job record store module.
Contains the store interface and its in-memory and SQLAlchemy implementations.
"""

from jobrelay.config import Settings, get_settings
from jobrelay.store.base import JobCursor, JobStore
from jobrelay.store.memory import MemoryJobCursor, MemoryJobStore
from jobrelay.store.sql import SqlJobCursor, SqlJobStore


def create_store(settings: Settings | None = None) -> JobStore:
    """
    Build the store selected by configuration.

    Args:
        settings: Settings to read; defaults to the cached settings.

    Returns:
        SqlJobStore when store_url is set, otherwise MemoryJobStore.
    """
    settings = settings or get_settings()
    if settings.store_url:
        return SqlJobStore(settings.store_url, echo=settings.store_echo)
    return MemoryJobStore()


__all__ = [
    "JobStore",
    "JobCursor",
    "MemoryJobStore",
    "MemoryJobCursor",
    "SqlJobStore",
    "SqlJobCursor",
    "create_store",
]
