"""
SQLAlchemy-backed job record store.
Works with any async driver SQLAlchemy supports (asyncpg, aiosqlite).
"""

import logging
from collections import deque
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from jobrelay.errors import JobNotFoundError, StoreError
from jobrelay.store.base import JobCursor, JobStore, record_id
from jobrelay.store.models import Base, JobRow
from jobrelay.types.job import JobFilter, JobRecord

logger = logging.getLogger(__name__)


class SqlJobStore(JobStore):
    """
    Job store on top of an async SQLAlchemy engine.

    Every operation runs in its own short session; SQLAlchemy failures are
    re-raised as StoreError.
    """

    def __init__(
        self,
        url: str | None = None,
        engine: AsyncEngine | None = None,
        echo: bool = False,
        page_size: int = 100,
    ):
        """
        Initialize the store.

        Args:
            url: SQLAlchemy async database URL. Ignored if engine is given.
            engine: Existing async engine to use.
            echo: Log SQL statements.
            page_size: Rows fetched per cursor round trip.
        """
        if engine is None:
            if url is None:
                raise ValueError("Either url or engine is required")
            engine = create_async_engine(url, echo=echo, pool_pre_ping=True)

        self._engine = engine
        self._sessions = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        self.page_size = page_size

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    async def init(self) -> None:
        """Create the jobs table if it does not exist."""
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as e:
            raise StoreError(f"Failed to initialize job store: {e}") from e
        logger.info("Job store initialized", extra={"dialect": self._engine.dialect.name})

    async def close(self) -> None:
        await self._engine.dispose()
        logger.info("Job store closed")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """
        Session scope that commits on success and rolls back on failure.

        Raises:
            StoreError: If SQLAlchemy raised inside the scope.
        """
        async with self._sessions() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise StoreError(f"Job store operation failed: {e}") from e
            except Exception:
                await session.rollback()
                raise

    async def insert(self, record: JobRecord) -> str:
        async with self.session() as session:
            session.add(JobRow.from_record(record))
        return record.id

    async def find_by_id(self, job_id: str) -> JobRecord | None:
        async with self.session() as session:
            row = await session.get(JobRow, job_id)
            return row.to_record() if row is not None else None

    async def update_by_id(self, job_id: str, patch: dict[str, Any]) -> None:
        async with self.session() as session:
            stmt = update(JobRow).where(JobRow.id == job_id).values(**patch)
            result = await session.execute(stmt)
            if result.rowcount == 0:
                raise JobNotFoundError(job_id)

    def scan(self, filter: JobFilter | None = None) -> "SqlJobCursor":
        return SqlJobCursor(self, filter or JobFilter())

    async def delete_by_id(self, job_id: str) -> bool:
        async with self.session() as session:
            result = await session.execute(delete(JobRow).where(JobRow.id == job_id))
            return result.rowcount > 0


class SqlJobCursor(JobCursor):
    """
    Keyset-paged cursor ordered by id.

    Pages are fetched with `id > last_seen`, so deleting rows that were
    already yielded never shifts the remaining pages.
    """

    def __init__(self, store: SqlJobStore, filter: JobFilter):
        super().__init__()
        self._store = store
        self._filter = filter
        self._buffer: deque[JobRecord] = deque()
        self._last_id: str | None = None
        self._exhausted = False

    def _page_query(self) -> Any:
        stmt = select(JobRow)
        if self._filter.name is not None:
            stmt = stmt.where(JobRow.name == self._filter.name)
        if self._filter.status:
            if isinstance(self._filter.status, set):
                stmt = stmt.where(JobRow.status.in_(list(self._filter.status)))
            else:
                stmt = stmt.where(JobRow.status == self._filter.status)
        if self._last_id is not None:
            stmt = stmt.where(JobRow.id > self._last_id)
        return stmt.order_by(JobRow.id).limit(self._store.page_size)

    async def _fetch_page(self) -> None:
        async with self._store.session() as session:
            result = await session.execute(self._page_query())
            rows = result.scalars().all()

        if len(rows) < self._store.page_size:
            self._exhausted = True
        if rows:
            self._last_id = rows[-1].id
        self._buffer.extend(row.to_record() for row in rows)

    async def __anext__(self) -> JobRecord:
        if self._closed:
            raise StopAsyncIteration
        if not self._buffer and not self._exhausted:
            await self._fetch_page()
        if not self._buffer:
            raise StopAsyncIteration
        return self._buffer.popleft()

    async def remove(self, record: JobRecord | str) -> None:
        job_id = record_id(record)
        if not await self._store.delete_by_id(job_id):
            logger.debug("Removed row was already gone", extra={"job_id": job_id})
