"""
SQLAlchemy database models.
Defines the jobs table backing SqlJobStore.
"""

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, DateTime, Enum, Float, Index, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from jobrelay.constants import JobStatus
from jobrelay.types.job import JobRecord


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


def _aware(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class JobRow(Base):
    """
    Durable mirror of a job.

    The dispatcher owns every status transition; rows are only written
    after the in-memory job has passed its gate.
    """

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)

    # Routing key and payload
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    data: Mapped[Any] = mapped_column(JSON, nullable=True)

    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, name="job_status", create_constraint=True, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=JobStatus.PENDING,
        index=True,
    )

    # Timestamps
    added_on: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    end_on: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    # Outcome
    result: Mapped[Any] = mapped_column(JSON, nullable=True)
    error: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Progress counters
    loaded: Mapped[float | None] = mapped_column(Float, nullable=True)
    total: Mapped[float | None] = mapped_column(Float, nullable=True)

    __table_args__ = (
        Index("ix_jobs_name_status", "name", "status"),
    )

    @classmethod
    def from_record(cls, record: JobRecord) -> "JobRow":
        return cls(**record.model_dump())

    def to_record(self) -> JobRecord:
        return JobRecord(
            id=self.id,
            name=self.name,
            data=self.data,
            status=JobStatus(self.status),
            added_on=_aware(self.added_on),
            end_on=_aware(self.end_on),
            result=self.result,
            error=self.error,
            loaded=self.loaded,
            total=self.total,
        )

    def __repr__(self) -> str:
        return f"JobRow(id={self.id}, name={self.name}, status={self.status})"
