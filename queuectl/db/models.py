"""
SQLAlchemy database models.
Defines the jobs, dlq, logs and config tables.
"""

from datetime import datetime

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from queuectl.constants import JobState
from queuectl.utils import utc_now


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class Job(Base):
    """
    Job model representing one shell command in the queue.

    This is the authoritative source of truth for job state.
    All job lifecycle transitions are managed through this table.

    Key constraints:
    - a job in ``processing`` always has a non-null ``locked_by``
    - ``attempts`` only grows, except on explicit DLQ requeue
    - ``run_at`` and ``next_run_at`` gate eligibility for claiming
    """

    __tablename__ = "jobs"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    command: Mapped[str] = mapped_column(Text, nullable=False)

    state: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=JobState.PENDING.value,
        index=True,
    )

    # Retry tracking
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    backoff_base: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Scheduling
    run_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    next_run_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Claim ownership
    locked_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utc_now,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        nullable=False,
        default=utc_now,
    )

    __table_args__ = (
        CheckConstraint("attempts >= 0", name="ck_jobs_attempts"),
        CheckConstraint("max_retries >= 1", name="ck_jobs_max_retries"),
        CheckConstraint("backoff_base >= 1", name="ck_jobs_backoff_base"),
        CheckConstraint(
            "state <> 'processing' OR locked_by IS NOT NULL",
            name="ck_jobs_processing_locked",
        ),
        # Index for efficient queue polling
        Index("ix_jobs_claim", "state", "priority", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"Job(id={self.id}, state={self.state}, "
            f"attempts={self.attempts}/{self.max_retries}, priority={self.priority})"
        )


class DeadLetter(Base):
    """Terminal-failure snapshot of a job that exhausted its retries."""

    __tablename__ = "dlq"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    command: Mapped[str] = mapped_column(Text, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    failed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)

    def __repr__(self) -> str:
        return f"DeadLetter(id={self.id}, reason={self.reason!r})"


class ExecutionLog(Base):
    """One row per execution attempt. Append-only, never used for scheduling."""

    __tablename__ = "logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    finished_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    exit_code: Mapped[int] = mapped_column(Integer, nullable=False)
    stdout: Mapped[str] = mapped_column(Text, nullable=False, default="")
    stderr: Mapped[str] = mapped_column(Text, nullable=False, default="")


class ConfigEntry(Base):
    """Operator-tunable key/value pair."""

    __tablename__ = "config"

    key: Mapped[str] = mapped_column(String(64), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
