"""
Job repository for database operations.
Implements the core data access patterns for job management.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Sequence

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.constants import (
    CONFIG_KEY_ALIASES,
    STATE_FILTER_ALL,
    JobState,
)
from queuectl.db.models import ConfigEntry, DeadLetter, ExecutionLog, Job
from queuectl.errors import (
    AlreadyDeadError,
    DuplicateIdError,
    LockLostError,
    NotFoundError,
    ValidationError,
)
from queuectl.utils import utc_now

logger = logging.getLogger(__name__)


def _dialect_insert(session: AsyncSession, model: Any) -> Any:
    if session.get_bind().dialect.name == "postgresql":
        return pg_insert(model)
    return sqlite_insert(model)


def normalize_config_key(key: str) -> str:
    """Map CLI spellings (``max-retries``) onto stored keys (``max_retries``)."""
    key = key.strip()
    return CONFIG_KEY_ALIASES.get(key, key.replace("-", "_"))


class JobRepository:
    """
    Repository for job database operations.

    Implements atomic operations for:
    - Job insertion with duplicate-id detection
    - Claiming with a single UPDATE ... RETURNING statement
    - Lifecycle transitions (complete, retry, DLQ, requeue)
    - Execution log writes and inspection queries

    Every method runs inside the caller's session; the caller's commit makes
    the changes durable, so multi-step transitions are atomic.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize the repository with a database session.

        Args:
            session: The async database session.
        """
        self._session = session

    async def insert(
        self,
        job_id: str,
        command: str,
        max_retries: int,
        backoff_base: int,
        priority: int = 0,
        run_at: datetime | None = None,
    ) -> Job:
        """
        Insert a new pending job.

        Uses INSERT ... ON CONFLICT DO NOTHING so a concurrent insert of the
        same id cannot slip between an existence check and the write.

        Args:
            job_id: Unique job identifier.
            command: Shell command to execute.
            max_retries: Executions allowed before the job moves to the DLQ.
            backoff_base: Base of the exponential retry delay.
            priority: Higher values are claimed first.
            run_at: Optional earliest execution time (naive UTC).

        Returns:
            The inserted Job.

        Raises:
            ValidationError: If a field violates the job invariants.
            DuplicateIdError: If a job with the same id exists.
        """
        if not job_id or not str(job_id).strip():
            raise ValidationError("Job id cannot be empty")
        if not command or not command.strip():
            raise ValidationError('Missing required "command" field')
        if max_retries < 1:
            raise ValidationError("max_retries must be >= 1")
        if backoff_base < 1:
            raise ValidationError("backoff_base must be >= 1")

        now = utc_now()
        stmt = (
            _dialect_insert(self._session, Job)
            .values(
                id=job_id,
                command=command,
                state=JobState.PENDING.value,
                attempts=0,
                max_retries=max_retries,
                backoff_base=backoff_base,
                priority=priority,
                run_at=run_at,
                next_run_at=None,
                created_at=now,
                updated_at=now,
            )
            .on_conflict_do_nothing(index_elements=["id"])
            .returning(Job)
            .execution_options(populate_existing=True)
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()
        if job is None:
            raise DuplicateIdError(job_id)

        logger.info(
            "Inserted job",
            extra={"job_id": job_id, "priority": priority, "max_retries": max_retries},
        )
        return job

    async def get(self, job_id: str) -> Job | None:
        """
        Get a job by ID.

        Args:
            job_id: The job identifier.

        Returns:
            The Job or None if not found.
        """
        stmt = select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def claim_next(self, worker_id: str, now: datetime | None = None) -> Job | None:
        """
        Atomically claim the next eligible job for a worker.

        This is the critical path for job distribution. The select and the
        state change happen in one UPDATE ... RETURNING statement so that no
        two concurrent callers can receive the same job. On PostgreSQL the
        inner select also takes FOR UPDATE SKIP LOCKED so that competing
        workers move on to the next row instead of queueing behind the lock;
        SQLite serializes writers and renders no locking clause.

        The ``state = 'pending'`` predicate on the outer UPDATE re-checks the
        row after any lock wait, so a row claimed in between is never
        returned twice.

        Args:
            worker_id: The worker identifier.
            now: Override for the current time (naive UTC).

        Returns:
            The claimed Job, or None if nothing is eligible.
        """
        now = now or utc_now()

        candidate = (
            select(Job.id)
            .where(
                Job.state == JobState.PENDING.value,
                or_(Job.run_at.is_(None), Job.run_at <= now),
                or_(Job.next_run_at.is_(None), Job.next_run_at <= now),
            )
            .order_by(Job.priority.desc(), Job.created_at.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .scalar_subquery()
        )

        stmt = (
            update(Job)
            .where(
                and_(
                    Job.id == candidate,
                    Job.state == JobState.PENDING.value,
                )
            )
            .values(
                state=JobState.PROCESSING.value,
                locked_by=worker_id,
                locked_at=now,
                updated_at=now,
            )
            .returning(Job)
            .execution_options(synchronize_session=False, populate_existing=True)
        )

        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()

        if job is not None:
            logger.info(
                "Claimed job",
                extra={"job_id": job.id, "worker_id": worker_id, "attempts": job.attempts},
            )

        return job

    @staticmethod
    def _held_by(job_id: str, worker_id: str | None) -> Any:
        """Match ``job_id``; with ``worker_id``, only while that worker holds the lock."""
        if worker_id is None:
            return Job.id == job_id
        return and_(
            Job.id == job_id,
            Job.state == JobState.PROCESSING.value,
            Job.locked_by == worker_id,
        )

    async def complete(self, job_id: str, worker_id: str | None = None) -> None:
        """
        Mark a job as completed and release its lock.

        Idempotent when ``worker_id`` is omitted.

        Args:
            job_id: The job identifier.
            worker_id: Owner that must still hold the lock.

        Raises:
            LockLostError: If ``worker_id`` no longer holds the lock.
        """
        stmt = (
            update(Job)
            .where(self._held_by(job_id, worker_id))
            .values(
                state=JobState.COMPLETED.value,
                locked_by=None,
                locked_at=None,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if worker_id is not None and result.rowcount == 0:
            raise LockLostError(job_id, worker_id)

    async def schedule_retry(
        self,
        job_id: str,
        attempts: int,
        next_run_at: datetime,
        worker_id: str | None = None,
    ) -> None:
        """
        Return a failed job to the backlog, eligible again at ``next_run_at``.

        Args:
            job_id: The job identifier.
            attempts: Execution count including the failed attempt.
            next_run_at: When the job becomes eligible again (naive UTC).
            worker_id: Owner that must still hold the lock.

        Raises:
            LockLostError: If ``worker_id`` no longer holds the lock.
        """
        stmt = (
            update(Job)
            .where(self._held_by(job_id, worker_id))
            .values(
                state=JobState.PENDING.value,
                attempts=attempts,
                next_run_at=next_run_at,
                locked_by=None,
                locked_at=None,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = await self._session.execute(stmt)
        if worker_id is not None and result.rowcount == 0:
            raise LockLostError(job_id, worker_id)

        logger.info(
            "Job queued for retry",
            extra={"job_id": job_id, "attempts": attempts, "next_run_at": next_run_at},
        )

    async def move_to_dead(
        self,
        job_id: str,
        reason: str,
        attempts: int | None = None,
        worker_id: str | None = None,
    ) -> DeadLetter:
        """
        Move a job to the dead letter queue.

        The job update and the DLQ insert run in the caller's transaction,
        so either both become visible or neither does.

        Args:
            job_id: The job identifier.
            reason: Free-text failure reason, e.g. ``"exit 1"``.
            attempts: Final execution count to persist on the job.
            worker_id: Owner that must still hold the lock.

        Returns:
            The DLQ record.

        Raises:
            AlreadyDeadError: If no live job row matches the id.
            LockLostError: If ``worker_id`` no longer holds the lock.
        """
        now = utc_now()
        values: dict[str, Any] = {
            "state": JobState.DEAD.value,
            "locked_by": None,
            "locked_at": None,
            "updated_at": now,
        }
        if attempts is not None:
            values["attempts"] = attempts

        stmt = (
            update(Job)
            .where(self._held_by(job_id, worker_id), Job.state != JobState.DEAD.value)
            .values(**values)
            .returning(Job)
            .execution_options(synchronize_session=False, populate_existing=True)
        )
        result = await self._session.execute(stmt)
        job = result.scalar_one_or_none()
        if job is None:
            if worker_id is not None:
                raise LockLostError(job_id, worker_id)
            raise AlreadyDeadError(job_id)

        record = DeadLetter(
            id=job.id,
            command=job.command,
            attempts=job.attempts,
            max_retries=job.max_retries,
            reason=reason or "max_retries_exhausted",
            failed_at=now,
        )
        self._session.add(record)
        await self._session.flush()

        logger.warning(
            "Job moved to DLQ",
            extra={"job_id": job_id, "attempts": job.attempts, "reason": record.reason},
        )
        return record

    async def requeue_from_dlq(self, job_id: str) -> bool:
        """
        Retry a job from the dead letter queue.

        Deletes the DLQ record and resets the job to a fresh pending state.

        Args:
            job_id: The job identifier.

        Returns:
            True once the job is requeued.

        Raises:
            NotFoundError: If no DLQ record exists for the id.
        """
        deleted = await self._session.execute(
            delete(DeadLetter)
            .where(DeadLetter.id == job_id)
            .returning(DeadLetter.id)
            .execution_options(synchronize_session=False)
        )
        if deleted.scalar_one_or_none() is None:
            raise NotFoundError(job_id)

        await self._session.execute(
            update(Job)
            .where(Job.id == job_id)
            .values(
                state=JobState.PENDING.value,
                attempts=0,
                next_run_at=None,
                locked_by=None,
                locked_at=None,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )

        logger.info("Job requeued from DLQ", extra={"job_id": job_id})
        return True

    async def list_by_state(self, state: str = STATE_FILTER_ALL) -> Sequence[Job]:
        """
        List jobs, optionally filtered by state.

        Args:
            state: A job state or ``"all"``.

        Returns:
            Jobs ordered by creation time.
        """
        stmt = select(Job).order_by(Job.created_at.asc()).execution_options(populate_existing=True)
        if state and state != STATE_FILTER_ALL:
            try:
                state = JobState(state).value
            except ValueError:
                raise ValidationError(f"Unknown job state: {state}") from None
            stmt = stmt.where(Job.state == state)

        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def list_ready(self, now: datetime | None = None) -> Sequence[Job]:
        """
        List pending jobs whose ``run_at`` has passed.

        Inspection only: ``next_run_at`` is deliberately ignored here.
        """
        now = now or utc_now()
        stmt = (
            select(Job)
            .where(
                Job.state == JobState.PENDING.value,
                or_(Job.run_at.is_(None), Job.run_at <= now),
            )
            .order_by(Job.created_at.asc())
            .execution_options(populate_existing=True)
        )
        result = await self._session.execute(stmt)
        return result.scalars().all()

    async def summary(self) -> dict[str, Any]:
        """
        Get job statistics.

        Returns:
            Dictionary with ``by_state`` counts, ``total``, ``pending``,
            ``active`` (processing) and ``dlq`` size.
        """
        result = await self._session.execute(
            select(Job.state, func.count()).group_by(Job.state)
        )
        by_state = {state: count for state, count in result.all()}

        dlq_count = await self._session.execute(
            select(func.count()).select_from(DeadLetter)
        )

        return {
            "by_state": by_state,
            "total": sum(by_state.values()),
            "pending": by_state.get(JobState.PENDING.value, 0),
            "active": by_state.get(JobState.PROCESSING.value, 0),
            "dlq": dlq_count.scalar() or 0,
        }

    async def list_dlq(self) -> Sequence[DeadLetter]:
        """List DLQ records, most recent failure first."""
        result = await self._session.execute(
            select(DeadLetter)
            .order_by(DeadLetter.failed_at.desc())
            .execution_options(populate_existing=True)
        )
        return result.scalars().all()

    async def insert_log(
        self,
        job_id: str,
        started_at: datetime,
        finished_at: datetime,
        exit_code: int,
        stdout: str,
        stderr: str,
        limit: int = 65535,
    ) -> ExecutionLog:
        """
        Append an execution log row. Output is truncated to ``limit`` characters.
        """
        entry = ExecutionLog(
            job_id=job_id,
            started_at=started_at,
            finished_at=finished_at,
            exit_code=exit_code,
            stdout=(stdout or "")[:limit],
            stderr=(stderr or "")[:limit],
        )
        self._session.add(entry)
        await self._session.flush()
        return entry

    async def list_logs(self, job_id: str) -> Sequence[ExecutionLog]:
        """List execution log rows for a job, oldest first."""
        result = await self._session.execute(
            select(ExecutionLog)
            .where(ExecutionLog.job_id == job_id)
            .order_by(ExecutionLog.id.asc())
        )
        return result.scalars().all()

    async def release_stale_locks(
        self,
        older_than: timedelta,
        now: datetime | None = None,
    ) -> int:
        """
        Return jobs stuck in ``processing`` to the backlog.

        Operator recovery for crashed workers: there is no heartbeat, so a
        job whose owner died keeps its lock forever. Attempts are left
        unchanged.

        Args:
            older_than: Minimum lock age to release.
            now: Override for the current time (naive UTC).

        Returns:
            Number of released jobs.
        """
        now = now or utc_now()
        cutoff = now - older_than

        stmt = (
            update(Job)
            .where(
                and_(
                    Job.state == JobState.PROCESSING.value,
                    Job.locked_at < cutoff,
                )
            )
            .values(
                state=JobState.PENDING.value,
                locked_by=None,
                locked_at=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )

        result = await self._session.execute(stmt)
        count = result.rowcount

        if count > 0:
            logger.warning(f"Released {count} stale job locks")

        return count

    async def clear(self) -> None:
        """Delete all jobs, execution logs and DLQ records."""
        await self._session.execute(delete(ExecutionLog))
        await self._session.execute(delete(DeadLetter))
        await self._session.execute(delete(Job))
        logger.info("Cleared all jobs, logs and DLQ records")


class ConfigRepository:
    """Repository for the operator-tunable key/value config table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, key: str) -> str | None:
        """Get a config value, or None when the key is unset."""
        entry = await self._session.get(ConfigEntry, normalize_config_key(key))
        return entry.value if entry is not None else None

    async def get_int(self, key: str, default: int) -> int:
        """Get a config value as an int, falling back to ``default``."""
        value = await self.get(key)
        if value is None:
            return default
        try:
            return int(value)
        except ValueError:
            logger.warning(
                "Ignoring non-integer config value",
                extra={"key": key, "value": value},
            )
            return default

    async def get_all(self) -> dict[str, str]:
        """Get every config entry."""
        result = await self._session.execute(
            select(ConfigEntry).order_by(ConfigEntry.key.asc())
        )
        return {entry.key: entry.value for entry in result.scalars().all()}

    async def set(self, key: str, value: Any) -> str:
        """
        Insert or update a config value.

        Returns:
            The normalized key that was written.
        """
        normalized = normalize_config_key(key)
        if not normalized:
            raise ValidationError("Config key cannot be empty")

        stmt = _dialect_insert(self._session, ConfigEntry).values(
            key=normalized, value=str(value)
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["key"],
            set_={"value": stmt.excluded.value},
        )
        await self._session.execute(stmt)

        logger.info("Config updated", extra={"key": normalized, "value": str(value)})
        return normalized
