"""
Unit tests for the job repository.
"""

from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.constants import JobState
from queuectl.db.repository import ConfigRepository, JobRepository
from queuectl.errors import (
    AlreadyDeadError,
    DuplicateIdError,
    LockLostError,
    NotFoundError,
    ValidationError,
)
from queuectl.utils import utc_now


async def _insert(repo: JobRepository, job_id: str, **kwargs):
    fields = {"command": "echo hi", "max_retries": 3, "backoff_base": 2}
    fields.update(kwargs)
    return await repo.insert(job_id=job_id, **fields)


class TestJobRepository:
    """Tests for JobRepository."""

    async def test_insert_job_success(self, repo: JobRepository, db_session: AsyncSession):
        """Test successful job creation."""
        job = await _insert(repo, "job1", priority=5)
        await db_session.commit()

        assert job.id == "job1"
        assert job.state == JobState.PENDING
        assert job.attempts == 0
        assert job.max_retries == 3
        assert job.priority == 5
        assert job.next_run_at is None
        assert job.locked_by is None

    async def test_insert_duplicate_id(self, repo: JobRepository, db_session: AsyncSession):
        """Test that a second insert with the same id is rejected."""
        await _insert(repo, "job1")
        await db_session.commit()

        with pytest.raises(DuplicateIdError):
            await _insert(repo, "job1", command="echo other")

        job = await repo.get("job1")
        assert job.command == "echo hi"

    @pytest.mark.parametrize(
        "fields",
        [
            {"command": "   "},
            {"max_retries": 0},
            {"backoff_base": 0},
        ],
    )
    async def test_insert_rejects_invalid_fields(self, repo: JobRepository, fields):
        with pytest.raises(ValidationError):
            await _insert(repo, "bad", **fields)

    async def test_get_missing_job(self, repo: JobRepository):
        assert await repo.get("nope") is None

    async def test_claim_marks_processing(self, repo: JobRepository, db_session: AsyncSession):
        """Test claiming sets the lock fields."""
        await _insert(repo, "job1")
        await db_session.commit()

        job = await repo.claim_next("w-1")
        await db_session.commit()

        assert job is not None
        assert job.id == "job1"
        assert job.state == JobState.PROCESSING
        assert job.locked_by == "w-1"
        assert job.locked_at is not None

        assert await repo.claim_next("w-2") is None

    async def test_claim_empty_queue(self, repo: JobRepository):
        assert await repo.claim_next("w-1") is None

    async def test_claim_order_priority_then_age(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        """Higher priority first, then oldest first."""
        await _insert(repo, "old-low", priority=0)
        await _insert(repo, "high", priority=10)
        await _insert(repo, "new-low", priority=0)
        await db_session.commit()

        claimed = []
        while (job := await repo.claim_next("w-1")) is not None:
            claimed.append(job.id)
        await db_session.commit()

        assert claimed == ["high", "old-low", "new-low"]

    async def test_claim_skips_future_run_at(self, repo: JobRepository, db_session: AsyncSession):
        now = utc_now()
        await _insert(repo, "later", run_at=now + timedelta(hours=1))
        await db_session.commit()

        assert await repo.claim_next("w-1", now=now) is None
        job = await repo.claim_next("w-1", now=now + timedelta(hours=2))
        assert job is not None
        assert job.id == "later"

    async def test_claim_skips_backoff(self, repo: JobRepository, db_session: AsyncSession):
        """A job waiting out its retry delay is not eligible."""
        now = utc_now()
        await _insert(repo, "job1")
        await db_session.commit()

        await repo.claim_next("w-1", now=now)
        await repo.schedule_retry("job1", attempts=1, next_run_at=now + timedelta(seconds=2))
        await db_session.commit()

        assert await repo.claim_next("w-1", now=now + timedelta(seconds=1)) is None
        job = await repo.claim_next("w-1", now=now + timedelta(seconds=3))
        assert job is not None
        assert job.attempts == 1

    async def test_complete(self, repo: JobRepository, db_session: AsyncSession):
        await _insert(repo, "job1")
        await repo.claim_next("w-1")
        await repo.complete("job1")
        await db_session.commit()

        job = await repo.get("job1")
        assert job.state == JobState.COMPLETED
        assert job.locked_by is None
        assert job.locked_at is None

    async def test_owner_checked_transitions(self, repo: JobRepository, db_session: AsyncSession):
        """With a worker id, a transition applies only while that worker holds the lock."""
        now = utc_now()
        await _insert(repo, "job1")
        await repo.claim_next("w-1")
        await db_session.commit()

        with pytest.raises(LockLostError):
            await repo.complete("job1", worker_id="w-2")
        with pytest.raises(LockLostError):
            await repo.schedule_retry("job1", attempts=1, next_run_at=now, worker_id="w-2")
        with pytest.raises(LockLostError):
            await repo.move_to_dead("job1", "exit 1", attempts=1, worker_id="w-2")

        job = await repo.get("job1")
        assert job.state == JobState.PROCESSING
        assert job.locked_by == "w-1"
        assert await repo.list_dlq() == []

        await repo.complete("job1", worker_id="w-1")
        await db_session.commit()
        assert (await repo.get("job1")).state == JobState.COMPLETED

    async def test_owner_checked_after_recovery(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        """A worker whose lock was released and re-claimed cannot resolve the job."""
        now = utc_now()
        await _insert(repo, "job1")
        await repo.claim_next("w-1", now=now - timedelta(minutes=10))
        await repo.release_stale_locks(timedelta(minutes=5), now=now)
        await repo.claim_next("w-2", now=now)
        await db_session.commit()

        with pytest.raises(LockLostError):
            await repo.move_to_dead("job1", "exit 1", attempts=1, worker_id="w-1")

        await repo.schedule_retry(
            "job1", attempts=1, next_run_at=now + timedelta(seconds=2), worker_id="w-2"
        )
        await db_session.commit()

        job = await repo.get("job1")
        assert job.state == JobState.PENDING
        assert job.attempts == 1

    async def test_move_to_dead(self, repo: JobRepository, db_session: AsyncSession):
        """Test that the DLQ record mirrors the job."""
        await _insert(repo, "job1", max_retries=2)
        await repo.claim_next("w-1")
        record = await repo.move_to_dead("job1", "exit 1", attempts=2)
        await db_session.commit()

        assert record.id == "job1"
        assert record.attempts == 2
        assert record.max_retries == 2
        assert record.reason == "exit 1"

        job = await repo.get("job1")
        assert job.state == JobState.DEAD
        assert job.locked_by is None

        dlq = await repo.list_dlq()
        assert [r.id for r in dlq] == ["job1"]

    async def test_move_to_dead_twice(self, repo: JobRepository, db_session: AsyncSession):
        await _insert(repo, "job1")
        await repo.move_to_dead("job1", "exit 1")
        await db_session.commit()

        with pytest.raises(AlreadyDeadError):
            await repo.move_to_dead("job1", "exit 1")

    async def test_move_missing_job_to_dead(self, repo: JobRepository):
        with pytest.raises(AlreadyDeadError):
            await repo.move_to_dead("ghost", "exit 1")

    async def test_requeue_from_dlq(self, repo: JobRepository, db_session: AsyncSession):
        """Test that requeue resets the retry budget and removes the record."""
        await _insert(repo, "job1")
        await repo.claim_next("w-1")
        await repo.move_to_dead("job1", "exit 1", attempts=3)
        await db_session.commit()

        assert await repo.requeue_from_dlq("job1") is True
        await db_session.commit()

        job = await repo.get("job1")
        assert job.state == JobState.PENDING
        assert job.attempts == 0
        assert job.next_run_at is None
        assert await repo.list_dlq() == []

        # The record is gone, so a second requeue has nothing to act on
        with pytest.raises(NotFoundError):
            await repo.requeue_from_dlq("job1")

    async def test_requeue_unknown_id(self, repo: JobRepository):
        with pytest.raises(NotFoundError):
            await repo.requeue_from_dlq("nope")

    async def test_list_by_state(self, repo: JobRepository, db_session: AsyncSession):
        await _insert(repo, "a")
        await _insert(repo, "b")
        await repo.claim_next("w-1")
        await db_session.commit()

        assert len(await repo.list_by_state("all")) == 2
        assert [j.id for j in await repo.list_by_state("processing")] == ["a"]
        assert [j.id for j in await repo.list_by_state("pending")] == ["b"]
        assert await repo.list_by_state("completed") == []

    async def test_list_by_unknown_state(self, repo: JobRepository):
        with pytest.raises(ValidationError):
            await repo.list_by_state("sleeping")

    async def test_list_ready_ignores_backoff(self, repo: JobRepository, db_session: AsyncSession):
        """Readiness only looks at run_at."""
        now = utc_now()
        await _insert(repo, "now")
        await _insert(repo, "later", run_at=now + timedelta(hours=1))
        await _insert(repo, "retrying")
        await repo.schedule_retry("retrying", attempts=1, next_run_at=now + timedelta(hours=1))
        await db_session.commit()

        ready = {j.id for j in await repo.list_ready(now=now)}
        assert ready == {"now", "retrying"}

    async def test_summary(self, repo: JobRepository, db_session: AsyncSession):
        await _insert(repo, "a")
        await _insert(repo, "b")
        await _insert(repo, "c")
        await repo.claim_next("w-1")
        await repo.move_to_dead("c", "exit 2")
        await db_session.commit()

        summary = await repo.summary()
        assert summary["by_state"] == {"pending": 1, "processing": 1, "dead": 1}
        assert summary["total"] == 3
        assert summary["pending"] == 1
        assert summary["active"] == 1
        assert summary["dlq"] == 1

    async def test_insert_log_truncates_output(
        self, repo: JobRepository, db_session: AsyncSession
    ):
        now = utc_now()
        await repo.insert_log("job1", now, now, 0, "x" * 100, "", limit=10)
        await repo.insert_log("job1", now, now, 1, "", "boom")
        await db_session.commit()

        logs = await repo.list_logs("job1")
        assert [entry.exit_code for entry in logs] == [0, 1]
        assert logs[0].stdout == "x" * 10
        assert logs[1].stderr == "boom"

    async def test_release_stale_locks(self, repo: JobRepository, db_session: AsyncSession):
        """Only locks older than the threshold are released."""
        now = utc_now()
        await _insert(repo, "stale")
        await _insert(repo, "fresh")
        await repo.claim_next("w-1", now=now - timedelta(minutes=10))
        await repo.claim_next("w-2", now=now)
        await db_session.commit()

        released = await repo.release_stale_locks(timedelta(minutes=5), now=now)
        await db_session.commit()

        assert released == 1
        stale = await repo.get("stale")
        assert stale.state == JobState.PENDING
        assert stale.locked_by is None
        assert stale.attempts == 0
        assert (await repo.get("fresh")).state == JobState.PROCESSING

    async def test_clear(self, repo: JobRepository, db_session: AsyncSession):
        now = utc_now()
        await _insert(repo, "a")
        await _insert(repo, "b")
        await repo.move_to_dead("b", "exit 1")
        await repo.insert_log("a", now, now, 0, "", "")
        await db_session.commit()

        await repo.clear()
        await db_session.commit()

        summary = await repo.summary()
        assert summary["total"] == 0
        assert summary["dlq"] == 0
        assert await repo.list_logs("a") == []


class TestConfigRepository:
    """Tests for the persisted config table."""

    async def test_defaults_seeded(self, config_repo: ConfigRepository):
        assert await config_repo.get_all() == {
            "backoff_base": "2",
            "job_timeout_ms": "60000",
            "max_retries": "3",
        }

    async def test_set_and_get_with_alias(
        self, config_repo: ConfigRepository, db_session: AsyncSession
    ):
        """Hyphenated CLI spellings map onto stored keys."""
        key = await config_repo.set("max-retries", 5)
        await db_session.commit()

        assert key == "max_retries"
        assert await config_repo.get("max_retries") == "5"
        assert await config_repo.get("max-retries") == "5"
        assert await config_repo.get_int("max_retries", 3) == 5

    async def test_get_int_fallbacks(
        self, config_repo: ConfigRepository, db_session: AsyncSession
    ):
        assert await config_repo.get_int("missing", 7) == 7

        await config_repo.set("weird", "abc")
        await db_session.commit()
        assert await config_repo.get_int("weird", 7) == 7

    async def test_set_empty_key(self, config_repo: ConfigRepository):
        with pytest.raises(ValidationError):
            await config_repo.set("  ", "1")
