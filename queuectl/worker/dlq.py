"""
DLQ manager: the two transitions in and out of the dead letter queue.
"""

import logging

from queuectl.db.models import DeadLetter, Job
from queuectl.db.repository import JobRepository
from queuectl.types.job import RetryDecision

logger = logging.getLogger(__name__)


async def move_to_dlq(
    repo: JobRepository,
    job: Job,
    decision: RetryDecision,
    worker_id: str | None = None,
) -> DeadLetter:
    """
    Record a terminal failure for ``job``.

    Runs in the repository's session, so the DLQ insert and the job state
    change commit together.

    Raises:
        LockLostError: If ``worker_id`` no longer holds the job's lock.
    """
    logger.warning(
        f"Job {job.id} failed after {decision.attempts}/{job.max_retries} attempts, moving to DLQ",
        extra={"job_id": job.id, "reason": decision.reason},
    )
    return await repo.move_to_dead(
        job.id, decision.reason, attempts=decision.attempts, worker_id=worker_id
    )


async def requeue(repo: JobRepository, job_id: str) -> bool:
    """
    Put a dead job back in the backlog with a fresh retry budget.

    Raises:
        NotFoundError: If the id has no DLQ record.
    """
    return await repo.requeue_from_dlq(job_id)
