"""
Queue service: the operations behind the CLI and the dashboard.

Each call opens its own session, so every operation is one transaction.
"""

import logging
import uuid
from datetime import timedelta
from typing import Any, Sequence

from queuectl.constants import (
    CONFIG_BACKOFF_BASE,
    CONFIG_MAX_RETRIES,
    DEFAULT_BACKOFF_BASE,
    DEFAULT_CONFIG,
    DEFAULT_MAX_RETRIES,
    PERSISTED_STATES,
    STATE_FILTER_ALL,
)
from queuectl.db import Database
from queuectl.db.models import DeadLetter, ExecutionLog, Job
from queuectl.db.repository import ConfigRepository, JobRepository, normalize_config_key
from queuectl.errors import NotFoundError, ValidationError
from queuectl.observability.metrics import get_metrics
from queuectl.reaper import Reaper
from queuectl.types.job import parse_job_spec
from queuectl.worker.dlq import requeue

logger = logging.getLogger(__name__)


class QueueService:
    """
    Facade over the job store.

    Usage:
        service = QueueService(database)
        job_id = await service.enqueue('{"command": "echo hi"}')
    """

    def __init__(self, database: Database):
        self.database = database
        self._metrics = get_metrics()

    async def enqueue(self, payload: str | bytes | dict[str, Any]) -> str:
        """
        Validate and persist a new job.

        Omitted ``max_retries`` and ``backoff_base`` are read from the config
        table; an omitted id is generated.

        Returns:
            The job id.

        Raises:
            ParseError: If the payload is not a JSON object.
            ValidationError: If the payload is invalid.
            DuplicateIdError: If the id is already taken.
        """
        spec = parse_job_spec(payload)

        async with self.database.session() as session:
            config = ConfigRepository(session)
            max_retries = spec.max_retries or await config.get_int(
                CONFIG_MAX_RETRIES, DEFAULT_MAX_RETRIES
            )
            backoff_base = spec.backoff_base or await config.get_int(
                CONFIG_BACKOFF_BASE, DEFAULT_BACKOFF_BASE
            )

            job = await JobRepository(session).insert(
                job_id=spec.id or str(uuid.uuid4()),
                command=spec.command,
                max_retries=max_retries,
                backoff_base=backoff_base,
                priority=spec.priority,
                run_at=spec.run_at,
            )
            job_id = job.id

        self._metrics.record_job_enqueued()
        return job_id

    async def get(self, job_id: str) -> Job | None:
        async with self.database.session() as session:
            return await JobRepository(session).get(job_id)

    async def list_jobs(self, state: str = STATE_FILTER_ALL) -> Sequence[Job]:
        async with self.database.session() as session:
            return await JobRepository(session).list_by_state(state)

    async def list_ready(self) -> Sequence[Job]:
        """Pending jobs whose ``run_at`` has passed."""
        async with self.database.session() as session:
            return await JobRepository(session).list_ready()

    async def summary(self) -> dict[str, Any]:
        """
        Job counts per state plus DLQ size. Also refreshes the queue depth gauge.
        """
        async with self.database.session() as session:
            summary = await JobRepository(session).summary()

        depth = {state.value: 0 for state in PERSISTED_STATES}
        depth.update(summary["by_state"])
        self._metrics.update_queue_depth(depth)
        return summary

    async def dlq_list(self) -> Sequence[DeadLetter]:
        async with self.database.session() as session:
            return await JobRepository(session).list_dlq()

    async def dlq_retry(self, job_id: str) -> bool:
        """
        Requeue a dead job.

        Returns:
            True if the job was requeued, False if it is not in the DLQ.
        """
        try:
            async with self.database.session() as session:
                return await requeue(JobRepository(session), job_id)
        except NotFoundError:
            logger.info("DLQ retry for unknown job", extra={"job_id": job_id})
            return False

    async def config_get(self, key: str) -> str | None:
        async with self.database.session() as session:
            return await ConfigRepository(session).get(key)

    async def config_all(self) -> dict[str, str]:
        async with self.database.session() as session:
            return await ConfigRepository(session).get_all()

    async def config_set(self, key: str, value: Any) -> str:
        """
        Set a config value.

        Known tunables must be positive integers; other keys are stored as-is.

        Returns:
            The normalized key.
        """
        normalized = normalize_config_key(key)
        if normalized in DEFAULT_CONFIG:
            try:
                number = int(str(value).strip())
            except ValueError:
                raise ValidationError(f"{normalized} must be an integer, got {value!r}") from None
            if number < 1:
                raise ValidationError(f"{normalized} must be >= 1")
            value = number

        async with self.database.session() as session:
            normalized = await ConfigRepository(session).set(normalized, value)

        logger.info("Config updated", extra={"key": normalized, "value": str(value)})
        return normalized

    async def logs(self, job_id: str) -> Sequence[ExecutionLog]:
        async with self.database.session() as session:
            return await JobRepository(session).list_logs(job_id)

    async def clear(self) -> None:
        """Delete all jobs, execution logs and DLQ records."""
        async with self.database.session() as session:
            await JobRepository(session).clear()

    async def recover(self, older_than_seconds: float) -> int:
        """
        Return jobs stuck in ``processing`` longer than the threshold to the backlog.

        Returns:
            Number of recovered jobs.
        """
        return await Reaper(self.database, timedelta(seconds=older_than_seconds)).run_once()
