"""
Worker process for executing jobs.

The worker claims jobs from the store, runs their commands, and resolves
each one as completed, retried with backoff, or moved to the DLQ.
"""

import asyncio
import logging
import os
import signal
import time
from datetime import datetime
from enum import StrEnum

from queuectl.config import Settings, get_settings
from queuectl.constants import (
    CONFIG_JOB_TIMEOUT_MS,
    DEFAULT_JOB_TIMEOUT_MS,
    SPAN_CLAIM_JOB,
    SPAN_EXECUTE_JOB,
    SPAN_RESOLVE_JOB,
    WORKER_ID_ENV,
)
from queuectl.db import Database
from queuectl.db.models import Job
from queuectl.db.repository import ConfigRepository, JobRepository
from queuectl.errors import LockLostError
from queuectl.observability.logging import bind_context, setup_logging
from queuectl.observability.metrics import get_metrics
from queuectl.observability.tracing import get_tracer, instrument_sqlalchemy
from queuectl.types.job import ExecutionResult
from queuectl.utils import utc_now
from queuectl.worker.backoff import decide
from queuectl.worker.dlq import move_to_dlq
from queuectl.worker.executor import run_command

logger = logging.getLogger(__name__)

_RESOLVE_ATTEMPTS = 3


class WorkerState(StrEnum):
    """Execution supervisor states."""

    IDLE_POLLING = "idle-polling"
    EXECUTING = "executing"
    STOPPING = "stopping"
    TERMINATED = "terminated"


class Worker:
    """
    Job worker that polls for and executes jobs, one at a time.

    Features:
    - Atomic claims through the store's UPDATE ... RETURNING primitive
    - Timeout-bounded command execution
    - Retry with exponential backoff and DLQ handling
    - Cooperative shutdown: a claimed job is always resolved before exit

    ``step()`` performs exactly one claim/execute/resolve cycle so tests can
    drive the state machine without sleeping; ``run()`` loops it.
    """

    def __init__(
        self,
        database: Database,
        worker_id: str | None = None,
        poll_interval: float | None = None,
        settings: Settings | None = None,
    ):
        """
        Initialize the worker.

        Args:
            database: The store handle.
            worker_id: Unique worker identifier. Defaults to ``w-<pid>``.
            poll_interval: Seconds to wait when the queue is empty.
            settings: Optional settings override.
        """
        settings = settings or get_settings()

        self.database = database
        self.worker_id = worker_id or f"w-{os.getpid()}"
        self.poll_interval = (
            poll_interval if poll_interval is not None else settings.worker_poll_interval_seconds
        )
        self.output_limit = settings.log_output_limit

        self.state = WorkerState.IDLE_POLLING
        self.current_job_id: str | None = None
        self.jobs_processed = 0

        self._stop_event = asyncio.Event()
        self._metrics = get_metrics()

    @property
    def stopping(self) -> bool:
        return self._stop_event.is_set()

    def stop(self) -> None:
        """
        Request a graceful stop.

        Never interrupts an in-flight job; it only prevents further claims.
        """
        if self._stop_event.is_set():
            return
        logger.info(
            "Worker stopping",
            extra={"worker_id": self.worker_id, "current_job": self.current_job_id},
        )
        self._stop_event.set()
        if self.state == WorkerState.IDLE_POLLING:
            self.state = WorkerState.STOPPING

    async def run(self) -> None:
        """Run the polling loop until ``stop()`` is called."""
        logger.info(
            "Worker starting",
            extra={"worker_id": self.worker_id, "poll_interval": self.poll_interval},
        )

        while not self.stopping:
            try:
                processed = await self.step()
            except Exception as e:
                logger.exception(
                    f"Error in worker loop: {e}",
                    extra={"worker_id": self.worker_id},
                )
                processed = False

            if not processed:
                await self._idle()

        self.state = WorkerState.TERMINATED
        logger.info(
            "Worker stopped",
            extra={"worker_id": self.worker_id, "jobs_processed": self.jobs_processed},
        )

    async def step(self) -> bool:
        """
        Perform one state machine transition.

        Returns:
            True if a job was claimed and resolved, False if nothing was
            eligible or the worker is stopping.
        """
        if self.stopping:
            self.state = WorkerState.STOPPING
            return False

        self.state = WorkerState.IDLE_POLLING
        job = await self.claim()
        if job is None:
            return False

        self.state = WorkerState.EXECUTING
        self.current_job_id = job.id
        try:
            await self.execute(job)
            self.jobs_processed += 1
        finally:
            self.current_job_id = None
            self.state = WorkerState.STOPPING if self.stopping else WorkerState.IDLE_POLLING

        return True

    async def claim(self) -> Job | None:
        """Claim the next eligible job, if any."""
        with get_tracer().start_as_current_span(SPAN_CLAIM_JOB) as span:
            span.set_attribute("worker_id", self.worker_id)

            async with self.database.session() as session:
                job = await JobRepository(session).claim_next(self.worker_id)

            if job is not None:
                span.set_attribute("job_id", job.id)
                self._metrics.record_job_claimed(self.worker_id)

        return job

    async def execute(self, job: Job) -> str:
        """
        Execute a claimed job and resolve it.

        Handles the full lifecycle:
        1. Read the timeout from the config table
        2. Run the command
        3. Write the execution log and apply complete, retry or DLQ

        Args:
            job: The claimed job.

        Returns:
            The outcome: ``completed``, ``retried``, ``dead`` or ``lost``.
        """
        timeout_ms = await self._job_timeout_ms()

        logger.info(
            f"Executing job {job.id}",
            extra={
                "job_id": job.id,
                "command": job.command,
                "attempt": job.attempts + 1,
                "timeout_ms": timeout_ms,
            },
        )

        started_at = utc_now()
        start_time = time.monotonic()

        with get_tracer().start_as_current_span(SPAN_EXECUTE_JOB) as span:
            span.set_attribute("job_id", job.id)
            span.set_attribute("attempt", job.attempts + 1)

            result = await run_command(job.command, timeout_ms, output_limit=self.output_limit)
            span.set_attribute("exit_code", result.exit_code)

        finished_at = utc_now()
        duration = time.monotonic() - start_time

        with get_tracer().start_as_current_span(SPAN_RESOLVE_JOB) as span:
            span.set_attribute("job_id", job.id)
            outcome = await self._resolve_with_retry(job, result, started_at, finished_at)
            span.set_attribute("outcome", outcome)

        self._metrics.record_job_finished(outcome, duration)
        return outcome

    async def resolve(
        self,
        job: Job,
        result: ExecutionResult,
        started_at: datetime,
        finished_at: datetime,
    ) -> str:
        """
        Record the attempt and apply exactly one state transition.

        The log row and the transition share one transaction. If another
        worker took the job over (``queuectl recover``), only the log row is
        written and the outcome is ``lost``.
        """
        async with self.database.session() as session:
            repo = JobRepository(session)

            await repo.insert_log(
                job_id=job.id,
                started_at=started_at,
                finished_at=finished_at,
                exit_code=result.exit_code,
                stdout=result.stdout,
                stderr=result.stderr,
                limit=self.output_limit,
            )

            try:
                return await self._transition(repo, job, result)
            except LockLostError:
                logger.warning(
                    f"Job {job.id} was taken over by another worker, discarding the result",
                    extra={"job_id": job.id, "exit_code": result.exit_code},
                )
                return "lost"

    async def _transition(self, repo: JobRepository, job: Job, result: ExecutionResult) -> str:
        if result.success:
            await repo.complete(job.id, worker_id=self.worker_id)
            logger.info(f"Job {job.id} completed successfully", extra={"job_id": job.id})
            return "completed"

        decision = decide(
            attempts=job.attempts,
            max_retries=job.max_retries,
            backoff_base=job.backoff_base,
            exit_code=result.exit_code,
        )

        if decision.dead:
            await move_to_dlq(repo, job, decision, worker_id=self.worker_id)
            return "dead"

        await repo.schedule_retry(
            job.id, decision.attempts, decision.next_run_at, worker_id=self.worker_id
        )
        logger.warning(
            f"Job {job.id} failed ({decision.reason}), retrying in {decision.delay_seconds}s",
            extra={"job_id": job.id, "attempts": decision.attempts},
        )
        return "retried"

    async def _resolve_with_retry(
        self,
        job: Job,
        result: ExecutionResult,
        started_at: datetime,
        finished_at: datetime,
    ) -> str:
        # A claimed job must not be left in processing because of a
        # transient store error (e.g. a lock wait that ran out).
        attempt = 1
        while True:
            try:
                return await self.resolve(job, result, started_at, finished_at)
            except Exception:
                if attempt >= _RESOLVE_ATTEMPTS:
                    raise
                logger.exception(
                    "Failed to resolve job, retrying",
                    extra={"job_id": job.id, "attempt": attempt},
                )
                await asyncio.sleep(self.poll_interval * attempt)
                attempt += 1

    async def _job_timeout_ms(self) -> int:
        try:
            async with self.database.session() as session:
                return await ConfigRepository(session).get_int(
                    CONFIG_JOB_TIMEOUT_MS, DEFAULT_JOB_TIMEOUT_MS
                )
        except Exception:
            logger.exception("Failed to read job timeout, using the default")
            return DEFAULT_JOB_TIMEOUT_MS

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), self.poll_interval)
        except TimeoutError:
            pass


async def run_async(worker_id: str | None = None) -> None:
    """Run one worker process until SIGTERM/SIGINT."""
    setup_logging()
    database = Database()
    await database.init()
    instrument_sqlalchemy(database.engine.sync_engine)

    worker = Worker(database, worker_id=worker_id)
    bind_context(worker_id=worker.worker_id)

    # Handle shutdown signals
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, worker.stop)

    try:
        await worker.run()
    finally:
        await database.dispose()


def run() -> None:
    """Run the worker."""
    asyncio.run(run_async(os.environ.get(WORKER_ID_ENV)))


if __name__ == "__main__":
    run()
