"""
Application constants.
Centralized location for all constant values used across the application.
"""

from enum import StrEnum


class JobState(StrEnum):
    """
    Job lifecycle states.

    State transitions:
    - PENDING -> PROCESSING (claimed by a worker)
    - PROCESSING -> COMPLETED (exit code 0)
    - PROCESSING -> FAILED (non-zero exit or timeout, transient)
    - FAILED -> PENDING (retry scheduled with backoff)
    - FAILED -> DEAD (retry budget exhausted, DLQ record written)
    - DEAD -> PENDING (operator requeue from the DLQ)
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    DEAD = "dead"


# FAILED only exists while a worker decides between retry and DLQ
PERSISTED_STATES: tuple[JobState, ...] = (
    JobState.PENDING,
    JobState.PROCESSING,
    JobState.COMPLETED,
    JobState.DEAD,
)

STATE_FILTER_ALL = "all"

# Persisted config table (operator tunables)
CONFIG_MAX_RETRIES = "max_retries"
CONFIG_BACKOFF_BASE = "backoff_base"
CONFIG_JOB_TIMEOUT_MS = "job_timeout_ms"

DEFAULT_CONFIG: dict[str, str] = {
    CONFIG_MAX_RETRIES: "3",
    CONFIG_BACKOFF_BASE: "2",
    CONFIG_JOB_TIMEOUT_MS: "60000",
}

CONFIG_KEY_ALIASES: dict[str, str] = {
    "max-retries": CONFIG_MAX_RETRIES,
    "backoff-base": CONFIG_BACKOFF_BASE,
    "job-timeout-ms": CONFIG_JOB_TIMEOUT_MS,
}

# Default values
DEFAULT_MAX_RETRIES = 3
DEFAULT_BACKOFF_BASE = 2
DEFAULT_JOB_TIMEOUT_MS = 60_000
DEFAULT_PRIORITY = 0
BACKOFF_CAP_SECONDS = 3600

# Executor exit codes
EXIT_CODE_SPAWN_ERROR = 1
EXIT_CODE_TIMEOUT = 124
TIMEOUT_MARKER = "[queuectl] timeout reached"

# Metrics names
METRIC_QUEUE_DEPTH = "queuectl_queue_depth"
METRIC_JOBS_ENQUEUED = "queuectl_jobs_enqueued_total"
METRIC_JOBS_CLAIMED = "queuectl_jobs_claimed_total"
METRIC_JOBS_FINISHED = "queuectl_jobs_finished_total"
METRIC_JOB_DURATION = "queuectl_job_duration_seconds"
METRIC_LOCKS_RELEASED = "queuectl_stale_locks_released_total"

# Shared sample directory for prometheus_client multiprocess mode
MULTIPROC_DIR_ENV = "PROMETHEUS_MULTIPROC_DIR"

# Fixed worker id for a single `python -m queuectl.worker.main` process
WORKER_ID_ENV = "QUEUECTL_WORKER_ID"

# Trace span names
SPAN_CLAIM_JOB = "claim_job"
SPAN_EXECUTE_JOB = "execute_job"
SPAN_RESOLVE_JOB = "resolve_job"
