"""
Domain exceptions.

A non-zero exit code or a timeout is not an error of the engine: it is
recorded on the job as an ``ExecutionResult`` and drives retry/DLQ.
"""


class QueueError(Exception):
    """Base class for all queue errors surfaced to callers."""


class ValidationError(QueueError):
    """Job fields are missing or violate an invariant. Never persisted."""


class ParseError(ValidationError):
    """The job payload is not valid JSON."""


class DuplicateIdError(QueueError):
    """A job with the same id already exists."""

    def __init__(self, job_id: str):
        super().__init__(f"Job '{job_id}' already exists")
        self.job_id = job_id


class NotFoundError(QueueError):
    """No DLQ record exists for the requested id."""

    def __init__(self, job_id: str):
        super().__init__(f"Job '{job_id}' not found in DLQ")
        self.job_id = job_id


class AlreadyDeadError(QueueError):
    """The job row to move to the DLQ does not exist (or was already moved)."""

    def __init__(self, job_id: str):
        super().__init__(f"Job '{job_id}' cannot be moved to DLQ")
        self.job_id = job_id


class LockLostError(QueueError):
    """The worker no longer holds the job's lock, e.g. after ``queuectl recover``."""

    def __init__(self, job_id: str, worker_id: str):
        super().__init__(f"Job '{job_id}' is no longer locked by {worker_id}")
        self.job_id = job_id
        self.worker_id = worker_id
