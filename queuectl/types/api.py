"""
Dashboard response type definitions.
"""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class JobResponse(BaseModel):
    """Full job details response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    command: str
    state: str
    attempts: int
    max_retries: int
    backoff_base: int
    priority: int
    run_at: datetime | None
    next_run_at: datetime | None
    locked_by: str | None
    locked_at: datetime | None
    created_at: datetime
    updated_at: datetime


class DLQResponse(BaseModel):
    """Dead letter queue record."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    command: str
    attempts: int
    max_retries: int
    reason: str
    failed_at: datetime


class ExecutionLogResponse(BaseModel):
    """One execution attempt."""

    model_config = ConfigDict(from_attributes=True)

    job_id: str
    started_at: datetime
    finished_at: datetime
    exit_code: int
    stdout: str
    stderr: str


class SummaryResponse(BaseModel):
    """Job counts per state plus DLQ size."""

    by_state: dict[str, int] = Field(default_factory=dict)
    total: int = 0
    pending: int = 0
    active: int = 0
    dlq: int = 0


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    timestamp: datetime
