"""
Type definitions for the job queue.
Contains input/output type definitions for all functions, grouped by module.
"""

from queuectl.types.api import (
    DLQResponse,
    ExecutionLogResponse,
    HealthResponse,
    JobResponse,
    SummaryResponse,
)
from queuectl.types.job import (
    ExecutionResult,
    JobSpec,
    RetryDecision,
    parse_job_spec,
)

__all__ = [
    # API types
    "JobResponse",
    "DLQResponse",
    "ExecutionLogResponse",
    "SummaryResponse",
    "HealthResponse",
    # Job types
    "JobSpec",
    "parse_job_spec",
    "ExecutionResult",
    "RetryDecision",
]
