"""
Job-related type definitions for internal use.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from queuectl.constants import DEFAULT_PRIORITY
from queuectl.errors import ParseError, ValidationError
from queuectl.utils import to_naive_utc


class JobSpec(BaseModel):
    """
    Job submission payload.

    Example:
        {"id": "job1", "command": "sleep 2", "max_retries": 3, "priority": 5}

    ``max_retries`` and ``backoff_base`` fall back to the config table when
    omitted; ``id`` is generated when omitted.
    """

    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str | None = None
    command: str
    max_retries: int | None = Field(default=None, ge=1)
    backoff_base: int | None = Field(default=None, ge=1)
    priority: int = DEFAULT_PRIORITY
    run_at: datetime | None = None

    @field_validator("id")
    @classmethod
    def _strip_id(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator("command")
    @classmethod
    def _require_command(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("command cannot be empty")
        return value

    @field_validator("run_at")
    @classmethod
    def _normalize_run_at(cls, value: datetime | None) -> datetime | None:
        return to_naive_utc(value) if value is not None else None


def parse_job_spec(raw: str | bytes | dict[str, Any]) -> JobSpec:
    """
    Parse and validate a job payload.

    Args:
        raw: JSON text or an already decoded mapping.

    Returns:
        The validated JobSpec.

    Raises:
        ParseError: If the text is not a JSON object.
        ValidationError: If required fields are missing or invalid.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON payload: {e.msg}") from e

    if not isinstance(raw, dict):
        raise ParseError("Job payload must be a JSON object")

    if "command" not in raw or raw["command"] is None:
        raise ValidationError('Missing required "command" field in job JSON')

    try:
        return JobSpec.model_validate(raw)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ValidationError(f"Invalid job payload: {problems}") from e


@dataclass
class ExecutionResult:
    """
    Result of running one command.
    A non-zero exit code is normal outcome data, not an engine error.
    """

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclass
class RetryDecision:
    """
    Next state for a job after a failed execution.
    Produced by the retry/backoff policy, applied by the worker.
    """

    attempts: int
    dead: bool
    reason: str
    delay_seconds: int | None = None
    next_run_at: datetime | None = None
