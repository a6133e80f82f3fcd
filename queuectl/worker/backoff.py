"""
Retry/backoff policy.

Pure functions: no I/O, no clock reads unless ``now`` is omitted.
"""

import math
from datetime import datetime

from queuectl.constants import BACKOFF_CAP_SECONDS
from queuectl.types.job import RetryDecision
from queuectl.utils import seconds_from_now, utc_now


def delay_seconds(base: int, attempts: int, cap_seconds: int = BACKOFF_CAP_SECONDS) -> int:
    """
    Exponential backoff delay: ``min(cap, max(1, floor(base ** attempts)))``.

    Non-decreasing in ``attempts`` for ``base > 1``, never below one second
    and never above ``cap_seconds``.
    """
    if attempts < 0:
        raise ValueError("attempts must be >= 0")
    return min(cap_seconds, max(1, math.floor(base**attempts)))


def decide(
    attempts: int,
    max_retries: int,
    backoff_base: int,
    exit_code: int,
    now: datetime | None = None,
    cap_seconds: int = BACKOFF_CAP_SECONDS,
) -> RetryDecision:
    """
    Decide what happens to a job after a failed execution.

    The failed run counts as an attempt. Once the new attempt count reaches
    ``max_retries`` the job is dead, so a job is executed at most
    ``max_retries`` times in total.

    Args:
        attempts: Executions before the failed one.
        max_retries: Executions allowed before the DLQ.
        backoff_base: Base of the exponential delay.
        exit_code: Exit code of the failed run.
        now: Reference time for ``next_run_at`` (naive UTC).
        cap_seconds: Upper bound on the delay.

    Returns:
        RetryDecision describing the transition.
    """
    new_attempts = attempts + 1
    reason = f"exit {exit_code}"

    if new_attempts >= max_retries:
        return RetryDecision(attempts=new_attempts, dead=True, reason=reason)

    delay = delay_seconds(backoff_base, new_attempts, cap_seconds)
    return RetryDecision(
        attempts=new_attempts,
        dead=False,
        reason=reason,
        delay_seconds=delay,
        next_run_at=seconds_from_now(delay, now or utc_now()),
    )
