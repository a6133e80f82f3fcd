"""
Stale lock reaper for recovering jobs from crashed workers.

Workers hold no heartbeat, so a job whose worker died mid-execution stays in
``processing`` forever. The reaper is the operator's way out: it returns
jobs locked for longer than a threshold to the backlog.
"""

import logging
from datetime import timedelta

from queuectl.db import Database
from queuectl.db.repository import JobRepository
from queuectl.errors import ValidationError
from queuectl.observability.metrics import get_metrics

logger = logging.getLogger(__name__)


class Reaper:
    """
    Releases stale processing locks.

    Runs on demand (``queuectl recover``) to:
    1. Find jobs in ``processing`` whose ``locked_at`` is older than the threshold
    2. Return them to ``pending`` with their attempts unchanged
    3. Record metrics for monitoring
    """

    def __init__(self, database: Database, older_than: timedelta):
        """
        Initialize the reaper.

        Args:
            database: The store handle.
            older_than: Minimum lock age to release.
        """
        if older_than <= timedelta(0):
            raise ValidationError("older_than must be positive")
        self.database = database
        self.older_than = older_than
        self._metrics = get_metrics()

    async def run_once(self) -> int:
        """
        Release stale locks once.

        Returns:
            Number of jobs returned to the backlog.
        """
        async with self.database.session() as session:
            count = await JobRepository(session).release_stale_locks(self.older_than)

        self._metrics.record_locks_released(count)
        logger.info(
            f"Recovered {count} stale jobs",
            extra={"older_than_seconds": self.older_than.total_seconds()},
        )
        return count
