"""
Prometheus metrics collection.

Workers, the CLI and the dashboard are separate processes. Set
``PROMETHEUS_MULTIPROC_DIR`` to a shared, empty directory before starting
any of them: every process then writes its samples there and the
dashboard's ``/metrics`` aggregates all of them.
"""

import os

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
    multiprocess,
)

from queuectl.constants import (
    METRIC_JOB_DURATION,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_ENQUEUED,
    METRIC_JOBS_FINISHED,
    METRIC_LOCKS_RELEASED,
    METRIC_QUEUE_DEPTH,
    MULTIPROC_DIR_ENV,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Jobs per state (queue depth)
    - Job submissions and claims
    - Job outcomes and execution duration
    - Stale lock recovery
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of jobs per state",
            ["state"],
            registry=self._registry,
            multiprocess_mode="mostrecent",
        )

        self.jobs_enqueued = Counter(
            METRIC_JOBS_ENQUEUED,
            "Total number of jobs enqueued",
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of jobs claimed by workers",
            ["worker_id"],
            registry=self._registry,
        )

        # outcome: completed, retried, dead, lost
        self.jobs_finished = Counter(
            METRIC_JOBS_FINISHED,
            "Total number of executions by outcome",
            ["outcome"],
            registry=self._registry,
        )

        self.job_duration = Histogram(
            METRIC_JOB_DURATION,
            "Command execution duration in seconds",
            ["outcome"],
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self._registry,
        )

        self.locks_released = Counter(
            METRIC_LOCKS_RELEASED,
            "Total number of stale processing locks released",
            registry=self._registry,
        )

    def record_job_enqueued(self) -> None:
        """Record a job submission."""
        self.jobs_enqueued.inc()

    def record_job_claimed(self, worker_id: str) -> None:
        """Record a successful claim."""
        self.jobs_claimed.labels(worker_id=worker_id).inc()

    def record_job_finished(self, outcome: str, duration_seconds: float) -> None:
        """Record the outcome of one execution."""
        self.jobs_finished.labels(outcome=outcome).inc()
        self.job_duration.labels(outcome=outcome).observe(duration_seconds)

    def record_locks_released(self, count: int) -> None:
        """Record stale locks returned to the backlog."""
        if count > 0:
            self.locks_released.inc(count)

    def update_queue_depth(self, by_state: dict[str, int]) -> None:
        """Update per-state job counts."""
        for state, count in by_state.items():
            self.queue_depth.labels(state=state).set(count)

    def get_metrics(self) -> bytes:
        """
        Get all metrics in Prometheus format.

        In multiprocess mode the samples of every queuectl process are
        aggregated from the shared directory instead of this process's
        registry.
        """
        multiproc_dir = os.environ.get(MULTIPROC_DIR_ENV)
        if multiproc_dir and self._registry is REGISTRY:
            registry = CollectorRegistry()
            multiprocess.MultiProcessCollector(registry, path=multiproc_dir)
            return generate_latest(registry)
        return generate_latest(self._registry)

    def get_content_type(self) -> str:
        """Get the content type for metrics response."""
        return CONTENT_TYPE_LATEST


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
