"""
Unit tests for logging and metrics setup.
"""

import io
import logging

import pytest
import structlog
from prometheus_client import CollectorRegistry

from queuectl.observability.logging import bind_context, setup_logging
from queuectl.observability.metrics import MetricsCollector


class TestLogging:
    """Tests for the structlog-backed stdlib logging setup."""

    @pytest.fixture(autouse=True)
    def _reset_context(self):
        yield
        structlog.contextvars.clear_contextvars()

    def test_extra_and_context_are_rendered(self):
        stream = io.StringIO()
        setup_logging(level="INFO", stream=stream)
        bind_context(worker_id="w-42")

        logging.getLogger("queuectl.test").info("Claimed job", extra={"job_id": "job1"})

        output = stream.getvalue()
        assert "Claimed job" in output
        assert "job1" in output
        assert "w-42" in output

    def test_level_filters(self):
        stream = io.StringIO()
        setup_logging(level="WARNING", stream=stream)

        logging.getLogger("queuectl.test").info("hidden")
        logging.getLogger("queuectl.test").warning("shown")

        output = stream.getvalue()
        assert "hidden" not in output
        assert "shown" in output


class TestMetricsCollector:
    """Tests for MetricsCollector on a private registry."""

    @pytest.fixture
    def registry(self) -> CollectorRegistry:
        return CollectorRegistry()

    @pytest.fixture
    def metrics(self, registry: CollectorRegistry) -> MetricsCollector:
        return MetricsCollector(registry=registry)

    def test_job_counters(self, metrics: MetricsCollector, registry: CollectorRegistry):
        metrics.record_job_enqueued()
        metrics.record_job_claimed("w-1")
        metrics.record_job_finished("completed", 0.25)
        metrics.record_job_finished("dead", 1.0)

        assert registry.get_sample_value("queuectl_jobs_enqueued_total") == 1
        assert registry.get_sample_value("queuectl_jobs_claimed_total", {"worker_id": "w-1"}) == 1
        assert registry.get_sample_value("queuectl_jobs_finished_total", {"outcome": "dead"}) == 1
        assert (
            registry.get_sample_value("queuectl_job_duration_seconds_count", {"outcome": "completed"})
            == 1
        )

    def test_queue_depth(self, metrics: MetricsCollector, registry: CollectorRegistry):
        metrics.update_queue_depth({"pending": 3, "dead": 1})

        assert registry.get_sample_value("queuectl_queue_depth", {"state": "pending"}) == 3
        assert registry.get_sample_value("queuectl_queue_depth", {"state": "dead"}) == 1

    def test_locks_released_ignores_zero(self, metrics: MetricsCollector, registry: CollectorRegistry):
        metrics.record_locks_released(0)
        metrics.record_locks_released(2)

        assert registry.get_sample_value("queuectl_stale_locks_released_total") == 2

    def test_exposition(self, metrics: MetricsCollector):
        metrics.record_job_enqueued()

        assert b"queuectl_jobs_enqueued_total" in metrics.get_metrics()
        assert metrics.get_content_type().startswith("text/plain")
