"""
Integration tests for the dashboard endpoints.
"""

import pytest_asyncio
from httpx import AsyncClient

from queuectl.db import Database
from queuectl.db.repository import JobRepository
from queuectl.queue import QueueService
from queuectl.utils import utc_now


class TestDashboardAPI:
    """Integration tests for the JSON endpoints."""

    @pytest_asyncio.fixture
    async def populated(self, service: QueueService, database: Database) -> None:
        """Two pending jobs, one processing, one dead."""
        await service.enqueue({"id": "a", "command": "echo a", "priority": 5})
        await service.enqueue({"id": "b", "command": "echo b"})
        await service.enqueue({"id": "c", "command": "echo c"})
        await service.enqueue({"id": "d", "command": "false"})

        async with database.session() as session:
            repo = JobRepository(session)
            await repo.claim_next("w-1")
            await repo.move_to_dead("d", "exit 1", attempts=3)
            now = utc_now()
            await repo.insert_log("d", now, now, 1, "", "boom")

    async def test_summary(self, client: AsyncClient, populated):
        response = await client.get("/api/summary")

        assert response.status_code == 200
        data = response.json()
        assert data["by_state"] == {"pending": 2, "processing": 1, "dead": 1}
        assert data["total"] == 4
        assert data["pending"] == 2
        assert data["active"] == 1
        assert data["dlq"] == 1

    async def test_list_jobs(self, client: AsyncClient, populated):
        response = await client.get("/api/jobs")

        assert response.status_code == 200
        assert [job["id"] for job in response.json()] == ["a", "b", "c", "d"]

    async def test_list_jobs_by_state(self, client: AsyncClient, populated):
        response = await client.get("/api/jobs", params={"state": "processing"})

        assert response.status_code == 200
        jobs = response.json()
        assert len(jobs) == 1
        assert jobs[0]["id"] == "a"
        assert jobs[0]["locked_by"] == "w-1"

    async def test_list_jobs_unknown_state(self, client: AsyncClient):
        response = await client.get("/api/jobs", params={"state": "bogus"})
        assert response.status_code == 400

    async def test_get_job(self, client: AsyncClient, populated):
        response = await client.get("/api/jobs/b")

        assert response.status_code == 200
        data = response.json()
        assert data["command"] == "echo b"
        assert data["state"] == "pending"
        assert data["attempts"] == 0

    async def test_get_job_not_found(self, client: AsyncClient):
        response = await client.get("/api/jobs/missing")
        assert response.status_code == 404

    async def test_job_logs(self, client: AsyncClient, populated):
        response = await client.get("/api/jobs/d/logs")

        assert response.status_code == 200
        logs = response.json()
        assert len(logs) == 1
        assert logs[0]["exit_code"] == 1
        assert logs[0]["stderr"] == "boom"

    async def test_dlq(self, client: AsyncClient, populated):
        response = await client.get("/api/dlq")

        assert response.status_code == 200
        records = response.json()
        assert len(records) == 1
        assert records[0]["id"] == "d"
        assert records[0]["reason"] == "exit 1"
        assert records[0]["attempts"] == 3


class TestDashboardPages:
    """The HTML pages render and escape job data."""

    async def test_index(self, client: AsyncClient, service: QueueService):
        await service.enqueue({"command": "true"})

        response = await client.get("/")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/html")
        assert "PENDING" in response.text
        assert "/dlq" in response.text

    async def test_jobs_page_escapes_commands(self, client: AsyncClient, service: QueueService):
        await service.enqueue({"id": "x", "command": "echo '<script>'"})

        response = await client.get("/jobs")

        assert response.status_code == 200
        assert "<script>" not in response.text
        assert "&lt;script&gt;" in response.text

    async def test_dlq_page_empty(self, client: AsyncClient):
        response = await client.get("/dlq")

        assert response.status_code == 200
        assert "DLQ empty" in response.text


class TestHealthEndpoints:
    """Health and metrics endpoints."""

    async def test_health_check(self, client: AsyncClient):
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "healthy"
        assert "version" in data

    async def test_readiness_check(self, client: AsyncClient):
        response = await client.get("/ready")

        assert response.status_code == 200
        assert response.json() == {"ready": True}

    async def test_liveness_check(self, client: AsyncClient):
        response = await client.get("/live")

        assert response.status_code == 200
        assert response.json() == {"alive": True}

    async def test_metrics(self, client: AsyncClient, service: QueueService):
        await service.enqueue({"command": "true"})
        await client.get("/api/summary")

        response = await client.get("/metrics")

        assert response.status_code == 200
        assert "queuectl_jobs_enqueued_total" in response.text
        assert 'queuectl_queue_depth{state="pending"}' in response.text
