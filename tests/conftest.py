"""
Pytest configuration and shared fixtures.
"""

from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from queuectl.api.main import create_app
from queuectl.config import Settings
from queuectl.db import Database
from queuectl.db.repository import ConfigRepository, JobRepository
from queuectl.queue import QueueService


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """A fresh SQLite database file per test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}"


@pytest.fixture
def test_settings(database_url: str, tmp_path: Path) -> Settings:
    """Create test settings."""
    return Settings(
        database_url=database_url,
        pid_file=str(tmp_path / "workers.json"),
        log_level="INFO",
        log_format="console",
        worker_poll_interval_seconds=0.01,
    )


@pytest_asyncio.fixture
async def database(test_settings: Settings) -> AsyncGenerator[Database]:
    """An initialized store handle."""
    database = Database(settings=test_settings)
    await database.init()

    yield database

    await database.dispose()


@pytest_asyncio.fixture
async def db_session(database: Database) -> AsyncGenerator[AsyncSession]:
    """A session on the test store. Tests commit explicitly."""
    async with database._get_session_factory()() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def repo(db_session: AsyncSession) -> JobRepository:
    return JobRepository(db_session)


@pytest_asyncio.fixture
async def config_repo(db_session: AsyncSession) -> ConfigRepository:
    return ConfigRepository(db_session)


@pytest.fixture
def service(database: Database) -> QueueService:
    return QueueService(database)


@pytest.fixture
def app(database: Database) -> FastAPI:
    """Create the dashboard app bound to the test store."""
    return create_app(database)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def sample_job_payload() -> dict[str, Any]:
    """Create a sample job payload."""
    return {"id": "job1", "command": "echo hello", "max_retries": 3, "priority": 0}
