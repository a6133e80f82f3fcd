"""
Dashboard application entry point.
"""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from queuectl import __version__
from queuectl.api.routes import dashboard_router, health_router
from queuectl.config import get_settings
from queuectl.db import Database
from queuectl.observability.logging import setup_logging
from queuectl.observability.metrics import setup_metrics
from queuectl.observability.tracing import instrument_fastapi, instrument_sqlalchemy, setup_tracing

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown events.
    """
    database: Database = app.state.database

    # Startup
    setup_logging()
    setup_metrics()
    setup_tracing()
    await database.init()
    instrument_sqlalchemy(database.engine.sync_engine)

    logger.info("Dashboard started", extra={"database": database.url})

    yield

    # Shutdown
    await database.dispose()
    logger.info("Dashboard shutdown")


def create_app(database: Database | None = None) -> FastAPI:
    """
    Create and configure the dashboard application.

    Args:
        database: Store handle to read from. Defaults to ``Settings.database_url``.

    Returns:
        FastAPI: The configured application instance.
    """
    app = FastAPI(
        title="queuectl dashboard",
        description="Read-only view of the job queue and dead letter queue",
        version=__version__,
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url=None,
    )
    app.state.database = database or Database()

    # Include routers
    app.include_router(health_router)
    app.include_router(dashboard_router)

    # Instrument with OpenTelemetry
    instrument_fastapi(app)

    return app


def run(host: str | None = None, port: int | None = None, database_url: str | None = None) -> None:
    """Run the dashboard server."""
    settings = get_settings()
    app = create_app(Database(database_url) if database_url else None)

    uvicorn.run(
        app,
        host=host or settings.dashboard_host,
        port=port or settings.dashboard_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
