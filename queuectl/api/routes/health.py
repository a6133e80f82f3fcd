"""
Health check routes.
"""

import logging

from fastapi import APIRouter
from fastapi.responses import Response
from sqlalchemy import text

from queuectl import __version__
from queuectl.api.dependencies import DatabaseDep
from queuectl.db import Database
from queuectl.observability.metrics import get_metrics
from queuectl.types.api import HealthResponse
from queuectl.utils import utc_now

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])


async def _ping(database: Database) -> bool:
    try:
        async with database.session() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Database health check failed: {e}")
        return False
    return True


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    description="Check the health of the dashboard and database connection.",
)
async def health_check(database: DatabaseDep) -> HealthResponse:
    """
    Perform a health check.

    Checks database connectivity and returns service status.

    Args:
        database: The store handle.

    Returns:
        HealthResponse with service status.
    """
    db_status = "healthy" if await _ping(database) else "unhealthy"

    return HealthResponse(
        status="healthy" if db_status == "healthy" else "degraded",
        version=__version__,
        database=db_status,
        timestamp=utc_now(),
    )


@router.get(
    "/ready",
    summary="Readiness check",
    description="Check if the service is ready to receive traffic.",
)
async def readiness_check(database: DatabaseDep) -> dict:
    """Readiness probe endpoint."""
    return {"ready": await _ping(database)}


@router.get(
    "/live",
    summary="Liveness check",
    description="Check if the service is alive.",
)
async def liveness_check() -> dict:
    return {"alive": True}


@router.get(
    "/metrics",
    summary="Prometheus metrics",
    description="Expose Prometheus metrics.",
)
async def metrics() -> Response:
    """
    Expose Prometheus metrics.

    Returns:
        Prometheus-formatted metrics.
    """
    metrics_collector = get_metrics()
    return Response(
        content=metrics_collector.get_metrics(),
        media_type=metrics_collector.get_content_type(),
    )
