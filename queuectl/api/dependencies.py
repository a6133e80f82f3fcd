"""
FastAPI dependencies.
"""

from typing import Annotated

from fastapi import Depends, Request

from queuectl.db import Database
from queuectl.queue import QueueService


def get_database(request: Request) -> Database:
    """Get the store handle the application was created with."""
    return request.app.state.database


def get_queue_service(database: Annotated[Database, Depends(get_database)]) -> QueueService:
    return QueueService(database)


DatabaseDep = Annotated[Database, Depends(get_database)]
QueueServiceDep = Annotated[QueueService, Depends(get_queue_service)]
