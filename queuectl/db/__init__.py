"""
Database module.
Contains the store handle, models, and repository implementations.
"""

from queuectl.db.connection import Database, create_engine_for
from queuectl.db.models import Base, ConfigEntry, DeadLetter, ExecutionLog, Job
from queuectl.db.repository import ConfigRepository, JobRepository

__all__ = [
    "Database",
    "create_engine_for",
    "Base",
    "Job",
    "DeadLetter",
    "ExecutionLog",
    "ConfigEntry",
    "JobRepository",
    "ConfigRepository",
]
