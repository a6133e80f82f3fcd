"""
Database connection management.

``Database`` is an explicitly constructed store handle: it owns the async
SQLAlchemy engine and session factory and is passed to every component that
needs the store. There is no module-level connection.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy import event
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from queuectl.config import Settings, get_settings
from queuectl.constants import DEFAULT_CONFIG
from queuectl.db.models import Base, ConfigEntry

logger = logging.getLogger(__name__)


def _apply_sqlite_pragmas(dbapi_connection: Any, busy_timeout_ms: int) -> None:
    cursor = dbapi_connection.cursor()
    try:
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
    finally:
        cursor.close()


def create_engine_for(url: str, settings: Settings | None = None) -> AsyncEngine:
    """
    Create the async engine for a database URL.

    SQLite gets a busy timeout and WAL journaling so that concurrent worker
    processes serialize their writes instead of failing.

    Args:
        url: SQLAlchemy database URL.
        settings: Settings to read pool and timeout options from.

    Returns:
        AsyncEngine: The SQLAlchemy async engine instance.
    """
    settings = settings or get_settings()

    if url.startswith("sqlite"):
        busy_timeout_ms = settings.database_busy_timeout_ms
        engine = create_async_engine(
            url,
            connect_args={"timeout": max(1.0, busy_timeout_ms / 1000.0)},
            poolclass=NullPool,
            echo=settings.log_level == "DEBUG",
        )
        event.listen(
            engine.sync_engine,
            "connect",
            lambda dbapi_connection, _: _apply_sqlite_pragmas(
                dbapi_connection, busy_timeout_ms
            ),
        )
        return engine

    return create_async_engine(
        url,
        pool_size=settings.database_pool_size,
        max_overflow=settings.database_max_overflow,
        echo=settings.log_level == "DEBUG",
        pool_pre_ping=True,
    )


class Database:
    """
    Handle to the persistent job store.

    Usage:
        database = Database("sqlite+aiosqlite:///queue.db")
        await database.init()
        async with database.session() as session:
            ...
        await database.dispose()
    """

    def __init__(self, url: str | None = None, settings: Settings | None = None):
        """
        Initialize the handle. No connection is opened until first use.

        Args:
            url: Database URL. Defaults to ``Settings.database_url``.
            settings: Optional settings override.
        """
        self._settings = settings or get_settings()
        self.url = url or self._settings.database_url
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._initialized = False

    @property
    def engine(self) -> AsyncEngine:
        """Get or create the async database engine."""
        if self._engine is None:
            self._engine = create_engine_for(self.url, self._settings)
        return self._engine

    def _get_session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                bind=self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return self._session_factory

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    async def init(self) -> None:
        """
        Create the schema and seed config defaults.

        Safe to call repeatedly and from several processes: tables are
        created only when missing and seeding never overwrites a value an
        operator has already set.
        """
        if self._initialized:
            return

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

            insert = pg_insert if self.dialect_name == "postgresql" else sqlite_insert
            for key, value in DEFAULT_CONFIG.items():
                await conn.execute(
                    insert(ConfigEntry)
                    .values(key=key, value=value)
                    .on_conflict_do_nothing(index_elements=["key"])
                )

        self._initialized = True
        logger.info("Database initialized", extra={"url": self.url})

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """
        Open a session that commits on success and rolls back on error.

        Yields:
            AsyncSession: An async database session.
        """
        async with self._get_session_factory()() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def dispose(self) -> None:
        """Close all pooled connections."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database connection closed")
