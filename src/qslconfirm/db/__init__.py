"""Database access for QSL Confirm.

One Database per process owns the async engine and the session factory.
Sessions never commit on their own: routers commit explicitly, so a failed
confirmation attempt still persists its log entry before the error response
(see qslconfirm.api.dependencies.keep_attempt_log).
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from qslconfirm.core.config import ConfigurationError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncEngine

    from qslconfirm.core.config import DatabaseSettings

logger = logging.getLogger(__name__)

# psycopg 3 drives both the async engine and Alembic's synchronous one
DRIVER_NAME = "postgresql+psycopg"
POSTGRES_BACKENDS = frozenset({"postgresql", "postgres"})


def async_driver_url(url: str) -> str:
    """Point a PostgreSQL URL at the psycopg driver, keeping credentials.

    Raises:
        ConfigurationError: If the URL is not a PostgreSQL URL.
    """
    parsed = make_url(url)
    if parsed.get_backend_name() not in POSTGRES_BACKENDS:
        raise ConfigurationError(
            f"Unsupported database backend: {parsed.get_backend_name()}",
            field="database.url",
        )
    return parsed.set(drivername=DRIVER_NAME).render_as_string(hide_password=False)


class Database:
    """Async engine plus session factory for the token database."""

    def __init__(self, settings: DatabaseSettings) -> None:
        self.url = async_driver_url(str(settings.url))
        self.engine: AsyncEngine = create_async_engine(
            self.url,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
            pool_pre_ping=True,
            echo=settings.echo,
        )
        self._sessions = async_sessionmaker(self.engine, expire_on_commit=False)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Open a session; closing it rolls back anything left uncommitted."""
        async with self._sessions() as session:
            yield session

    async def dispose(self) -> None:
        await self.engine.dispose()


_database: Database | None = None


def get_database() -> Database:
    """The process-wide Database, built from settings on first use."""
    global _database

    if _database is None:
        from qslconfirm.core.settings import get_settings

        settings = get_settings().database
        _database = Database(settings)
        logger.info(
            "Database engine created",
            extra={"pool_size": settings.pool_size, "max_overflow": settings.max_overflow},
        )
    return _database


@asynccontextmanager
async def get_async_session() -> AsyncIterator[AsyncSession]:
    async with get_database().session() as session:
        yield session


async def close_database() -> None:
    """Dispose of the engine at shutdown; the next use builds a new one."""
    global _database

    if _database is not None:
        await _database.dispose()
        _database = None
