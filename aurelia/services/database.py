"""
Database service.

Owns the async SQLAlchemy engine and session factory. Services open their own
short-lived sessions through ``database.session()``; tables are created on
connect so a fresh PostgreSQL (or SQLite in tests) is usable immediately.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from aurelia.core.config import settings
from aurelia.models import Base

logger = logging.getLogger("aurelia.database")


class DatabaseUnavailableError(RuntimeError):
    """Raised when a service needs the database but it is not connected."""


class Database:
    """
    Async database service.

    Features:
    - Async connection pooling (PostgreSQL) or a shared in-memory connection (SQLite)
    - Automatic table creation
    - Graceful degradation if database unavailable
    """

    def __init__(self):
        self.engine = None
        self.session_factory: async_sessionmaker[AsyncSession] | None = None
        self._connected = False

    @property
    def is_available(self) -> bool:
        """Check if database is configured and connected."""
        return self._connected and self.engine is not None

    async def connect(self, url: str | None = None) -> bool:
        """
        Establish connection and create tables if needed.

        Args:
            url: Override for ``settings.DATABASE_URL``.

        Returns:
            True if connection successful, False otherwise.
        """
        url = url or settings.DATABASE_URL
        if not url:
            logger.warning("DATABASE_URL not configured - persistence disabled")
            return False

        try:
            if url.startswith("sqlite"):
                self.engine = create_async_engine(
                    url,
                    echo=False,
                    connect_args={"check_same_thread": False},
                    poolclass=StaticPool,
                )
            else:
                self.engine = create_async_engine(
                    url,
                    echo=False,
                    pool_size=5,
                    max_overflow=10,
                    pool_pre_ping=True,
                )

            self.session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

            async with self.engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)

            self._connected = True
            logger.info("Connected to database: %s", settings.sanitize_url(url))
            return True
        except Exception as e:
            logger.error("Failed to connect to database: %s", e)
            self.engine = None
            self.session_factory = None
            self._connected = False
            return False

    async def close(self) -> None:
        """Close database connection pool."""
        if self.engine:
            await self.engine.dispose()
            self._connected = False
            self.engine = None
            self.session_factory = None
            logger.info("Database connection closed")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Open a session for one unit of work.

        Raises:
            DatabaseUnavailableError: If the database is not connected.
        """
        if not self.is_available or self.session_factory is None:
            raise DatabaseUnavailableError("Database not connected")
        async with self.session_factory() as session:
            yield session

    async def ping(self) -> bool:
        """Run a trivial query; used by the health endpoint."""
        if not self.is_available:
            return False
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error("Database ping failed: %s", e)
            return False


# Global instance
database = Database()
