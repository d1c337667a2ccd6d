# soulscore/services/database_service.py
"""
Async engine and session management for the scoring database.

SQLite (``sqlite+aiosqlite``) is used for development and tests,
PostgreSQL (``postgresql+asyncpg``) in production. Workers, the batch
command and the API share one engine per process through the
``database_service`` singleton.

Usage:
    from soulscore.services.database_service import database_service

    async with database_service.get_session() as session:
        job = await job_queue_service.claim_next(session, worker_id)
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncGenerator, Dict, Optional

from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ..config import settings
from ..database.base import Base

logger = logging.getLogger("soulscore.database")

# Seconds a SQLite writer waits for the database lock. Several workers commit
# concurrently, and SQLite allows one writer at a time.
SQLITE_BUSY_TIMEOUT = 30


def engine_options(database_url: str) -> Dict[str, Any]:
    """Keyword arguments for create_async_engine for the given backend."""
    options: Dict[str, Any] = {"pool_pre_ping": True, "echo": settings.debug}
    if database_url.startswith("sqlite"):
        options["connect_args"] = {"check_same_thread": False, "timeout": SQLITE_BUSY_TIMEOUT}
    else:
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_recycle=settings.db_pool_recycle,
        )
    return options


def _ensure_sqlite_dir(database_url: str) -> None:
    if ":///" not in database_url:
        return
    path = database_url.split(":///", 1)[1].split("?")[0]
    if path and path != ":memory:":
        Path(path).parent.mkdir(parents=True, exist_ok=True)


class DatabaseService:
    """Owns the engine and session factory for one database URL."""

    def __init__(self, database_url: Optional[str] = None):
        self.database_url = database_url or settings.database_url
        self.dialect = "sqlite" if self.database_url.startswith("sqlite") else "postgresql"

        if self.dialect == "sqlite":
            _ensure_sqlite_dir(self.database_url)

        self._engine: AsyncEngine = create_async_engine(
            self.database_url, **engine_options(self.database_url)
        )
        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        logger.info(f"Database engine ready ({self.dialect}: {self.database_url.split('@')[-1].split('?')[0]})")

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session that commits when the block exits cleanly and rolls back otherwise."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init_db(self) -> None:
        """Create missing tables. Existing tables are left alone."""
        from ..database import models  # noqa: F401  (registers tables on Base)

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info(f"Schema ready ({len(Base.metadata.tables)} tables)")

    async def drop_db(self) -> None:
        """Drop every table. Only tests and local resets call this."""
        from ..database import models  # noqa: F401

        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        logger.warning("Dropped all tables")

    async def health_check(self) -> Dict[str, Any]:
        """
        Connectivity check for the health endpoint.

        Returns:
            Dict with connected flag, database type, and either the
            number of queued jobs or the connection error
        """
        from ..database.models import Job

        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
                job_rows = (await session.execute(select(func.count(Job.id)))).scalar_one()
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"connected": False, "database_type": self.dialect, "error": str(e)}

        return {"connected": True, "database_type": self.dialect, "job_rows": job_rows}

    async def close(self) -> None:
        """Release pooled connections. The engine reconnects on next use."""
        await self._engine.dispose()
        logger.info("Database connections closed")


# Global service instance
database_service = DatabaseService()
