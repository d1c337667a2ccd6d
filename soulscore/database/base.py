# soulscore/database/base.py
"""
SQLAlchemy base class and session dependency.

Provides the declarative base for all models and the FastAPI session
dependency.
"""

from typing import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import declarative_base

# Declarative base for all models
Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding a session from the shared database service.

    The session commits when the route returns and rolls back if it raises.
    """
    from ..services.database_service import database_service

    async with database_service.get_session() as session:
        yield session
