"""
Similarity Cache - last computed originality statistics per user.

An entry is valid while ``valid_until`` is in the future. Content writers
never touch the cache directly; they publish ``ContentChanged`` and this
module's subscriber expires the user's entry in the same transaction.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database.models import SimilarityCacheEntry
from ..database.upsert import upsert
from .event_service import ContentChanged, event_service

logger = logging.getLogger("soulscore.similarity_cache_service")


class SimilarityCacheService:

    async def get(self, session: AsyncSession, user_id: str) -> Optional[SimilarityCacheEntry]:
        return await session.get(SimilarityCacheEntry, user_id, populate_existing=True)

    @staticmethod
    def is_valid(entry: Optional[SimilarityCacheEntry], now: Optional[datetime] = None) -> bool:
        if entry is None:
            return False
        return entry.valid_until > (now or datetime.utcnow())

    async def store(
        self,
        session: AsyncSession,
        user_id: str,
        originality_score: int,
        avg_similarity: float,
        min_similarity: float,
        max_similarity: float,
        content_count: int,
        population_sample_size: int,
        now: Optional[datetime] = None,
    ) -> None:
        """Upsert the user's entry, valid for the configured number of days. Caller commits."""
        now = now or datetime.utcnow()
        await upsert(
            session,
            SimilarityCacheEntry,
            {
                "user_id": user_id,
                "originality_score": originality_score,
                "avg_similarity": avg_similarity,
                "min_similarity": min_similarity,
                "max_similarity": max_similarity,
                "content_count": content_count,
                "population_sample_size": population_sample_size,
                "calculated_at": now,
                "valid_until": now + timedelta(days=settings.originality_cache_days),
                "updated_at": now,
            },
            index_elements=["user_id"],
        )

    async def invalidate(
        self,
        session: AsyncSession,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Expire the user's entry (valid_until = now). Caller commits.

        Returns:
            True if an entry existed
        """
        now = now or datetime.utcnow()
        result = await session.execute(
            update(SimilarityCacheEntry)
            .where(SimilarityCacheEntry.user_id == user_id)
            .values(valid_until=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount:
            logger.info(f"Invalidated similarity cache for user {user_id}")
        return bool(result.rowcount)


# Singleton instance
similarity_cache_service = SimilarityCacheService()


@event_service.subscribe(ContentChanged.EVENT_NAME)
async def invalidate_on_content_changed(session: AsyncSession, event: ContentChanged) -> None:
    await similarity_cache_service.invalidate(session, event.user_id, now=event.occurred_at)
