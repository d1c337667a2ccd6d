"""
Content Originality Engine.

Scores how different a user's content is from everyone else's by comparing
embeddings: cosine similarity between the user's most recent embeddings and a
sample of the population's, averaged over every pair. Low average similarity
means high originality.

Results with enough data are cached per user (see similarity_cache_service);
fallback results for users with too little content, or when the population
sample is too small, are returned but never cached.

Usage:
    from soulscore.services.originality_service import originality_service

    result = await originality_service.compute(session, user_id)
    label = get_originality_label(result.score)
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import numpy as np
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database.models import ContentItem, UserScore
from ..utils.scoring_math import round_half_up
from .score_service import score_service
from .similarity_cache_service import similarity_cache_service

logger = logging.getLogger("soulscore.originality_service")


@dataclass
class OriginalityResult:
    score: int
    content_count: int
    population_sample_size: int
    avg_similarity: float = 0.0
    min_similarity: float = 0.0
    max_similarity: float = 0.0
    from_cache: bool = False
    is_fallback: bool = False


def get_originality_label(score: int) -> str:
    if score >= 90:
        return "Ultra Original"
    if score >= 70:
        return "Highly Original"
    if score >= 50:
        return "Moderately Original"
    if score >= 30:
        return "Somewhat Common"
    return "Very Common"


def cosine_similarity_matrix(
    user_embeddings: Sequence[Sequence[float]],
    population_embeddings: Sequence[Sequence[float]],
) -> np.ndarray:
    """
    Pairwise cosine similarities (users x population).

    A pair where either vector has zero norm has similarity 0.

    Raises:
        ValueError: If the vectors do not all have the same length
    """
    user = np.asarray(user_embeddings, dtype=float)
    population = np.asarray(population_embeddings, dtype=float)
    if user.ndim != 2 or population.ndim != 2 or user.shape[1] != population.shape[1]:
        raise ValueError("Vectors must have same length")

    dots = user @ population.T
    denominators = np.outer(np.linalg.norm(user, axis=1), np.linalg.norm(population, axis=1))
    return np.divide(dots, denominators, out=np.zeros_like(dots), where=denominators != 0)


def originality_from_similarity(avg_similarity: float) -> int:
    """round_half_up((1 - avg) * 100) clamped to [0, 100]"""
    return max(0, min(100, round_half_up((1 - avg_similarity) * 100)))


def percentile_of(score: float, scores: Sequence[float]) -> float:
    """
    Share of the other scores strictly below this one, as a percentage.

    ``scores`` includes the score itself; with one or no scores the
    percentile is 0.
    """
    n = len(scores)
    if n <= 1:
        return 0.0
    below = sum(1 for s in scores if s < score)
    return round_half_up(below / (n - 1) * 100, 2)


class OriginalityService:
    """Computes, caches and persists content originality scores."""

    async def _user_embeddings(self, session: AsyncSession, user_id: str) -> List[List[float]]:
        result = await session.execute(
            select(ContentItem.embedding)
            .where(
                ContentItem.user_id == user_id,
                ContentItem.embedding.isnot(None),
                ContentItem.deleted_at.is_(None),
            )
            .order_by(ContentItem.created_at.desc(), ContentItem.id.desc())
            .limit(settings.originality_max_user_embeddings)
        )
        return [embedding for embedding in result.scalars().all() if embedding]

    async def _population_embeddings(self, session: AsyncSession, user_id: str) -> List[List[float]]:
        result = await session.execute(
            select(ContentItem.embedding)
            .where(
                ContentItem.user_id != user_id,
                ContentItem.embedding.isnot(None),
                ContentItem.deleted_at.is_(None),
            )
            .order_by(ContentItem.created_at.desc(), ContentItem.id.desc())
            .limit(settings.originality_population_sample_size)
        )
        return [embedding for embedding in result.scalars().all() if embedding]

    async def content_changed_since(self, session: AsyncSession, user_id: str, since: datetime) -> bool:
        """Whether the user's content set changed (created, embedded or deleted) after ``since``."""
        result = await session.execute(
            select(ContentItem.id)
            .where(
                ContentItem.user_id == user_id,
                or_(
                    ContentItem.created_at > since,
                    ContentItem.embedded_at > since,
                    ContentItem.deleted_at > since,
                ),
            )
            .limit(1)
        )
        return result.first() is not None

    async def compute(
        self,
        session: AsyncSession,
        user_id: str,
        now: Optional[datetime] = None,
        use_cache: bool = True,
    ) -> OriginalityResult:
        """
        Compute a user's originality.

        Steps:
            1. Return the cached entry if valid and the content set is unchanged
            2. Fewer than the minimum embedded items: default score (not cached)
            3. Population sample too small: default score (not cached)
            4. Average pairwise cosine similarity → score; cache it

        The score is persisted on the user's score row. The caller commits.

        Args:
            session: Database session
            user_id: User to score
            now: Calculation time (defaults to utcnow)
            use_cache: Consult the similarity cache first

        Returns:
            OriginalityResult
        """
        now = now or datetime.utcnow()

        if use_cache:
            entry = await similarity_cache_service.get(session, user_id)
            if similarity_cache_service.is_valid(entry, now) and not await self.content_changed_since(
                session, user_id, entry.calculated_at
            ):
                logger.debug(f"Originality cache hit for user {user_id}")
                result = OriginalityResult(
                    score=entry.originality_score,
                    content_count=entry.content_count,
                    population_sample_size=entry.population_sample_size,
                    avg_similarity=entry.avg_similarity,
                    min_similarity=entry.min_similarity,
                    max_similarity=entry.max_similarity,
                    from_cache=True,
                )
                await self._save_score(session, user_id, result, now)
                return result

        user_embeddings = await self._user_embeddings(session, user_id)
        content_count = len(user_embeddings)
        if content_count < settings.originality_min_content:
            logger.info(
                f"User {user_id} has {content_count} embedded items "
                f"(need {settings.originality_min_content}); using default originality"
            )
            result = OriginalityResult(
                score=settings.originality_default_score,
                content_count=content_count,
                population_sample_size=0,
                is_fallback=True,
            )
            await self._save_score(session, user_id, result, now)
            return result

        population_embeddings = await self._population_embeddings(session, user_id)
        population_size = len(population_embeddings)
        if population_size < settings.originality_min_population:
            logger.info(
                f"Population sample of {population_size} is below "
                f"{settings.originality_min_population}; using default originality for {user_id}"
            )
            result = OriginalityResult(
                score=settings.originality_default_score,
                content_count=content_count,
                population_sample_size=population_size,
                is_fallback=True,
            )
            await self._save_score(session, user_id, result, now)
            return result

        similarities = cosine_similarity_matrix(user_embeddings, population_embeddings)
        avg_similarity = float(similarities.mean())
        result = OriginalityResult(
            score=originality_from_similarity(avg_similarity),
            content_count=content_count,
            population_sample_size=population_size,
            avg_similarity=round(avg_similarity, 4),
            min_similarity=round(float(similarities.min()), 4),
            max_similarity=round(float(similarities.max()), 4),
        )

        await similarity_cache_service.store(
            session,
            user_id,
            originality_score=result.score,
            avg_similarity=result.avg_similarity,
            min_similarity=result.min_similarity,
            max_similarity=result.max_similarity,
            content_count=content_count,
            population_sample_size=population_size,
            now=now,
        )
        await self._save_score(session, user_id, result, now)

        logger.info(
            f"Originality for {user_id}: {result.score} "
            f"(avg similarity {result.avg_similarity} over {content_count}x{population_size} pairs)"
        )
        return result

    async def _save_score(
        self,
        session: AsyncSession,
        user_id: str,
        result: OriginalityResult,
        now: datetime,
    ) -> None:
        await score_service.save_scores(
            session,
            user_id,
            now=now,
            originality_score=result.score,
            originality_calculated_at=now,
        )

    async def refresh_percentiles(self, session: AsyncSession) -> int:
        """
        Recompute the originality percentile of every scored user.

        Returns:
            Number of users updated (caller commits)
        """
        scores: Dict[str, int] = await score_service.get_originality_scores(session)
        values = list(scores.values())

        for user_id, score in scores.items():
            await session.execute(
                update(UserScore)
                .where(UserScore.user_id == user_id)
                .values(originality_percentile=percentile_of(score, values))
                .execution_options(synchronize_session=False)
            )

        logger.info(f"Refreshed originality percentiles for {len(scores)} users")
        return len(scores)


# Singleton instance
originality_service = OriginalityService()
