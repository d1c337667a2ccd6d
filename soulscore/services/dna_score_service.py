"""
DNA composite score.

Blends five component scores (0-100 each) into one weighted score and a
rarity tier:

    trait uniqueness      35%   min(100, approved insights x 5)
    profile completeness  25%   min(100, posts x 3 + approved insights x 2)
    behavior              20%   behavioral uniqueness score
    content               15%   originality score, else min(100, posts x 2)
    cultural               5%   50
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import ContentInsight, ContentItem
from ..utils.scoring_math import round_half_up
from .behavioral_analyzer import BehavioralUniquenessResult, behavioral_analyzer
from .score_service import score_service

logger = logging.getLogger("soulscore.dna_score_service")

WEIGHTS = {
    "trait_uniqueness": 0.35,
    "profile_completeness": 0.25,
    "behavior": 0.20,
    "content": 0.15,
    "cultural": 0.05,
}

CULTURAL_SCORE = 50


def get_rarity_tier(score: int) -> str:
    if score >= 95:
        return "Legendary"
    if score >= 85:
        return "Ultra Rare"
    if score >= 70:
        return "Rare"
    if score >= 50:
        return "Uncommon"
    return "Common"


@dataclass
class DnaScoreResult:
    score: int
    rarity_tier: str
    trait_uniqueness_score: int
    profile_completeness_score: int
    behavior_score: int
    content_score: int
    cultural_score: int
    approved_insights_count: int
    post_count: int


def compose_dna_score(
    approved_insights: int,
    post_count: int,
    behavior_score: int,
    originality_score: Optional[int] = None,
) -> DnaScoreResult:
    trait = min(100, approved_insights * 5)
    completeness = min(100, post_count * 3 + approved_insights * 2)
    content = originality_score if originality_score is not None else min(100, post_count * 2)

    total = round_half_up(
        trait * WEIGHTS["trait_uniqueness"]
        + completeness * WEIGHTS["profile_completeness"]
        + behavior_score * WEIGHTS["behavior"]
        + content * WEIGHTS["content"]
        + CULTURAL_SCORE * WEIGHTS["cultural"]
    )

    return DnaScoreResult(
        score=total,
        rarity_tier=get_rarity_tier(total),
        trait_uniqueness_score=trait,
        profile_completeness_score=completeness,
        behavior_score=behavior_score,
        content_score=content,
        cultural_score=CULTURAL_SCORE,
        approved_insights_count=approved_insights,
        post_count=post_count,
    )


class DnaScoreService:

    async def count_approved_insights(self, session: AsyncSession, user_id: str) -> int:
        result = await session.execute(
            select(func.count(ContentInsight.id)).where(
                ContentInsight.user_id == user_id,
                ContentInsight.status == "approved",
            )
        )
        return result.scalar_one()

    async def count_posts(self, session: AsyncSession, user_id: str) -> int:
        result = await session.execute(
            select(func.count(ContentItem.id)).where(
                ContentItem.user_id == user_id,
                ContentItem.deleted_at.is_(None),
            )
        )
        return result.scalar_one()

    async def recalculate(
        self,
        session: AsyncSession,
        user_id: str,
        days_active: int,
        now: Optional[datetime] = None,
    ) -> DnaScoreResult:
        """
        Rescore behavioral uniqueness, then recompose and persist the DNA score.

        The caller commits.
        """
        now = now or datetime.utcnow()
        behavioral: BehavioralUniquenessResult = await behavioral_analyzer.score(
            session, user_id, days_active, now=now
        )

        user_score = await score_service.get_user_score(session, user_id)
        originality = user_score.originality_score if user_score else None

        result = compose_dna_score(
            approved_insights=await self.count_approved_insights(session, user_id),
            post_count=await self.count_posts(session, user_id),
            behavior_score=behavioral.score,
            originality_score=originality,
        )

        await score_service.save_scores(
            session,
            user_id,
            now=now,
            dna_score=result.score,
            rarity_tier=result.rarity_tier,
            trait_uniqueness_score=result.trait_uniqueness_score,
            profile_completeness_score=result.profile_completeness_score,
            behavior_score=result.behavior_score,
            content_score=result.content_score,
            cultural_score=result.cultural_score,
            approved_insights_count=result.approved_insights_count,
            dna_calculated_at=now,
        )

        logger.info(f"DNA score for {user_id}: {result.score} ({result.rarity_tier})")
        return result


# Singleton instance
dna_score_service = DnaScoreService()
