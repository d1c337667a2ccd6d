# soulscore/api/v1/routers/scores.py
"""
Scores API Router.

Read-only access to committed per-user scores. These endpoints never
trigger computation; a score that has not been calculated yet is a 404.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ....database.base import get_db
from ....services.originality_service import get_originality_label
from ....services.score_service import score_service
from ..models import DnaScoreResponse, OriginalityResponse, UniquenessResponse

router = APIRouter(prefix="/scores", tags=["scores"])


def _not_available(what: str, user_id: str) -> HTTPException:
    return HTTPException(status_code=404, detail=f"{what} not yet available for user {user_id}")


@router.get("/{user_id}/uniqueness", response_model=UniquenessResponse)
async def get_uniqueness(user_id: str, session: AsyncSession = Depends(get_db)) -> UniquenessResponse:
    """Behavioral uniqueness score and explanation."""
    scores = await score_service.get_user_score(session, user_id)
    if not scores or scores.uniqueness_score is None:
        raise _not_available("Uniqueness score", user_id)
    return UniquenessResponse(
        user_id=user_id,
        score=scores.uniqueness_score,
        explanation=scores.uniqueness_explanation,
        calculated_at=scores.uniqueness_calculated_at,
    )


@router.get("/{user_id}/originality", response_model=OriginalityResponse)
async def get_originality(user_id: str, session: AsyncSession = Depends(get_db)) -> OriginalityResponse:
    """Content originality score, population percentile and label."""
    scores = await score_service.get_user_score(session, user_id)
    if not scores or scores.originality_score is None:
        raise _not_available("Originality score", user_id)
    return OriginalityResponse(
        user_id=user_id,
        score=scores.originality_score,
        percentile=scores.originality_percentile,
        label=get_originality_label(scores.originality_score),
        last_calculated_at=scores.originality_calculated_at,
    )


@router.get("/{user_id}/dna", response_model=DnaScoreResponse)
async def get_dna(user_id: str, session: AsyncSession = Depends(get_db)) -> DnaScoreResponse:
    """Composite DNA score, rarity tier and component scores."""
    scores = await score_service.get_user_score(session, user_id)
    if not scores or scores.dna_score is None:
        raise _not_available("DNA score", user_id)
    return DnaScoreResponse(
        user_id=user_id,
        score=scores.dna_score,
        rarity_tier=scores.rarity_tier,
        trait_uniqueness_score=scores.trait_uniqueness_score,
        profile_completeness_score=scores.profile_completeness_score,
        behavior_score=scores.behavior_score,
        content_score=scores.content_score,
        cultural_score=scores.cultural_score,
        approved_insights_count=scores.approved_insights_count,
        calculated_at=scores.dna_calculated_at,
    )
