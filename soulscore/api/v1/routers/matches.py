# soulscore/api/v1/routers/matches.py
"""Weekly matches API Router."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ....database.base import get_db
from ....services.match_ranker import match_ranker, week_start_for
from ..models import WeeklyMatchesResponse, WeeklyMatchResponse

router = APIRouter(prefix="/matches", tags=["matches"])


@router.get("/{user_id}", response_model=WeeklyMatchesResponse)
async def get_weekly_matches(
    user_id: str,
    week_start: Optional[date] = Query(None, description="Week start (YYYY-MM-DD); defaults to the current week"),
    session: AsyncSession = Depends(get_db),
) -> WeeklyMatchesResponse:
    """A user's ranked matches for a week."""
    week_start = week_start or week_start_for(date.today())
    matches = await match_ranker.get_weekly_matches(session, user_id, week_start)
    if not matches:
        raise HTTPException(
            status_code=404,
            detail=f"Weekly matches not yet available for user {user_id} (week of {week_start.isoformat()})",
        )
    return WeeklyMatchesResponse(
        user_id=user_id,
        week_start_date=week_start,
        matches=[WeeklyMatchResponse.model_validate(m) for m in matches],
    )
