"""
Weekly Match Ranker.

Turns externally scored candidates into a user's ranked match list for a
week: self-matches are dropped, duplicates collapse to their best score, the
rest are sorted by score (match_user_id breaks ties) and ranked densely from
1. Re-ranking a week replaces that week's rows.
"""

import logging
from datetime import date, datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Union
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database.models import WeeklyMatch
from ..jobs.payloads import MatchCandidate

logger = logging.getLogger("soulscore.match_ranker")


def week_start_for(day: Union[date, datetime]) -> date:
    """Sunday on or before the given day."""
    if isinstance(day, datetime):
        day = day.date()
    return day - timedelta(days=(day.weekday() + 1) % 7)


def rank_candidates(
    user_id: str,
    candidates: Iterable[Union[MatchCandidate, Dict[str, Any]]],
    top_n: Optional[int] = None,
) -> List[MatchCandidate]:
    """
    Order candidates for a user's weekly list.

    Args:
        user_id: User the list is for (self-matches are dropped)
        candidates: Scored candidates, possibly with duplicates
        top_n: Keep only the best N (None keeps all)

    Returns:
        Candidates in rank order (rank = index + 1)
    """
    best: Dict[str, MatchCandidate] = {}
    for candidate in candidates:
        if not isinstance(candidate, MatchCandidate):
            candidate = MatchCandidate(**candidate)
        if candidate.match_user_id == user_id:
            continue
        current = best.get(candidate.match_user_id)
        if current is None or candidate.score > current.score:
            best[candidate.match_user_id] = candidate

    ranked = sorted(best.values(), key=lambda c: (-c.score, c.match_user_id))
    if top_n is not None:
        ranked = ranked[:top_n]
    return ranked


class MatchRanker:

    async def rank_week(
        self,
        session: AsyncSession,
        user_id: str,
        week_start_date: date,
        candidates: Iterable[Union[MatchCandidate, Dict[str, Any]]],
        batch_run_id: Optional[UUID] = None,
        top_n: Optional[int] = None,
        keep_all: bool = False,
    ) -> List[WeeklyMatch]:
        """
        Replace the user's match rows for a week with a freshly ranked list.

        Delete and insert happen in the caller's transaction, so readers
        see either the old list or the new one.

        Args:
            session: Database session (caller commits)
            user_id: User the list is for
            week_start_date: Week the list belongs to
            candidates: Externally scored candidates
            batch_run_id: Batch run that produced the list
            top_n: Matches kept (defaults to settings.weekly_matches_top_n)
            keep_all: Keep every candidate regardless of top_n

        Returns:
            Inserted WeeklyMatch rows in rank order
        """
        if keep_all:
            top_n = None
        elif top_n is None:
            top_n = settings.weekly_matches_top_n

        ranked = rank_candidates(user_id, candidates, top_n=top_n)

        await session.execute(
            delete(WeeklyMatch).where(
                WeeklyMatch.user_id == user_id,
                WeeklyMatch.week_start_date == week_start_date,
            )
        )

        now = datetime.utcnow()
        rows = [
            WeeklyMatch(
                user_id=user_id,
                match_user_id=candidate.match_user_id,
                score=candidate.score,
                rank=rank,
                week_start_date=week_start_date,
                compatibility_factors=candidate.compatibility_factors,
                batch_run_id=batch_run_id,
                created_at=now,
            )
            for rank, candidate in enumerate(ranked, start=1)
        ]
        session.add_all(rows)
        await session.flush()

        logger.info(
            f"Ranked {len(rows)} weekly matches for user {user_id} "
            f"(week of {week_start_date.isoformat()})"
        )
        return rows

    async def get_weekly_matches(
        self,
        session: AsyncSession,
        user_id: str,
        week_start_date: date,
    ) -> List[WeeklyMatch]:
        """Committed matches for a user's week, ordered by rank."""
        result = await session.execute(
            select(WeeklyMatch)
            .where(
                WeeklyMatch.user_id == user_id,
                WeeklyMatch.week_start_date == week_start_date,
            )
            .order_by(WeeklyMatch.rank.asc())
        )
        return list(result.scalars().all())


# Singleton instance
match_ranker = MatchRanker()
