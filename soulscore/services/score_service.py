"""
Score Service - read/write access to the committed per-user scores.

Analyzers write through ``save_scores`` (partial upsert of the user's row);
read APIs only ever read what has been committed and never trigger
computation.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import UserScore
from ..database.upsert import upsert

logger = logging.getLogger("soulscore.score_service")


class ScoreService:

    async def save_scores(
        self,
        session: AsyncSession,
        user_id: str,
        now: Optional[datetime] = None,
        **fields: Any,
    ) -> None:
        """
        Write the given score fields for a user, leaving other fields untouched.

        The caller owns the transaction.
        """
        values: Dict[str, Any] = dict(fields)
        values["user_id"] = user_id
        values["updated_at"] = now or datetime.utcnow()
        await upsert(session, UserScore, values, index_elements=["user_id"])

    async def get_user_score(self, session: AsyncSession, user_id: str) -> Optional[UserScore]:
        return await session.get(UserScore, user_id, populate_existing=True)

    async def get_originality_scores(self, session: AsyncSession) -> Dict[str, int]:
        """All committed originality scores keyed by user."""
        result = await session.execute(
            select(UserScore.user_id, UserScore.originality_score).where(
                UserScore.originality_score.isnot(None)
            )
        )
        return {user_id: score for user_id, score in result.all()}


# Singleton instance
score_service = ScoreService()
