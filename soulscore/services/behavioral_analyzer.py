"""
Behavioral Uniqueness Analyzer.

Scores how far a user's activity patterns sit from the population: one
z-score per behavioral dimension against the population statistics, the
mean absolute z-score scaled to 0-100, and human-readable labels for the
dimensions where the user is an outlier.

Every one of the ten dimensions has a label for each direction. Earlier
explanations labelled only seven dimensions, and used a single label for
voice usage and for weekend activity whatever the direction, so
explanation text for long-standing users can differ from what they saw
before.

Usage:
    from soulscore.services.behavioral_analyzer import behavioral_analyzer

    result = await behavioral_analyzer.score(session, user_id, days_active=21)
    result.score        # 0-100
    result.z_scores     # {"response_time": -2.4, ...}
    result.explanation  # "You exhibit 1 unique behavioral patterns: ..."
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database.models import BehavioralMetricsSnapshot
from ..utils.scoring_math import round_half_up
from .population_stats_service import PopulationStats, population_stats_service
from .score_service import score_service

logger = logging.getLogger("soulscore.behavioral_analyzer")

# dimension -> (snapshot metric, label when z > 0, label when z < 0)
DIMENSIONS: Dict[str, Tuple[str, str, str]] = {
    "response_time": ("avg_response_time_hours", "Thoughtful responder", "Lightning-fast responder"),
    "message_frequency": ("messages_per_match", "Highly conversational", "Selective communicator"),
    "message_depth": ("avg_message_length", "Deep conversationalist", "Concise communicator"),
    "emoji_usage": ("emoji_usage_rate", "Expressive emoji user", "Minimalist texter"),
    "voice_usage": ("voice_message_ratio", "Voice message enthusiast", "Text-first communicator"),
    "activity_intensity": ("profile_views_per_day", "Highly active browser", "Low-key browser"),
    "match_selectivity": ("match_acceptance_rate", "Open to connections", "Highly selective"),
    "weekend_activity": ("weekend_activity_ratio", "Weekend-focused user", "Weekday-focused user"),
    "profile_engagement": ("profile_completion_speed_days", "Patient profile builder", "Rapid profile builder"),
    "decision_speed": ("avg_swipe_time_seconds", "Deliberate decision maker", "Quick decision maker"),
}

NO_SNAPSHOT_EXPLANATION = "Behavioral patterns will emerge as you engage more with the platform."
TYPICAL_EXPLANATION = "Your behavioral patterns are typical but authentic."


@dataclass
class BehavioralUniquenessResult:
    score: int
    z_scores: Dict[str, float]
    explanation: str
    extreme_patterns: List[str] = field(default_factory=list)

    @property
    def uniqueness_score(self) -> int:
        return self.score


def empty_z_scores() -> Dict[str, float]:
    return {dimension: 0.0 for dimension in DIMENSIONS}


def z_score(value: Optional[float], mean: float, stddev: float) -> float:
    """Standard score; a missing value sits at the mean, a zero stddev is treated as 1."""
    if value is None:
        return 0.0
    return (value - mean) / (stddev or 1.0)


def calculate_z_scores(snapshot: BehavioralMetricsSnapshot, stats: PopulationStats) -> Dict[str, float]:
    return {
        dimension: z_score(
            getattr(snapshot, metric),
            stats.mean(metric),
            stats.stddev(metric),
        )
        for dimension, (metric, _, _) in DIMENSIONS.items()
    }


def uniqueness_from_z_scores(z_scores: Dict[str, float], scale: Optional[float] = None) -> int:
    """min(100, round_half_up(mean(|z|) * scale))"""
    scale = settings.behavior_uniqueness_scale if scale is None else scale
    if not z_scores:
        return 0
    avg_abs = sum(abs(z) for z in z_scores.values()) / len(z_scores)
    return min(100, round_half_up(avg_abs * scale))


def identify_extreme_patterns(z_scores: Dict[str, float], threshold: Optional[float] = None) -> List[str]:
    """Labels for every dimension with |z| above the threshold, in dimension order."""
    threshold = settings.behavior_extreme_z_threshold if threshold is None else threshold
    patterns = []
    for dimension, (_, positive, negative) in DIMENSIONS.items():
        z = z_scores.get(dimension, 0.0)
        if abs(z) > threshold:
            patterns.append(positive if z > 0 else negative)
    return patterns


def explain(patterns: List[str]) -> str:
    if not patterns:
        return TYPICAL_EXPLANATION
    return f"You exhibit {len(patterns)} unique behavioral patterns: {', '.join(patterns)}."


class BehavioralAnalyzer:
    """Computes and persists behavioral uniqueness scores."""

    async def get_latest_snapshot(
        self,
        session: AsyncSession,
        user_id: str,
    ) -> Optional[BehavioralMetricsSnapshot]:
        result = await session.execute(
            select(BehavioralMetricsSnapshot)
            .where(BehavioralMetricsSnapshot.user_id == user_id)
            .order_by(BehavioralMetricsSnapshot.tracking_period_end.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def score(
        self,
        session: AsyncSession,
        user_id: str,
        days_active: int,
        now: Optional[datetime] = None,
    ) -> BehavioralUniquenessResult:
        """
        Score a user's behavioral uniqueness.

        - Fewer than the minimum active days: 0 with an explanation
        - No snapshot: the no-snapshot fallback score (30)
        - Otherwise z-scores against the population statistics

        The z-scores and score are written back onto the latest snapshot and
        the score/explanation onto the user's score row. The caller commits.

        Args:
            session: Database session
            user_id: User to score
            days_active: Days the user has been active
            now: Calculation time (defaults to utcnow)

        Returns:
            BehavioralUniquenessResult
        """
        now = now or datetime.utcnow()
        min_days = settings.behavior_min_days_active

        if days_active < min_days:
            result = BehavioralUniquenessResult(
                score=0,
                z_scores=empty_z_scores(),
                explanation=f"Need at least {min_days} days of activity. You have {days_active} days.",
            )
            await self._save_score(session, user_id, result, now)
            return result

        snapshot = await self.get_latest_snapshot(session, user_id)
        if snapshot is None:
            result = BehavioralUniquenessResult(
                score=settings.behavior_no_snapshot_score,
                z_scores=empty_z_scores(),
                explanation=NO_SNAPSHOT_EXPLANATION,
            )
            await self._save_score(session, user_id, result, now)
            return result

        stats = await population_stats_service.get_stats(session, now=now)
        z_scores = calculate_z_scores(snapshot, stats)
        patterns = identify_extreme_patterns(z_scores)
        result = BehavioralUniquenessResult(
            score=uniqueness_from_z_scores(z_scores),
            z_scores=z_scores,
            explanation=explain(patterns),
            extreme_patterns=patterns,
        )

        snapshot.z_scores = z_scores
        snapshot.uniqueness_score = result.score
        snapshot.updated_at = now
        await self._save_score(session, user_id, result, now)
        await session.flush()

        logger.info(
            f"Behavioral uniqueness for {user_id}: {result.score} "
            f"({len(patterns)} extreme patterns, default stats: {stats.is_default})"
        )
        return result

    async def _save_score(
        self,
        session: AsyncSession,
        user_id: str,
        result: BehavioralUniquenessResult,
        now: datetime,
    ) -> None:
        await score_service.save_scores(
            session,
            user_id,
            now=now,
            uniqueness_score=result.score,
            uniqueness_explanation=result.explanation,
            uniqueness_calculated_at=now,
        )


# Singleton instance
behavioral_analyzer = BehavioralAnalyzer()
