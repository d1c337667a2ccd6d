"""
Population statistics for behavioral z-scores.

Mean and population standard deviation (divide by N) per behavioral metric
across every snapshot with a non-null value. The result is cached in a
single-row table and reused while younger than the TTL, so concurrent
analyzer runs see eventually consistent statistics.

Below ``population_min_snapshots`` snapshots the hard-coded defaults are used.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Mapping, Optional

import numpy as np
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database.models import BehavioralMetricsSnapshot, PopulationStatistics
from ..database.upsert import upsert

logger = logging.getLogger("soulscore.population_stats_service")

STATS_ROW_ID = 1

# Metrics the z-score vector is built from
POPULATION_METRICS: List[str] = [
    "avg_response_time_hours",
    "messages_per_match",
    "avg_message_length",
    "emoji_usage_rate",
    "voice_message_ratio",
    "profile_views_per_day",
    "match_acceptance_rate",
    "weekend_activity_ratio",
    "profile_completion_speed_days",
    "avg_swipe_time_seconds",
]

DEFAULT_POPULATION_STATS: Dict[str, Dict[str, float]] = {
    "avg_response_time_hours": {"mean": 12.0, "stddev": 8.0},
    "messages_per_match": {"mean": 15.0, "stddev": 10.0},
    "avg_message_length": {"mean": 100.0, "stddev": 50.0},
    "emoji_usage_rate": {"mean": 0.2, "stddev": 0.15},
    "voice_message_ratio": {"mean": 0.1, "stddev": 0.1},
    "profile_views_per_day": {"mean": 5.0, "stddev": 3.0},
    "match_acceptance_rate": {"mean": 0.3, "stddev": 0.2},
    "weekend_activity_ratio": {"mean": 0.35, "stddev": 0.15},
    "profile_completion_speed_days": {"mean": 7.0, "stddev": 5.0},
    "avg_swipe_time_seconds": {"mean": 3.0, "stddev": 2.0},
}


@dataclass
class PopulationStats:
    stats: Dict[str, Dict[str, float]]
    snapshot_count: int
    is_default: bool
    computed_at: datetime

    def mean(self, metric: str) -> float:
        return self.stats[metric]["mean"]

    def stddev(self, metric: str) -> float:
        return self.stats[metric]["stddev"]


def metric_stats(values: Iterable[Optional[float]]) -> Dict[str, float]:
    """
    Mean and population stddev of the non-null values.

    A zero stddev is replaced by 1; no values yields {0, 1}.
    """
    present = [v for v in values if v is not None]
    if not present:
        return {"mean": 0.0, "stddev": 1.0}

    array = np.asarray(present, dtype=float)
    mean = float(array.mean())
    stddev = float(array.std())
    return {"mean": mean, "stddev": stddev or 1.0}


def compute_population_stats(rows: Iterable[Mapping[str, Optional[float]]]) -> Dict[str, Dict[str, float]]:
    """Per-metric statistics over snapshot rows (mappings of metric → value)."""
    rows = list(rows)
    return {
        metric: metric_stats(row.get(metric) for row in rows)
        for metric in POPULATION_METRICS
    }


class PopulationStatsService:
    """Provides cached population statistics to the behavioral analyzer."""

    async def get_stats(
        self,
        session: AsyncSession,
        now: Optional[datetime] = None,
    ) -> PopulationStats:
        """
        Return cached statistics if younger than the TTL, else recompute.
        """
        now = now or datetime.utcnow()
        cached = await session.get(
            PopulationStatistics, STATS_ROW_ID, populate_existing=True
        )
        ttl = timedelta(seconds=settings.population_stats_ttl_seconds)
        if cached and cached.computed_at > now - ttl:
            return PopulationStats(
                stats=cached.stats,
                snapshot_count=cached.snapshot_count,
                is_default=cached.is_default,
                computed_at=cached.computed_at,
            )
        return await self.refresh(session, now=now)

    async def refresh(
        self,
        session: AsyncSession,
        now: Optional[datetime] = None,
    ) -> PopulationStats:
        """
        Recompute statistics from all snapshots and store them.

        The caller owns the transaction.
        """
        now = now or datetime.utcnow()

        count_result = await session.execute(select(func.count(BehavioralMetricsSnapshot.id)))
        snapshot_count = count_result.scalar_one()

        if snapshot_count < settings.population_min_snapshots:
            stats = {metric: dict(values) for metric, values in DEFAULT_POPULATION_STATS.items()}
            is_default = True
            logger.info(
                f"Using default population statistics ({snapshot_count} snapshots, "
                f"need {settings.population_min_snapshots})"
            )
        else:
            columns = [getattr(BehavioralMetricsSnapshot, metric) for metric in POPULATION_METRICS]
            result = await session.execute(select(*columns))
            stats = compute_population_stats(row._mapping for row in result.all())
            is_default = False
            logger.info(f"Computed population statistics from {snapshot_count} snapshots")

        await upsert(
            session,
            PopulationStatistics,
            {
                "id": STATS_ROW_ID,
                "stats": stats,
                "snapshot_count": snapshot_count,
                "is_default": is_default,
                "computed_at": now,
            },
            index_elements=["id"],
        )
        await session.flush()

        return PopulationStats(
            stats=stats,
            snapshot_count=snapshot_count,
            is_default=is_default,
            computed_at=now,
        )


# Singleton instance
population_stats_service = PopulationStatsService()
