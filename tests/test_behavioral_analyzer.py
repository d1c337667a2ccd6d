"""
Tests for behavioral uniqueness scoring and population statistics.
"""

import math
from datetime import datetime, timedelta

import pytest

from soulscore.database.models import BehavioralMetricsSnapshot
from soulscore.services.behavioral_analyzer import (
    DIMENSIONS,
    NO_SNAPSHOT_EXPLANATION,
    TYPICAL_EXPLANATION,
    behavioral_analyzer,
    explain,
    identify_extreme_patterns,
    uniqueness_from_z_scores,
    z_score,
)
from soulscore.services.population_stats_service import (
    DEFAULT_POPULATION_STATS,
    POPULATION_METRICS,
    metric_stats,
    population_stats_service,
)
from soulscore.services.score_service import score_service

NOW = datetime(2026, 3, 2, 12, 0, 0)

AVERAGE_USER = {metric: values["mean"] for metric, values in DEFAULT_POPULATION_STATS.items()}


def make_snapshot(user_id, end=NOW, **metrics):
    return BehavioralMetricsSnapshot(
        user_id=user_id,
        tracking_period_start=end - timedelta(days=14),
        tracking_period_end=end,
        **metrics,
    )


class TestZScores:
    """Test the pure scoring helpers."""

    def test_z_score(self):
        assert z_score(20.0, 12.0, 8.0) == 1.0
        assert z_score(4.0, 12.0, 8.0) == -1.0

    def test_missing_value_sits_at_mean(self):
        assert z_score(None, 12.0, 8.0) == 0.0

    def test_zero_stddev_treated_as_one(self):
        assert z_score(5.0, 3.0, 0.0) == 2.0

    def test_uniqueness_is_scaled_mean_abs_z(self):
        z_scores = {dimension: (1.0 if i % 2 else -1.0) for i, dimension in enumerate(DIMENSIONS)}
        assert uniqueness_from_z_scores(z_scores) == 30

    def test_uniqueness_capped_at_100(self):
        z_scores = {dimension: 5.0 for dimension in DIMENSIONS}
        assert uniqueness_from_z_scores(z_scores) == 100

    def test_uniqueness_rounds_half_up(self):
        z_scores = {dimension: 0.75 for dimension in DIMENSIONS}
        assert uniqueness_from_z_scores(z_scores) == 23

    def test_extreme_patterns_use_direction_labels(self):
        z_scores = {
            "response_time": -2.5,
            "emoji_usage": 2.1,
            "voice_usage": 1.9,
            "decision_speed": -2.0,
        }
        assert identify_extreme_patterns(z_scores) == [
            "Lightning-fast responder",
            "Expressive emoji user",
        ]

    def test_explain(self):
        assert explain([]) == TYPICAL_EXPLANATION
        assert explain(["Highly selective", "Minimalist texter"]) == (
            "You exhibit 2 unique behavioral patterns: Highly selective, Minimalist texter."
        )

    def test_every_dimension_has_both_labels(self):
        metrics = set()
        for metric, positive, negative in DIMENSIONS.values():
            assert positive and negative and positive != negative
            metrics.add(metric)
        assert metrics == set(POPULATION_METRICS)


class TestBehavioralAnalyzer:
    """Test scoring users against the population."""

    @pytest.mark.asyncio
    async def test_too_few_days_active(self, session):
        result = await behavioral_analyzer.score(session, "user_1", days_active=3, now=NOW)
        await session.commit()

        assert result.score == 0
        assert result.explanation == "Need at least 7 days of activity. You have 3 days."
        assert all(z == 0.0 for z in result.z_scores.values())

        saved = await score_service.get_user_score(session, "user_1")
        assert saved.uniqueness_score == 0
        assert saved.uniqueness_calculated_at == NOW

    @pytest.mark.asyncio
    async def test_no_snapshot_fallback(self, session):
        result = await behavioral_analyzer.score(session, "user_1", days_active=30, now=NOW)

        assert result.score == 30
        assert result.explanation == NO_SNAPSHOT_EXPLANATION

    @pytest.mark.asyncio
    async def test_scores_latest_snapshot_against_population(self, session):
        older = make_snapshot("user_1", end=NOW - timedelta(days=14), **AVERAGE_USER)
        latest_metrics = dict(AVERAGE_USER, avg_response_time_hours=36.0)
        latest = make_snapshot("user_1", **latest_metrics)
        session.add_all([older, latest])
        await session.commit()

        result = await behavioral_analyzer.score(session, "user_1", days_active=28, now=NOW)
        await session.commit()

        # Fewer snapshots than the minimum: default statistics, z = (36 - 12) / 8
        assert result.z_scores["response_time"] == pytest.approx(3.0)
        assert result.z_scores["emoji_usage"] == pytest.approx(0.0)
        assert result.score == 9
        assert result.extreme_patterns == ["Thoughtful responder"]
        assert result.explanation == "You exhibit 1 unique behavioral patterns: Thoughtful responder."

        await session.refresh(latest)
        assert latest.uniqueness_score == 9
        assert latest.z_scores["response_time"] == pytest.approx(3.0)
        await session.refresh(older)
        assert older.uniqueness_score is None

        saved = await score_service.get_user_score(session, "user_1")
        assert saved.uniqueness_score == 9
        assert saved.uniqueness_explanation == result.explanation


class TestMetricStats:
    """Test per-metric statistics."""

    def test_population_stddev(self):
        stats = metric_stats([1.0, 2.0, 3.0, None])
        assert stats["mean"] == pytest.approx(2.0)
        assert stats["stddev"] == pytest.approx(math.sqrt(2 / 3))

    def test_zero_stddev_replaced(self):
        assert metric_stats([5.0, 5.0]) == {"mean": 5.0, "stddev": 1.0}

    def test_no_values(self):
        assert metric_stats([None, None]) == {"mean": 0.0, "stddev": 1.0}


class TestPopulationStatsService:
    """Test computing and caching population statistics."""

    @pytest.mark.asyncio
    async def test_defaults_below_minimum_snapshots(self, session):
        session.add_all([make_snapshot(f"user_{i}", messages_per_match=1.0) for i in range(3)])
        await session.commit()

        stats = await population_stats_service.refresh(session, now=NOW)

        assert stats.is_default is True
        assert stats.snapshot_count == 3
        assert stats.mean("messages_per_match") == 15.0

    @pytest.mark.asyncio
    async def test_computed_from_snapshots(self, session):
        session.add_all(
            [make_snapshot(f"user_{i}", messages_per_match=float(i)) for i in range(10)]
        )
        await session.commit()

        stats = await population_stats_service.refresh(session, now=NOW)

        assert stats.is_default is False
        assert stats.mean("messages_per_match") == pytest.approx(4.5)
        assert stats.stddev("messages_per_match") == pytest.approx(math.sqrt(8.25))
        # No values for this metric at all
        assert stats.stats["emoji_usage_rate"] == {"mean": 0.0, "stddev": 1.0}

    @pytest.mark.asyncio
    async def test_cached_within_ttl(self, session):
        first = await population_stats_service.get_stats(session, now=NOW)
        await session.commit()
        assert first.snapshot_count == 0

        session.add_all([make_snapshot(f"user_{i}") for i in range(2)])
        await session.commit()

        cached = await population_stats_service.get_stats(session, now=NOW + timedelta(minutes=10))
        assert cached.snapshot_count == 0
        assert cached.computed_at == NOW

        refreshed = await population_stats_service.get_stats(session, now=NOW + timedelta(hours=2))
        assert refreshed.snapshot_count == 2
