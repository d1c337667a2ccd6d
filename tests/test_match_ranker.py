"""
Tests for weekly match ranking.
"""

from datetime import date, datetime

import pytest

from soulscore.jobs.payloads import MatchCandidate
from soulscore.services.match_ranker import match_ranker, rank_candidates, week_start_for

WEEK = date(2026, 3, 1)

CANDIDATES = [
    {"match_user_id": "bea", "score": 71.5},
    {"match_user_id": "cal", "score": 88.0, "compatibility_factors": {"values": 0.9}},
    {"match_user_id": "ann", "score": 71.5},
    {"match_user_id": "me", "score": 99.0},
    {"match_user_id": "bea", "score": 93.0},
    {"match_user_id": "dee", "score": 12.0},
]


class TestWeekStart:

    def test_midweek_maps_to_previous_sunday(self):
        assert week_start_for(date(2026, 3, 4)) == WEEK

    def test_sunday_maps_to_itself(self):
        assert week_start_for(WEEK) == WEEK

    def test_accepts_datetime(self):
        assert week_start_for(datetime(2026, 3, 7, 23, 59)) == WEEK


class TestRankCandidates:
    """Test ordering, dedup and truncation."""

    def test_orders_by_score_with_id_tiebreak(self):
        ranked = rank_candidates("me", CANDIDATES)

        assert [c.match_user_id for c in ranked] == ["bea", "cal", "ann", "dee"]

    def test_duplicates_keep_best_score(self):
        ranked = rank_candidates("me", CANDIDATES)

        assert ranked[0].score == 93.0

    def test_self_match_dropped(self):
        assert all(c.match_user_id != "me" for c in rank_candidates("me", CANDIDATES))

    def test_top_n(self):
        assert len(rank_candidates("me", CANDIDATES, top_n=2)) == 2

    def test_accepts_models(self):
        ranked = rank_candidates("me", [MatchCandidate(match_user_id="zed", score=1.0)])
        assert ranked[0].match_user_id == "zed"

    def test_empty(self):
        assert rank_candidates("me", []) == []


class TestRankWeek:
    """Test persisting a week's list."""

    @pytest.mark.asyncio
    async def test_rank_week_persists_dense_ranks(self, session):
        await match_ranker.rank_week(session, "me", WEEK, CANDIDATES, keep_all=True)
        await session.commit()

        matches = await match_ranker.get_weekly_matches(session, "me", WEEK)

        assert [(m.rank, m.match_user_id) for m in matches] == [
            (1, "bea"), (2, "cal"), (3, "ann"), (4, "dee"),
        ]
        assert matches[1].compatibility_factors == {"values": 0.9}

    @pytest.mark.asyncio
    async def test_default_top_n(self, session):
        candidates = [{"match_user_id": f"user_{i}", "score": float(i)} for i in range(8)]

        rows = await match_ranker.rank_week(session, "me", WEEK, candidates)

        assert len(rows) == 5
        assert rows[0].match_user_id == "user_7"

    @pytest.mark.asyncio
    async def test_rerank_replaces_week(self, session):
        await match_ranker.rank_week(session, "me", WEEK, CANDIDATES, keep_all=True)
        await session.commit()

        await match_ranker.rank_week(
            session, "me", WEEK, [{"match_user_id": "eve", "score": 50.0}]
        )
        await session.commit()

        matches = await match_ranker.get_weekly_matches(session, "me", WEEK)
        assert [(m.rank, m.match_user_id) for m in matches] == [(1, "eve")]

    @pytest.mark.asyncio
    async def test_other_weeks_untouched(self, session):
        next_week = date(2026, 3, 8)
        await match_ranker.rank_week(session, "me", WEEK, CANDIDATES)
        await match_ranker.rank_week(session, "me", next_week, [{"match_user_id": "eve", "score": 50.0}])
        await session.commit()

        assert len(await match_ranker.get_weekly_matches(session, "me", WEEK)) == 4
        assert len(await match_ranker.get_weekly_matches(session, "me", next_week)) == 1
