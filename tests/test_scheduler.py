"""
Tests for the batch scheduler: user selection, batch start and a full run.
"""

from datetime import datetime, timedelta

import pytest

from soulscore.database.models import BehavioralMetricsSnapshot, ContentItem
from soulscore.jobs.scheduler import batch_scheduler
from soulscore.services.job_queue_service import job_queue_service
from soulscore.services.score_service import score_service
from soulscore.services.similarity_cache_service import similarity_cache_service

NOW = datetime(2026, 3, 2, 12, 0, 0)


def snapshot(user_id, start, end, created_at=None, **metrics):
    return BehavioralMetricsSnapshot(
        user_id=user_id,
        tracking_period_start=start,
        tracking_period_end=end,
        created_at=created_at or end,
        updated_at=created_at or end,
        **metrics,
    )


def embedded_content(user_id, vector, created_at=None):
    created_at = created_at or datetime.utcnow() - timedelta(days=1)
    return ContentItem(
        user_id=user_id,
        text=f"post by {user_id}",
        embedding=vector,
        embedded_at=created_at,
        analysis_status="completed",
        created_at=created_at,
    )


class TestUserSelection:
    """Test which users a run enqueues."""

    @pytest.mark.asyncio
    async def test_days_active_spans_all_snapshots(self, session):
        session.add_all([
            snapshot("user_1", NOW - timedelta(days=20), NOW - timedelta(days=10)),
            snapshot("user_1", NOW - timedelta(days=10), NOW),
            snapshot("user_2", NOW - timedelta(days=3), NOW),
        ])
        await session.commit()

        assert await batch_scheduler.days_active(session) == {"user_1": 20, "user_2": 3}
        assert await batch_scheduler.days_active(session, ["user_2"]) == {"user_2": 3}

    @pytest.mark.asyncio
    async def test_users_needing_dna(self, session):
        session.add_all([
            snapshot("never_scored", NOW - timedelta(days=14), NOW),
            snapshot("up_to_date", NOW - timedelta(days=14), NOW, created_at=NOW),
            snapshot("new_data", NOW - timedelta(days=14), NOW, created_at=NOW + timedelta(hours=2)),
        ])
        await score_service.save_scores(
            session, "up_to_date", now=NOW, uniqueness_score=40,
            uniqueness_calculated_at=NOW + timedelta(hours=1),
        )
        await score_service.save_scores(
            session, "new_data", now=NOW, uniqueness_score=40,
            uniqueness_calculated_at=NOW + timedelta(hours=1),
        )
        await session.commit()

        assert await batch_scheduler.users_needing_dna(session) == ["never_scored", "new_data"]
        assert await batch_scheduler.users_needing_dna(session, full=True) == [
            "never_scored", "new_data", "up_to_date",
        ]

    @pytest.mark.asyncio
    async def test_users_needing_originality(self, session):
        session.add_all([
            embedded_content("uncached", [1.0, 0.0]),
            embedded_content("cached", [1.0, 0.0]),
            embedded_content("expired", [1.0, 0.0]),
            ContentItem(user_id="not_embedded", text="pending analysis"),
        ])
        for user_id, calculated_at in (("cached", NOW), ("expired", NOW - timedelta(days=30))):
            await similarity_cache_service.store(
                session, user_id, originality_score=60, avg_similarity=0.4,
                min_similarity=0.1, max_similarity=0.9, content_count=3,
                population_sample_size=10, now=calculated_at,
            )
        await session.commit()

        assert await batch_scheduler.users_needing_originality(session, now=NOW) == ["expired", "uncached"]
        assert await batch_scheduler.users_needing_originality(session, full=True, now=NOW) == [
            "cached", "expired", "uncached",
        ]


class TestStartBatch:

    @pytest.mark.asyncio
    async def test_empty_run_completes_immediately(self, session):
        run = await batch_scheduler.start_batch(session, "scheduled_daily", now=NOW)

        assert run.total_jobs == 0
        assert run.sealed is True
        assert run.status == "completed"
        assert run.summary == {"dna_jobs": 0, "originality_jobs": 0}

    @pytest.mark.asyncio
    async def test_enqueues_jobs_for_run(self, session):
        session.add_all([
            snapshot("user_1", NOW - timedelta(days=14), NOW),
            embedded_content("user_2", [1.0, 0.0]),
        ])
        await session.commit()

        run = await batch_scheduler.start_batch(session, "weekly_full", now=NOW)

        assert run.status == "running"
        assert run.sealed is True
        assert run.total_jobs == 2
        jobs = await job_queue_service.list_jobs(session, batch_run_id=run.id)
        assert sorted((j.job_type, j.user_id) for j in jobs) == [
            ("dna_recalculation", "user_1"),
            ("originality_recalculation", "user_2"),
        ]
        dna_job = next(j for j in jobs if j.job_type == "dna_recalculation")
        assert dna_job.payload == {"days_active": 14}

    @pytest.mark.asyncio
    async def test_rejects_unknown_run_type(self, session):
        with pytest.raises(ValueError):
            await batch_scheduler.start_batch(session, "hourly")


class TestRunBatch:
    """Run a whole batch with the real handlers."""

    @pytest.mark.asyncio
    async def test_run_batch_end_to_end(self, db):
        now = datetime.utcnow()
        async with db.get_session() as session:
            session.add_all([
                snapshot("user_a", now - timedelta(days=21), now - timedelta(days=1),
                         created_at=now - timedelta(hours=1), messages_per_match=40.0),
                snapshot("user_b", now - timedelta(days=3), now - timedelta(days=1),
                         created_at=now - timedelta(hours=1)),
            ])
            for _ in range(3):
                session.add(embedded_content("user_a", [1.0, 0.0, 0.0]))
            for i in range(10):
                session.add(embedded_content(f"other_{i}", [0.0, 1.0, 0.0] if i % 2 else [1.0, 0.0, 0.0]))

        result = await batch_scheduler.run_batch("weekly_full", concurrency=2, drain_timeout=5, db=db)

        run = result.run
        assert result.drained is True
        assert run.status == "completed"
        assert run.total_jobs == 2 + 11
        assert run.completed_jobs == 13
        assert run.failed_jobs == 0
        assert run.summary["dna_jobs"] == 2
        assert run.summary["originality_jobs"] == 11
        assert run.summary["percentiles_updated"] == 11
        assert result.stats.completed == 13

        async with db.get_session() as session:
            user_a = await score_service.get_user_score(session, "user_a")
            user_b = await score_service.get_user_score(session, "user_b")

        assert user_a.dna_score is not None
        assert user_a.originality_score == 50
        assert user_a.originality_percentile is not None
        # user_b has only two days of activity
        assert user_b.uniqueness_score == 0
