"""
Tests for BatchRunService: counters, error log, closing and cost.
"""

from datetime import datetime, timedelta

import pytest

from soulscore.exceptions import BatchRunNotFoundError
from soulscore.jobs.payloads import JobType
from soulscore.services.batch_run_service import BatchRunService, batch_run_service
from soulscore.services.job_queue_service import job_queue_service

NOW = datetime(2026, 3, 2, 12, 0, 0)


async def _run_with_jobs(session, count, max_attempts=3):
    run = await batch_run_service.start_run(session, "scheduled_daily", now=NOW)
    jobs = []
    for i in range(count):
        jobs.append(
            await job_queue_service.enqueue(
                session,
                JobType.DNA_RECALCULATION,
                f"user_{i}",
                {"days_active": 10},
                max_attempts=max_attempts,
                batch_run_id=run.id,
                now=NOW,
            )
        )
    await batch_run_service.seal_run(session, run.id)
    return run, jobs


class TestStartRun:

    @pytest.mark.asyncio
    async def test_start_run(self, session):
        run = await batch_run_service.start_run(session, "manual", now=NOW)

        assert run.status == "running"
        assert run.started_at == NOW
        assert run.total_jobs == 0
        assert run.sealed is False

    @pytest.mark.asyncio
    async def test_start_run_rejects_unknown_type(self, session):
        with pytest.raises(ValueError):
            await batch_run_service.start_run(session, "hourly")


class TestOutcomeAggregation:
    """Test that job transitions are reflected in the run counters."""

    @pytest.mark.asyncio
    async def test_counters_and_tokens(self, session):
        run, jobs = await _run_with_jobs(session, 2, max_attempts=1)

        await job_queue_service.claim_next(session, "worker-1", now=NOW)
        await job_queue_service.complete(session, jobs[0].id, tokens_used=1200, now=NOW)
        await job_queue_service.claim_next(session, "worker-1", now=NOW)
        await job_queue_service.fail(session, jobs[1].id, "OpenAI timeout", tokens_used=300, now=NOW)

        run = await batch_run_service.get_run(session, run.id, with_errors=True)
        assert run.total_jobs == 2
        assert run.completed_jobs == 1
        assert run.failed_jobs == 1
        assert run.tokens_used == 1500
        assert run.error_log == [
            {
                "job_id": jobs[1].id,
                "error": "OpenAI timeout",
                "timestamp": NOW.isoformat(),
                "will_retry": False,
            }
        ]

    @pytest.mark.asyncio
    async def test_retry_logged_but_not_counted_as_failure(self, session):
        run, jobs = await _run_with_jobs(session, 1)

        await job_queue_service.claim_next(session, "worker-1", now=NOW)
        await job_queue_service.fail(session, jobs[0].id, "transient", now=NOW)

        run = await batch_run_service.get_run(session, run.id, with_errors=True)
        assert run.failed_jobs == 0
        assert run.completed_jobs == 0
        assert len(run.errors) == 1
        assert run.errors[0].will_retry is True

    @pytest.mark.asyncio
    async def test_count_open_jobs(self, session):
        run, jobs = await _run_with_jobs(session, 3)

        await job_queue_service.claim_next(session, "worker-1", now=NOW)
        await job_queue_service.complete(session, jobs[0].id, now=NOW)

        assert await batch_run_service.count_open_jobs(session, run.id) == 2


class TestFinishRun:
    """Test closing runs."""

    def test_estimate_cost_rounds_up(self):
        assert BatchRunService.estimate_cost_cents(0) == 0
        assert BatchRunService.estimate_cost_cents(1000) == 1
        assert BatchRunService.estimate_cost_cents(10_000) == 2
        assert BatchRunService.estimate_cost_cents(100_000) == 15

    @pytest.mark.asyncio
    async def test_finish_run_sets_totals(self, session):
        run, jobs = await _run_with_jobs(session, 1)
        await job_queue_service.claim_next(session, "worker-1", now=NOW)
        await job_queue_service.complete(session, jobs[0].id, tokens_used=20_000, now=NOW)

        finished = await batch_run_service.finish_run(session, run.id, now=NOW + timedelta(seconds=95))

        assert finished.status == "completed"
        assert finished.completed_at == NOW + timedelta(seconds=95)
        assert finished.duration_seconds == 95
        assert finished.api_cost_cents == 3

    @pytest.mark.asyncio
    async def test_finish_run_failed_when_any_job_failed(self, session):
        run, jobs = await _run_with_jobs(session, 1, max_attempts=1)
        await job_queue_service.claim_next(session, "worker-1", now=NOW)
        await job_queue_service.fail(session, jobs[0].id, "boom", now=NOW)

        finished = await batch_run_service.finish_run(session, run.id, now=NOW)
        assert finished.status == "failed"

    @pytest.mark.asyncio
    async def test_finish_run_policy_override(self, session):
        run, jobs = await _run_with_jobs(session, 1, max_attempts=1)
        await job_queue_service.claim_next(session, "worker-1", now=NOW)
        await job_queue_service.fail(session, jobs[0].id, "boom", now=NOW)

        finished = await batch_run_service.finish_run(
            session, run.id, now=NOW, fail_on_any_failure=False
        )
        assert finished.status == "completed"

    @pytest.mark.asyncio
    async def test_finish_run_only_once(self, session):
        run, _ = await _run_with_jobs(session, 0)

        first = await batch_run_service.finish_run(session, run.id, now=NOW + timedelta(seconds=10))
        second = await batch_run_service.finish_run(session, run.id, now=NOW + timedelta(seconds=99))

        assert first.completed_at == NOW + timedelta(seconds=10)
        assert second.completed_at == NOW + timedelta(seconds=10)
        assert second.duration_seconds == 10

    @pytest.mark.asyncio
    async def test_finish_unknown_run(self, session):
        from uuid import uuid4

        with pytest.raises(BatchRunNotFoundError):
            await batch_run_service.finish_run(session, uuid4())


class TestFinishIfDrained:

    @pytest.mark.asyncio
    async def test_waits_for_open_jobs(self, session):
        run, jobs = await _run_with_jobs(session, 2)
        await job_queue_service.claim_next(session, "worker-1", now=NOW)
        await job_queue_service.complete(session, jobs[0].id, now=NOW)

        assert await batch_run_service.finish_if_drained(session, run.id) is None

        await job_queue_service.claim_next(session, "worker-1", now=NOW)
        await job_queue_service.complete(session, jobs[1].id, now=NOW)

        finished = await batch_run_service.finish_if_drained(session, run.id, now=NOW)
        assert finished.status == "completed"
        assert finished.completed_jobs == 2

    @pytest.mark.asyncio
    async def test_unsealed_run_stays_open(self, session):
        run = await batch_run_service.start_run(session, "manual", now=NOW)

        assert await batch_run_service.finish_if_drained(session, run.id) is None
        run = await batch_run_service.get_run(session, run.id)
        assert run.status == "running"

    @pytest.mark.asyncio
    async def test_update_summary_merges(self, session):
        run = await batch_run_service.start_run(session, "manual", now=NOW)

        await batch_run_service.update_summary(session, run.id, dna_jobs=3)
        await batch_run_service.update_summary(session, run.id, percentiles_updated=7)

        run = await batch_run_service.get_run(session, run.id)
        assert run.summary == {"dna_jobs": 3, "percentiles_updated": 7}
