"""
Batch scheduler.

A batch run covers one scheduler invocation:

    1. start_batch: create the run, enqueue one job per user needing
       recalculation, seal the run
    2. workers drain the queue (the last terminal job closes the run)
    3. finalize: refresh originality percentiles for the population and
       close the run if the workers have not already

Which users are enqueued depends on the run type:

    scheduled_daily / manual
        dna_recalculation for users whose latest snapshot is newer than
        their last uniqueness calculation; originality_recalculation for
        users with embedded content and no valid similarity cache entry
    weekly_full
        both job types for every user with data
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database.models import (
    BatchRun,
    BehavioralMetricsSnapshot,
    ContentItem,
    SimilarityCacheEntry,
    UserScore,
)
from ..services.batch_run_service import RunType, batch_run_service
from ..services.database_service import DatabaseService, database_service
from ..services.job_queue_service import job_queue_service
from ..services.originality_service import originality_service
from .payloads import DnaRecalculationPayload, JobType, OriginalityRecalculationPayload
from .worker import PoolStats, WorkerPool

logger = logging.getLogger("soulscore.jobs.scheduler")


@dataclass
class BatchResult:
    run: BatchRun
    stats: PoolStats
    drained: bool


class BatchScheduler:

    # =========================================================================
    # USER SELECTION
    # =========================================================================

    async def days_active(self, session: AsyncSession, user_ids: Optional[List[str]] = None) -> Dict[str, int]:
        """
        Days each user has been tracked: from their first tracking period
        start to their latest tracking period end.
        """
        query = select(
            BehavioralMetricsSnapshot.user_id,
            func.min(BehavioralMetricsSnapshot.tracking_period_start),
            func.max(BehavioralMetricsSnapshot.tracking_period_end),
        ).group_by(BehavioralMetricsSnapshot.user_id)
        if user_ids is not None:
            query = query.where(BehavioralMetricsSnapshot.user_id.in_(user_ids))

        result = await session.execute(query)
        return {
            user_id: max(0, (last_end - first_start).days)
            for user_id, first_start, last_end in result.all()
        }

    async def users_needing_dna(self, session: AsyncSession, full: bool = False) -> List[str]:
        """Users whose latest snapshot arrived after their last uniqueness calculation."""
        latest = (
            select(
                BehavioralMetricsSnapshot.user_id.label("user_id"),
                func.max(BehavioralMetricsSnapshot.created_at).label("latest_snapshot"),
            )
            .group_by(BehavioralMetricsSnapshot.user_id)
            .subquery()
        )
        query = select(latest.c.user_id).outerjoin(UserScore, UserScore.user_id == latest.c.user_id)
        if not full:
            query = query.where(
                or_(
                    UserScore.uniqueness_calculated_at.is_(None),
                    latest.c.latest_snapshot > UserScore.uniqueness_calculated_at,
                )
            )
        result = await session.execute(query.order_by(latest.c.user_id))
        return list(result.scalars().all())

    async def users_needing_originality(
        self,
        session: AsyncSession,
        full: bool = False,
        now: Optional[datetime] = None,
    ) -> List[str]:
        """Users with embedded content whose similarity cache entry is missing or expired."""
        now = now or datetime.utcnow()
        query = (
            select(ContentItem.user_id)
            .outerjoin(SimilarityCacheEntry, SimilarityCacheEntry.user_id == ContentItem.user_id)
            .where(
                ContentItem.embedding.isnot(None),
                ContentItem.deleted_at.is_(None),
            )
            .distinct()
        )
        if not full:
            query = query.where(
                or_(
                    SimilarityCacheEntry.user_id.is_(None),
                    SimilarityCacheEntry.valid_until <= now,
                )
            )
        result = await session.execute(query.order_by(ContentItem.user_id))
        return list(result.scalars().all())

    # =========================================================================
    # BATCH LIFECYCLE
    # =========================================================================

    async def start_batch(
        self,
        session: AsyncSession,
        run_type: str,
        now: Optional[datetime] = None,
    ) -> BatchRun:
        """
        Create a run, enqueue its jobs and seal it.

        Returns:
            The started (sealed) BatchRun
        """
        run_type = RunType(run_type).value
        full = run_type == RunType.WEEKLY_FULL.value
        now = now or datetime.utcnow()

        run = await batch_run_service.start_run(session, run_type, now=now)

        dna_users = await self.users_needing_dna(session, full=full)
        days_active = await self.days_active(session, dna_users)
        for user_id in dna_users:
            await job_queue_service.enqueue(
                session,
                JobType.DNA_RECALCULATION,
                user_id,
                DnaRecalculationPayload(days_active=days_active.get(user_id, 0)),
                batch_run_id=run.id,
                now=now,
            )

        originality_users = await self.users_needing_originality(session, full=full, now=now)
        for user_id in originality_users:
            await job_queue_service.enqueue(
                session,
                JobType.ORIGINALITY_RECALCULATION,
                user_id,
                OriginalityRecalculationPayload(),
                batch_run_id=run.id,
                now=now,
            )

        await batch_run_service.seal_run(session, run.id)
        await batch_run_service.update_summary(
            session,
            run.id,
            dna_jobs=len(dna_users),
            originality_jobs=len(originality_users),
        )
        # Nothing enqueued, or workers already finished everything before the seal
        await batch_run_service.finish_if_drained(session, run.id, now=now)

        logger.info(
            f"Batch run {run.id} ({run_type}) enqueued {len(dna_users)} DNA and "
            f"{len(originality_users)} originality jobs"
        )
        return await batch_run_service.get_run(session, run.id)

    async def finalize(self, session: AsyncSession, run_id: UUID) -> BatchRun:
        """
        Refresh population percentiles and close the run once drained.

        Returns:
            The run (still running if jobs are outstanding)
        """
        updated = await originality_service.refresh_percentiles(session)
        await session.commit()

        await batch_run_service.update_summary(session, run_id, percentiles_updated=updated)
        await batch_run_service.finish_if_drained(session, run_id)
        return await batch_run_service.get_run(session, run_id, with_errors=True)

    async def run_batch(
        self,
        run_type: str,
        concurrency: Optional[int] = None,
        drain_timeout: Optional[float] = None,
        db: Optional[DatabaseService] = None,
    ) -> BatchResult:
        """
        Start a batch, drain it with a worker pool and finalize it.

        Retries scheduled in the future are waited for until the drain
        timeout; a run still open after that stays running and is closed by
        whichever worker completes its last job.
        """
        db = db or database_service
        drain_timeout = settings.batch_drain_timeout_seconds if drain_timeout is None else drain_timeout

        async with db.get_session() as session:
            run = await self.start_batch(session, run_type)

        pool = WorkerPool(concurrency=concurrency, db=db)
        stats = PoolStats()
        deadline = time.monotonic() + drain_timeout
        drained = False

        while True:
            pass_stats = await pool.run_until_idle()
            for execution in pass_stats.executions:
                stats.add(execution)

            async with db.get_session() as session:
                open_jobs = await batch_run_service.count_open_jobs(session, run.id)
            if open_jobs == 0:
                drained = True
                break
            if time.monotonic() >= deadline:
                logger.warning(
                    f"Batch run {run.id} still has {open_jobs} open jobs after "
                    f"{drain_timeout}s; leaving it running"
                )
                break
            await asyncio.sleep(settings.queue_poll_interval_seconds)

        async with db.get_session() as session:
            run = await self.finalize(session, run.id)

        return BatchResult(run=run, stats=stats, drained=drained)


# Singleton instance
batch_scheduler = BatchScheduler()
