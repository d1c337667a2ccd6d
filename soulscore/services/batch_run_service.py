"""
Batch Run Service for scheduler telemetry.

A BatchRun is created once per scheduler invocation and aggregates the
outcomes of every job it spawned: job counters, tokens, estimated API cost
and an append-only error log.

All counter updates are issued as SQL-side increments
(``UPDATE ... SET completed_jobs = completed_jobs + 1``) inside the same
transaction as the job state change they describe, so concurrent workers
never lose updates and every job is counted exactly once.

Usage:
    from soulscore.services.batch_run_service import batch_run_service

    run = await batch_run_service.start_run(session, run_type="manual")

    # ... jobs are enqueued with batch_run_id=run.id and executed ...

    await batch_run_service.seal_run(session, run.id)
    await batch_run_service.finish_if_drained(session, run.id)
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ..config import settings
from ..database.models import BatchRun, BatchRunError, Job
from ..exceptions import BatchRunNotFoundError

logger = logging.getLogger("soulscore.batch_run_service")


class RunType(str, Enum):
    """What triggered a batch run."""
    MANUAL = "manual"
    SCHEDULED_DAILY = "scheduled_daily"
    WEEKLY_FULL = "weekly_full"


# Job statuses after which a job never changes again
TERMINAL_JOB_STATUSES = ("completed", "failed")


@dataclass
class JobOutcome:
    """
    Result of one job execution as seen by the aggregator.

    Attributes:
        job_id: Job that finished an execution
        status: completed, retry or failed
        error: Error text for retry/failed outcomes
        will_retry: attempts < max_attempts at time of failure
        tokens_used: Tokens consumed by the execution
        timestamp: When the outcome happened
    """
    job_id: int
    status: str
    error: Optional[str] = None
    will_retry: bool = False
    tokens_used: int = 0
    timestamp: datetime = field(default_factory=datetime.utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_JOB_STATUSES


class BatchRunService:
    """
    Service for managing BatchRun records.

    Handles run creation, SQL-side counter aggregation, error logging,
    and closing runs once every spawned job is terminal.
    """

    # =========================================================================
    # CREATE / READ
    # =========================================================================

    async def start_run(
        self,
        session: AsyncSession,
        run_type: str,
        now: Optional[datetime] = None,
    ) -> BatchRun:
        """
        Create a new running batch run with zero counters.

        Args:
            session: Database session
            run_type: manual, scheduled_daily or weekly_full
            now: Start timestamp (defaults to utcnow)

        Returns:
            Created BatchRun

        Raises:
            ValueError: If run_type is not a known RunType
        """
        run_type = RunType(run_type).value

        run = BatchRun(
            run_type=run_type,
            status="running",
            started_at=now or datetime.utcnow(),
            total_jobs=0,
            completed_jobs=0,
            failed_jobs=0,
            tokens_used=0,
            api_cost_cents=0,
            sealed=False,
            summary={},
        )
        session.add(run)
        await session.commit()
        await session.refresh(run)

        logger.info(f"Started batch run {run.id} (type: {run_type})")
        return run

    async def get_run(
        self,
        session: AsyncSession,
        run_id: UUID,
        with_errors: bool = False,
    ) -> Optional[BatchRun]:
        """
        Get a batch run by ID, always reading the current row.

        Args:
            session: Database session
            run_id: Run UUID
            with_errors: Eagerly load the error log

        Returns:
            BatchRun or None
        """
        query = select(BatchRun).where(BatchRun.id == run_id)
        if with_errors:
            query = query.options(selectinload(BatchRun.errors))
        result = await session.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def list_runs(
        self,
        session: AsyncSession,
        run_type: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> List[BatchRun]:
        """List runs, newest first, with optional filters."""
        query = select(BatchRun)
        if run_type:
            query = query.where(BatchRun.run_type == run_type)
        if status:
            query = query.where(BatchRun.status == status)
        query = query.order_by(BatchRun.started_at.desc()).limit(limit).offset(offset)

        result = await session.execute(query)
        return list(result.scalars().all())

    async def count_open_jobs(self, session: AsyncSession, run_id: UUID) -> int:
        """Count jobs of a run that have not reached a terminal status."""
        result = await session.execute(
            select(func.count(Job.id)).where(
                Job.batch_run_id == run_id,
                Job.status.notin_(TERMINAL_JOB_STATUSES),
            )
        )
        return result.scalar_one()

    # =========================================================================
    # AGGREGATION (caller owns the transaction)
    # =========================================================================

    async def record_enqueued(self, session: AsyncSession, run_id: UUID) -> None:
        """Count one enqueued job against the run (at enqueue time)."""
        await session.execute(
            update(BatchRun)
            .where(BatchRun.id == run_id)
            .values(total_jobs=BatchRun.total_jobs + 1)
            .execution_options(synchronize_session=False)
        )

    async def record_job_outcome(
        self,
        session: AsyncSession,
        run_id: UUID,
        outcome: JobOutcome,
    ) -> None:
        """
        Apply one job outcome to the run counters.

        - completed: completed_jobs + 1
        - failed: failed_jobs + 1 and an error log entry
        - retry: error log entry only

        Tokens are accumulated for every outcome. The caller commits together
        with the job transition that produced the outcome.
        """
        values: Dict[str, Any] = {}
        if outcome.status == "completed":
            values["completed_jobs"] = BatchRun.completed_jobs + 1
        elif outcome.status == "failed":
            values["failed_jobs"] = BatchRun.failed_jobs + 1
        if outcome.tokens_used:
            values["tokens_used"] = BatchRun.tokens_used + outcome.tokens_used

        if values:
            await session.execute(
                update(BatchRun)
                .where(BatchRun.id == run_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )

        if outcome.status in ("retry", "failed"):
            session.add(
                BatchRunError(
                    batch_run_id=run_id,
                    job_id=outcome.job_id,
                    error=outcome.error or "Unknown error",
                    timestamp=outcome.timestamp,
                    will_retry=outcome.will_retry,
                )
            )
            await session.flush()

    async def seal_run(self, session: AsyncSession, run_id: UUID) -> None:
        """Mark that every job of the run has been enqueued."""
        await session.execute(
            update(BatchRun)
            .where(BatchRun.id == run_id)
            .values(sealed=True)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        logger.info(f"Sealed batch run {run_id}")

    async def update_summary(
        self,
        session: AsyncSession,
        run_id: UUID,
        **items: Any,
    ) -> None:
        """Merge scheduler-level figures (matches generated, percentiles, ...) into the summary."""
        run = await self.get_run(session, run_id)
        if not run:
            raise BatchRunNotFoundError(run_id)
        summary = dict(run.summary or {})
        summary.update(items)
        run.summary = summary
        await session.commit()

    # =========================================================================
    # CLOSING
    # =========================================================================

    @staticmethod
    def estimate_cost_cents(tokens_used: int) -> int:
        """Estimated API cost in whole cents, rounded up."""
        return math.ceil(tokens_used * settings.batch_cost_cents_per_1k_tokens / 1000)

    async def finish_run(
        self,
        session: AsyncSession,
        run_id: UUID,
        now: Optional[datetime] = None,
        fail_on_any_failure: Optional[bool] = None,
    ) -> BatchRun:
        """
        Close a running batch run.

        Sets completed_at, duration_seconds and api_cost_cents, and the final
        status: failed when any job failed (policy fail_on_any_failure,
        default from settings), otherwise completed. The update is
        conditional on status == running, so a run is finished exactly once;
        finishing an already closed run returns it unchanged.

        Args:
            session: Database session
            run_id: Run UUID
            now: Completion timestamp (defaults to utcnow)
            fail_on_any_failure: Status policy override

        Returns:
            The (possibly already) finished BatchRun

        Raises:
            BatchRunNotFoundError: If the run does not exist
        """
        run = await self.get_run(session, run_id)
        if not run:
            raise BatchRunNotFoundError(run_id)
        if run.status != "running":
            return run

        if fail_on_any_failure is None:
            fail_on_any_failure = settings.batch_fail_on_any_failure

        completed_at = now or datetime.utcnow()
        duration = max(0, int((completed_at - run.started_at).total_seconds()))
        status = "failed" if fail_on_any_failure and run.failed_jobs > 0 else "completed"

        result = await session.execute(
            update(BatchRun)
            .where(BatchRun.id == run_id, BatchRun.status == "running")
            .values(
                status=status,
                completed_at=completed_at,
                duration_seconds=duration,
                api_cost_cents=self.estimate_cost_cents(run.tokens_used),
            )
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        run = await self.get_run(session, run_id)
        if result.rowcount == 1:
            logger.info(
                f"Finished batch run {run_id}: {status} "
                f"({run.completed_jobs} completed, {run.failed_jobs} failed of "
                f"{run.total_jobs}; {run.tokens_used} tokens, {run.api_cost_cents}c, "
                f"{duration}s)"
            )
        return run

    async def finish_if_drained(
        self,
        session: AsyncSession,
        run_id: UUID,
        now: Optional[datetime] = None,
    ) -> Optional[BatchRun]:
        """
        Finish the run if it is sealed and none of its jobs is still open.

        Returns:
            The finished BatchRun, or None if the run is not drained yet
        """
        run = await self.get_run(session, run_id)
        if not run:
            raise BatchRunNotFoundError(run_id)
        if run.status != "running" or not run.sealed:
            return None
        if await self.count_open_jobs(session, run_id) > 0:
            return None
        return await self.finish_run(session, run_id, now=now)


# Singleton instance
batch_run_service = BatchRunService()
