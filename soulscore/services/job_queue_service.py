"""
Job Queue Service for the durable scoring queue.

Jobs live in the ``jobs`` table and move through:

    pending/retry → processing → completed
                              → retry   (attempts < max_attempts)
                              → failed  (attempts exhausted, terminal)

Claiming is the only point of atomicity. A worker selects the best eligible
candidate and then issues a conditional update that only succeeds if the row
still has the status and attempt count it observed (compare-and-set). On
PostgreSQL the candidate select also uses ``FOR UPDATE SKIP LOCKED`` so
concurrent workers skip rows another worker is about to take. A lost race
simply retries with the next candidate.

A ``processing`` job whose heartbeat is older than the stale grace period is
eligible again: its lost execution counts as an attempt, and if that exhausts
``max_attempts`` the job is failed instead of handed out.

Complete and fail record the job outcome in the owning batch run inside the
same transaction as the status change.

Usage:
    from soulscore.services.job_queue_service import job_queue_service

    job = await job_queue_service.enqueue(
        session, JobType.DNA_RECALCULATION, user_id, {"days_active": 12}
    )

    job = await job_queue_service.claim_next(session, worker_id="worker-1")
    if job:
        ...
        await job_queue_service.complete(session, job.id, worker_id="worker-1")
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..database.models import Job
from ..exceptions import InvalidJobStateError, JobNotFoundError
from ..jobs.payloads import JobType, dump_payload, parse_payload
from .batch_run_service import JobOutcome, batch_run_service

logger = logging.getLogger("soulscore.job_queue_service")

JOB_STATUSES = ("pending", "processing", "retry", "completed", "failed")
CLAIMABLE_STATUSES = ("pending", "retry")


class JobQueueService:
    """
    Service for the durable priority job queue.

    Selection order is priority asc, scheduled_for asc, id asc (insertion
    order), so equal-priority jobs run oldest first.
    """

    # =========================================================================
    # ENQUEUE
    # =========================================================================

    async def enqueue(
        self,
        session: AsyncSession,
        job_type: Union[JobType, str],
        user_id: str,
        payload: Union[BaseModel, Dict[str, Any], None] = None,
        priority: Optional[int] = None,
        not_before: Optional[datetime] = None,
        max_attempts: Optional[int] = None,
        batch_run_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> Job:
        """
        Add a job to the queue.

        The payload is validated against the job type's model before the row
        is written. When the job belongs to a batch run, the run's total_jobs
        is incremented in the same transaction.

        Args:
            session: Database session
            job_type: Job type (see JobType)
            user_id: User the job scores
            payload: Payload model or dict matching the job type
            priority: Lower is more urgent (default from settings)
            not_before: Earliest execution time (default now)
            max_attempts: Executions allowed (default from settings)
            batch_run_id: Owning batch run, if any
            now: Current time (defaults to utcnow)

        Returns:
            Created Job

        Raises:
            pydantic.ValidationError: If the payload does not match the job type
        """
        job_type = JobType(job_type).value
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")
        typed_payload = parse_payload(job_type, payload)

        now = now or datetime.utcnow()
        job = Job(
            user_id=user_id,
            job_type=job_type,
            payload=dump_payload(typed_payload),
            status="pending",
            priority=settings.queue_default_priority if priority is None else priority,
            attempts=0,
            max_attempts=max_attempts or settings.queue_default_max_attempts,
            scheduled_for=not_before or now,
            batch_run_id=batch_run_id,
            created_at=now,
        )
        session.add(job)
        await session.flush()

        if batch_run_id:
            await batch_run_service.record_enqueued(session, batch_run_id)

        await session.commit()

        logger.info(
            f"Enqueued job {job.id} ({job_type}) for user {user_id} "
            f"(priority: {job.priority})"
        )
        return job

    # =========================================================================
    # CLAIM
    # =========================================================================

    async def claim_next(
        self,
        session: AsyncSession,
        worker_id: str,
        now: Optional[datetime] = None,
    ) -> Optional[Job]:
        """
        Atomically claim the next eligible job for a worker.

        Eligible jobs are pending/retry jobs with scheduled_for <= now, plus
        processing jobs whose heartbeat went stale. The claimed job moves to
        processing with started_at and heartbeat_at set to now.

        Args:
            session: Database session
            worker_id: Identifier of the claiming worker
            now: Current time (defaults to utcnow)

        Returns:
            Claimed Job, or None if nothing is eligible
        """
        lost_races = 0
        while lost_races < settings.queue_claim_retries:
            current = now or datetime.utcnow()
            candidate = await self._select_candidate(session, current)
            if candidate is None:
                return None

            if candidate.status == "processing":
                claimed = await self._reclaim_stale(session, candidate, worker_id, current)
                if claimed is False:
                    lost_races += 1
                    continue
                if claimed is None:
                    # Attempts exhausted; the job was failed, look for another
                    continue
                return claimed

            # Rollback expires the instance; only these locals are read afterwards
            candidate_id = candidate.id
            observed_status = candidate.status
            observed_attempts = candidate.attempts

            result = await session.execute(
                update(Job)
                .where(
                    Job.id == candidate_id,
                    Job.status == observed_status,
                    Job.attempts == observed_attempts,
                )
                .values(
                    status="processing",
                    started_at=current,
                    heartbeat_at=current,
                    worker_id=worker_id,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await session.rollback()
                lost_races += 1
                logger.debug(f"Worker {worker_id} lost claim race for job {candidate_id}")
                continue

            await session.commit()
            job = await self.get_job(session, candidate_id)
            logger.info(
                f"Worker {worker_id} claimed job {job.id} ({job.job_type}, "
                f"attempt {job.attempts + 1}/{job.max_attempts})"
            )
            return job

        logger.warning(f"Worker {worker_id} gave up claiming after {lost_races} lost races")
        return None

    async def _select_candidate(self, session: AsyncSession, now: datetime) -> Optional[Job]:
        stale_cutoff = now - timedelta(seconds=settings.queue_stale_grace_seconds)
        query = (
            select(Job)
            .where(
                or_(
                    and_(
                        Job.status.in_(CLAIMABLE_STATUSES),
                        Job.scheduled_for <= now,
                    ),
                    and_(
                        Job.status == "processing",
                        func.coalesce(Job.heartbeat_at, Job.started_at) < stale_cutoff,
                    ),
                )
            )
            .order_by(Job.priority.asc(), Job.scheduled_for.asc(), Job.id.asc())
            .limit(1)
            .with_for_update(skip_locked=True)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def _reclaim_stale(
        self,
        session: AsyncSession,
        job: Job,
        worker_id: str,
        now: datetime,
    ):
        """
        Take over a processing job whose worker stopped heartbeating.

        Returns:
            The claimed Job, None if the job was failed instead, or False if
            another worker changed the row first
        """
        new_attempts = job.attempts + 1
        error = f"Worker {job.worker_id} stopped heartbeating; execution lost"
        exhausted = new_attempts >= job.max_attempts

        if exhausted:
            values = dict(
                status="failed",
                attempts=new_attempts,
                last_error=error,
                completed_at=now,
            )
        else:
            values = dict(
                status="processing",
                attempts=new_attempts,
                last_error=error,
                started_at=now,
                heartbeat_at=now,
                worker_id=worker_id,
            )

        result = await session.execute(
            update(Job)
            .where(
                Job.id == job.id,
                Job.status == "processing",
                Job.attempts == job.attempts,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            return False

        if job.batch_run_id:
            await batch_run_service.record_job_outcome(
                session,
                job.batch_run_id,
                JobOutcome(
                    job_id=job.id,
                    status="failed" if exhausted else "retry",
                    error=error,
                    will_retry=not exhausted,
                    timestamp=now,
                ),
            )
        await session.commit()

        if exhausted:
            logger.error(
                f"Job {job.id} failed after stale reclaim "
                f"({new_attempts}/{job.max_attempts} attempts)"
            )
            if job.batch_run_id:
                await batch_run_service.finish_if_drained(session, job.batch_run_id, now=now)
            return None

        logger.warning(
            f"Worker {worker_id} reclaimed stale job {job.id} from {job.worker_id} "
            f"(attempt {new_attempts + 1}/{job.max_attempts})"
        )
        return await self.get_job(session, job.id)

    # =========================================================================
    # COMPLETE / FAIL / HEARTBEAT
    # =========================================================================

    @staticmethod
    def compute_backoff(attempts: int) -> timedelta:
        """Retry delay after the given number of failed attempts."""
        return timedelta(seconds=settings.queue_backoff_base_seconds * (2 ** attempts))

    async def complete(
        self,
        session: AsyncSession,
        job_id: int,
        worker_id: Optional[str] = None,
        tokens_used: int = 0,
        now: Optional[datetime] = None,
    ) -> Job:
        """
        Mark a processing job as completed.

        Args:
            session: Database session
            job_id: Job id
            worker_id: If given, the job must be held by this worker
            tokens_used: Tokens consumed by the execution
            now: Completion time (defaults to utcnow)

        Returns:
            Updated Job

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidJobStateError: If the job is not processing (or held by another worker)
        """
        now = now or datetime.utcnow()
        job = await self._get_processing(session, job_id, worker_id)

        result = await session.execute(
            update(Job)
            .where(*self._held_by(job, worker_id))
            .values(status="completed", completed_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            raise InvalidJobStateError(job_id, "processing")

        if job.batch_run_id:
            await batch_run_service.record_job_outcome(
                session,
                job.batch_run_id,
                JobOutcome(
                    job_id=job_id,
                    status="completed",
                    tokens_used=tokens_used,
                    timestamp=now,
                ),
            )
        await session.commit()

        logger.info(f"Completed job {job_id} ({job.job_type})")
        return await self.get_job(session, job_id)

    async def fail(
        self,
        session: AsyncSession,
        job_id: int,
        error: str,
        worker_id: Optional[str] = None,
        tokens_used: int = 0,
        now: Optional[datetime] = None,
    ) -> Job:
        """
        Record a failed execution.

        Increments attempts. Below max_attempts the job goes to retry with
        scheduled_for = now + base * 2^attempts; otherwise it is failed for
        good and scheduled_for is left alone.

        Args:
            session: Database session
            job_id: Job id
            error: Error description
            worker_id: If given, the job must be held by this worker
            tokens_used: Tokens consumed before the failure
            now: Failure time (defaults to utcnow)

        Returns:
            Updated Job

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidJobStateError: If the job is not processing (or held by another worker)
        """
        now = now or datetime.utcnow()
        job = await self._get_processing(session, job_id, worker_id)

        new_attempts = job.attempts + 1
        will_retry = new_attempts < job.max_attempts

        if will_retry:
            values = dict(
                status="retry",
                attempts=new_attempts,
                last_error=error,
                scheduled_for=now + self.compute_backoff(new_attempts),
            )
        else:
            values = dict(
                status="failed",
                attempts=new_attempts,
                last_error=error,
                completed_at=now,
            )

        result = await session.execute(
            update(Job)
            .where(*self._held_by(job, worker_id), Job.attempts == job.attempts)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await session.rollback()
            raise InvalidJobStateError(job_id, "processing")

        if job.batch_run_id:
            await batch_run_service.record_job_outcome(
                session,
                job.batch_run_id,
                JobOutcome(
                    job_id=job_id,
                    status="retry" if will_retry else "failed",
                    error=error,
                    will_retry=will_retry,
                    tokens_used=tokens_used,
                    timestamp=now,
                ),
            )
        await session.commit()

        if will_retry:
            logger.warning(
                f"Job {job_id} failed (attempt {new_attempts}/{job.max_attempts}), "
                f"retry at {values['scheduled_for'].isoformat()}: {error}"
            )
        else:
            logger.error(
                f"Job {job_id} failed permanently after {new_attempts} attempts: {error}"
            )
        return await self.get_job(session, job_id)

    async def heartbeat(
        self,
        session: AsyncSession,
        job_id: int,
        worker_id: str,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Refresh heartbeat_at for a job the worker is executing.

        Returns:
            False if the job is no longer held by this worker
        """
        result = await session.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == "processing", Job.worker_id == worker_id)
            .values(heartbeat_at=now or datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        return result.rowcount == 1

    async def _get_processing(
        self,
        session: AsyncSession,
        job_id: int,
        worker_id: Optional[str],
    ) -> Job:
        job = await self.get_job(session, job_id)
        if not job:
            raise JobNotFoundError(job_id)
        if job.status != "processing":
            raise InvalidJobStateError(job_id, "processing", job.status)
        if worker_id and job.worker_id != worker_id:
            raise InvalidJobStateError(job_id, f"held by {worker_id}", f"held by {job.worker_id}")
        return job

    @staticmethod
    def _held_by(job: Job, worker_id: Optional[str]) -> list:
        conditions = [Job.id == job.id, Job.status == "processing"]
        if worker_id:
            conditions.append(Job.worker_id == worker_id)
        return conditions

    # =========================================================================
    # REQUEUE
    # =========================================================================

    async def requeue(
        self,
        session: AsyncSession,
        job_id: int,
        now: Optional[datetime] = None,
    ) -> Job:
        """
        Re-enqueue a failed job as a fresh pending job.

        The failed row stays untouched; the new job carries the same type,
        payload, priority and user, and points back via requeued_from_id.

        Raises:
            JobNotFoundError: If the job does not exist
            InvalidJobStateError: If the job is not failed
        """
        job = await self.get_job(session, job_id)
        if not job:
            raise JobNotFoundError(job_id)
        if job.status != "failed":
            raise InvalidJobStateError(job_id, "failed", job.status)

        now = now or datetime.utcnow()
        new_job = Job(
            user_id=job.user_id,
            job_type=job.job_type,
            payload=dict(job.payload or {}),
            status="pending",
            priority=job.priority,
            attempts=0,
            max_attempts=job.max_attempts,
            scheduled_for=now,
            requeued_from_id=job.id,
            created_at=now,
        )
        session.add(new_job)
        await session.commit()

        logger.info(f"Requeued failed job {job_id} as job {new_job.id}")
        return new_job

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_job(self, session: AsyncSession, job_id: int) -> Optional[Job]:
        """Get a job by id, always reading the current row."""
        result = await session.execute(
            select(Job).where(Job.id == job_id).execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def list_jobs(
        self,
        session: AsyncSession,
        status: Optional[str] = None,
        job_type: Optional[str] = None,
        user_id: Optional[str] = None,
        batch_run_id: Optional[UUID] = None,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Job]:
        """List jobs in insertion order with optional filters."""
        query = select(Job)
        if status:
            query = query.where(Job.status == status)
        if job_type:
            query = query.where(Job.job_type == job_type)
        if user_id:
            query = query.where(Job.user_id == user_id)
        if batch_run_id:
            query = query.where(Job.batch_run_id == batch_run_id)
        query = query.order_by(Job.id.asc()).limit(limit).offset(offset)

        result = await session.execute(query)
        return list(result.scalars().all())

    async def queue_stats(
        self,
        session: AsyncSession,
        batch_run_id: Optional[UUID] = None,
    ) -> Dict[str, int]:
        """Count jobs per status (every status present, zero if empty)."""
        query = select(Job.status, func.count(Job.id)).group_by(Job.status)
        if batch_run_id:
            query = query.where(Job.batch_run_id == batch_run_id)
        result = await session.execute(query)

        stats = {status: 0 for status in JOB_STATUSES}
        for status, count in result.all():
            stats[status] = count
        return stats


# Singleton instance
job_queue_service = JobQueueService()
