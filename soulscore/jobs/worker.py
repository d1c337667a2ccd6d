"""
Worker pool draining the job queue.

Each worker loops:

    claim → execute (bounded by the job timeout, heartbeat alongside)
          → complete / fail → close the batch run if it just drained

A job error (handler exception, timeout, bad payload, unknown job type) is
turned into a failed execution; a worker never dies from a job error.
Queue errors (a failed claim or outcome write) are logged and retried after
the poll interval.

Usage:
    pool = WorkerPool(concurrency=4)
    stats = await pool.run_until_idle()      # drain and return
    await pool.run(stop_event)                # long-running service mode
"""

import asyncio
import logging
import os
import socket
import time
import uuid
from contextlib import suppress
from dataclasses import dataclass, field
from typing import List, Optional

from ..config import settings
from ..database.models import Job
from ..exceptions import InvalidJobStateError
from ..services.batch_run_service import batch_run_service
from ..services.database_service import DatabaseService, database_service
from ..services.job_queue_service import job_queue_service
from . import handlers  # noqa: F401  (registers handlers)
from .payloads import parse_payload
from .registry import HandlerResult, JobRegistry, job_registry

logger = logging.getLogger("soulscore.jobs.worker")


@dataclass
class JobExecution:
    """Outcome of one claimed job as seen by the worker."""
    job_id: int
    job_type: str
    status: str  # completed, retry, failed, lost
    error: Optional[str] = None
    tokens_used: int = 0
    duration_seconds: float = 0.0


@dataclass
class PoolStats:
    processed: int = 0
    completed: int = 0
    retried: int = 0
    failed: int = 0
    lost: int = 0
    tokens_used: int = 0
    executions: List[JobExecution] = field(default_factory=list)

    def add(self, execution: JobExecution) -> None:
        self.processed += 1
        self.tokens_used += execution.tokens_used
        if execution.status == "completed":
            self.completed += 1
        elif execution.status == "retry":
            self.retried += 1
        elif execution.status == "failed":
            self.failed += 1
        else:
            self.lost += 1
        self.executions.append(execution)


def default_worker_id(index: int = 0) -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{index}-{uuid.uuid4().hex[:6]}"


class Worker:
    """A single queue consumer."""

    def __init__(
        self,
        worker_id: Optional[str] = None,
        registry: Optional[JobRegistry] = None,
        db: Optional[DatabaseService] = None,
        job_timeout: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
    ):
        self.worker_id = worker_id or default_worker_id()
        self._registry = registry or job_registry
        self._db = db or database_service
        self.job_timeout = job_timeout or settings.queue_job_timeout_seconds
        self.heartbeat_interval = heartbeat_interval or settings.queue_heartbeat_interval_seconds

    async def run_once(self) -> Optional[JobExecution]:
        """
        Claim and execute one job.

        Returns:
            JobExecution, or None if no job was eligible
        """
        async with self._db.get_session() as session:
            job = await job_queue_service.claim_next(session, self.worker_id)
        if job is None:
            return None

        started = time.monotonic()
        error: Optional[str] = None
        result = HandlerResult()

        heartbeat = asyncio.create_task(self._heartbeat_loop(job.id))
        try:
            result = await asyncio.wait_for(self._execute(job), timeout=self.job_timeout) or HandlerResult()
        except asyncio.TimeoutError:
            error = f"Job timed out after {self.job_timeout}s"
            logger.error(f"Job {job.id} ({job.job_type}) timed out on {self.worker_id}")
        except Exception as e:
            error = f"{type(e).__name__}: {e}"
            logger.error(f"Job {job.id} ({job.job_type}) failed on {self.worker_id}: {e}")
        finally:
            heartbeat.cancel()
            with suppress(asyncio.CancelledError):
                await heartbeat

        execution = await self._record(job, error, result.tokens_used)
        execution.duration_seconds = round(time.monotonic() - started, 3)
        return execution

    async def _execute(self, job: Job) -> Optional[HandlerResult]:
        handler = self._registry.get(job.job_type)
        payload = parse_payload(job.job_type, job.payload)
        async with self._db.get_session() as session:
            return await handler(session, job, payload)

    async def _heartbeat_loop(self, job_id: int) -> None:
        while True:
            await asyncio.sleep(self.heartbeat_interval)
            try:
                async with self._db.get_session() as session:
                    held = await job_queue_service.heartbeat(session, job_id, self.worker_id)
                if not held:
                    logger.warning(f"Worker {self.worker_id} no longer holds job {job_id}")
                    return
            except Exception as e:
                logger.warning(f"Heartbeat for job {job_id} failed: {e}")

    async def _record(self, job: Job, error: Optional[str], tokens_used: int) -> JobExecution:
        try:
            async with self._db.get_session() as session:
                if error is None:
                    updated = await job_queue_service.complete(
                        session, job.id, worker_id=self.worker_id, tokens_used=tokens_used
                    )
                else:
                    updated = await job_queue_service.fail(
                        session, job.id, error, worker_id=self.worker_id, tokens_used=tokens_used
                    )
        except InvalidJobStateError as e:
            # Reclaimed by another worker after our heartbeat went stale
            logger.warning(f"Worker {self.worker_id} lost job {job.id}: {e}")
            return JobExecution(job.id, job.job_type, "lost", error=str(e), tokens_used=tokens_used)

        if updated.status in ("completed", "failed") and updated.batch_run_id:
            async with self._db.get_session() as session:
                await batch_run_service.finish_if_drained(session, updated.batch_run_id)

        return JobExecution(job.id, job.job_type, updated.status, error=error, tokens_used=tokens_used)

    async def run_until_idle(self, poll_interval: Optional[float] = None) -> List[JobExecution]:
        """
        Process jobs until none is eligible.

        A queue error (claim or outcome write) is logged and retried after
        poll_interval; after queue_claim_retries consecutive errors the
        worker stops draining.
        """
        poll_interval = poll_interval or settings.queue_poll_interval_seconds
        executions: List[JobExecution] = []
        errors = 0
        while True:
            try:
                execution = await self.run_once()
            except Exception:
                errors += 1
                logger.exception(f"Worker {self.worker_id} queue error ({errors} in a row)")
                if errors >= settings.queue_claim_retries:
                    logger.error(f"Worker {self.worker_id} stops draining after {errors} queue errors")
                    return executions
                await asyncio.sleep(poll_interval)
                continue

            errors = 0
            if execution is None:
                return executions
            executions.append(execution)

    async def run(self, stop_event: asyncio.Event, poll_interval: Optional[float] = None) -> PoolStats:
        """Process jobs until stop_event is set, sleeping when the queue is idle or failing."""
        poll_interval = poll_interval or settings.queue_poll_interval_seconds
        stats = PoolStats()
        while not stop_event.is_set():
            try:
                execution = await self.run_once()
            except Exception:
                logger.exception(f"Worker {self.worker_id} queue error; retrying in {poll_interval}s")
                execution = None

            if execution is not None:
                stats.add(execution)
                continue
            with suppress(asyncio.TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=poll_interval)
        return stats


class WorkerPool:
    """N concurrent workers sharing the queue."""

    def __init__(
        self,
        concurrency: Optional[int] = None,
        registry: Optional[JobRegistry] = None,
        db: Optional[DatabaseService] = None,
        job_timeout: Optional[float] = None,
        heartbeat_interval: Optional[float] = None,
    ):
        self.concurrency = concurrency or settings.worker_concurrency
        self.workers = [
            Worker(
                worker_id=default_worker_id(index),
                registry=registry,
                db=db,
                job_timeout=job_timeout,
                heartbeat_interval=heartbeat_interval,
            )
            for index in range(self.concurrency)
        ]

    async def run_until_idle(self) -> PoolStats:
        """
        Drain the queue: every worker runs until nothing is eligible.

        Jobs waiting on a future scheduled_for (retry backoff) are left for
        a later drain.
        """
        results = await asyncio.gather(*(worker.run_until_idle() for worker in self.workers))

        stats = PoolStats()
        for executions in results:
            for execution in executions:
                stats.add(execution)

        logger.info(
            f"Worker pool idle: {stats.processed} processed "
            f"({stats.completed} completed, {stats.retried} retry, {stats.failed} failed)"
        )
        return stats

    async def run(self, stop_event: asyncio.Event) -> PoolStats:
        """Run every worker until stop_event is set."""
        results = await asyncio.gather(*(worker.run(stop_event) for worker in self.workers))
        stats = PoolStats()
        for worker_stats in results:
            for execution in worker_stats.executions:
                stats.add(execution)
        return stats
