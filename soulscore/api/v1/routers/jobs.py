# soulscore/api/v1/routers/jobs.py
"""
Jobs API Router.

Enqueue scoring jobs, inspect them, and re-enqueue failed ones.
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ....database.base import get_db
from ....exceptions import InvalidJobStateError, JobNotFoundError
from ....services.job_queue_service import job_queue_service
from ..models import EnqueueJobRequest, EnqueueJobResponse, JobResponse, QueueStatsResponse

logger = logging.getLogger("soulscore.api.jobs")

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post(
    "",
    response_model=EnqueueJobResponse,
    status_code=201,
    summary="Enqueue a job",
)
async def enqueue_job(
    request: EnqueueJobRequest,
    session: AsyncSession = Depends(get_db),
) -> EnqueueJobResponse:
    """Add a job to the queue. The payload is validated against the job type."""
    job = await job_queue_service.enqueue(
        session,
        request.job_type,
        request.user_id,
        request.payload,
        priority=request.priority,
        not_before=request.not_before,
        max_attempts=request.max_attempts,
    )
    return EnqueueJobResponse(job_id=job.id)


@router.get("", response_model=List[JobResponse], summary="List jobs")
async def list_jobs(
    status: Optional[str] = Query(None, description="Filter by status"),
    job_type: Optional[str] = Query(None, description="Filter by job type"),
    user_id: Optional[str] = Query(None, description="Filter by user"),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_db),
) -> List[JobResponse]:
    jobs = await job_queue_service.list_jobs(
        session, status=status, job_type=job_type, user_id=user_id, limit=limit, offset=offset
    )
    return [JobResponse.model_validate(job) for job in jobs]


@router.get("/stats", response_model=QueueStatsResponse, summary="Job counts per status")
async def queue_stats(session: AsyncSession = Depends(get_db)) -> QueueStatsResponse:
    return QueueStatsResponse(**await job_queue_service.queue_stats(session))


@router.get("/{job_id}", response_model=JobResponse, summary="Get a job")
async def get_job(job_id: int, session: AsyncSession = Depends(get_db)) -> JobResponse:
    job = await job_queue_service.get_job(session, job_id)
    if not job:
        raise HTTPException(status_code=404, detail=f"Job not found: {job_id}")
    return JobResponse.model_validate(job)


@router.post(
    "/{job_id}/requeue",
    response_model=JobResponse,
    status_code=201,
    summary="Re-enqueue a failed job",
    description="Creates a fresh pending job from a failed one; the failed job is left untouched.",
)
async def requeue_job(job_id: int, session: AsyncSession = Depends(get_db)) -> JobResponse:
    try:
        job = await job_queue_service.requeue(session, job_id)
    except JobNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InvalidJobStateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return JobResponse.model_validate(job)
