# soulscore/api/v1/routers/runs.py
"""
Batch Runs API Router.

Trigger the scheduler and query batch run telemetry.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ....database.base import get_db
from ....jobs.scheduler import batch_scheduler
from ....services.batch_run_service import batch_run_service
from ..models import (
    BatchRunDetailResponse,
    BatchRunErrorResponse,
    BatchRunResponse,
    BatchRunsListResponse,
    StartRunRequest,
)

logger = logging.getLogger("soulscore.api.runs")

router = APIRouter(prefix="/runs", tags=["runs"])


@router.post(
    "",
    response_model=BatchRunResponse,
    status_code=201,
    summary="Start a batch run",
    description="Creates a run and enqueues a job for every user needing recalculation. "
                "Workers drain the jobs; the run closes when its last job is terminal.",
)
async def start_run(
    request: StartRunRequest,
    session: AsyncSession = Depends(get_db),
) -> BatchRunResponse:
    try:
        run = await batch_scheduler.start_batch(session, request.run_type)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return BatchRunResponse.model_validate(run)


@router.get("", response_model=BatchRunsListResponse, summary="List batch runs")
async def list_runs(
    run_type: Optional[str] = Query(None, description="Filter by run type"),
    status: Optional[str] = Query(None, description="Filter by status (running, completed, failed)"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_db),
) -> BatchRunsListResponse:
    runs = await batch_run_service.list_runs(
        session, run_type=run_type, status=status, limit=limit, offset=offset
    )
    return BatchRunsListResponse(
        items=[BatchRunResponse.model_validate(r) for r in runs],
        limit=limit,
        offset=offset,
    )


@router.get("/{run_id}", response_model=BatchRunDetailResponse, summary="Get a batch run with its error log")
async def get_run(run_id: UUID, session: AsyncSession = Depends(get_db)) -> BatchRunDetailResponse:
    run = await batch_run_service.get_run(session, run_id, with_errors=True)
    if not run:
        raise HTTPException(status_code=404, detail=f"Batch run not found: {run_id}")

    return BatchRunDetailResponse(
        **BatchRunResponse.model_validate(run).model_dump(),
        error_log=[BatchRunErrorResponse.model_validate(e) for e in run.errors],
    )
