# soulscore/api/v1/routers/system.py
from datetime import datetime

from fastapi import APIRouter

from ....config import settings
from ....services.database_service import database_service
from ....services.job_queue_service import job_queue_service
from ..models import HealthResponse, QueueStatsResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    """Health check endpoint."""
    database = await database_service.health_check()

    queue = None
    if database.get("connected"):
        async with database_service.get_session() as session:
            queue = QueueStatsResponse(**await job_queue_service.queue_stats(session))

    return HealthResponse(
        status="healthy" if database.get("connected") else "degraded",
        version=settings.api_version,
        database=database,
        queue=queue,
        timestamp=datetime.now(),
    )
