from typing import Optional, List, Dict, Any
from datetime import date, datetime
from uuid import UUID
from pydantic import BaseModel, Field

from ...jobs.payloads import JobType


# =========================================================================
# ERRORS
# =========================================================================


class ErrorResponse(BaseModel):
    """Error body returned by the global exception handlers."""
    error: str
    detail: str
    timestamp: datetime


# =========================================================================
# JOB MODELS
# =========================================================================


class EnqueueJobRequest(BaseModel):
    """Request to add a job to the queue."""
    user_id: str = Field(..., min_length=1, description="User the job scores")
    job_type: JobType = Field(..., description="Job type")
    payload: Dict[str, Any] = Field(default_factory=dict, description="Payload matching the job type")
    priority: Optional[int] = Field(None, description="Lower is more urgent (default 5)")
    not_before: Optional[datetime] = Field(None, description="Earliest execution time")
    max_attempts: Optional[int] = Field(None, ge=1, description="Executions allowed (default 3)")


class EnqueueJobResponse(BaseModel):
    job_id: int


class JobResponse(BaseModel):
    """Job response model."""
    id: int = Field(..., description="Job id")
    user_id: str
    job_type: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    status: str = Field(..., description="pending, processing, retry, completed, failed")
    priority: int
    attempts: int
    max_attempts: int
    scheduled_for: datetime
    started_at: Optional[datetime] = None
    heartbeat_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    worker_id: Optional[str] = None
    last_error: Optional[str] = None
    batch_run_id: Optional[UUID] = None
    requeued_from_id: Optional[int] = None
    created_at: datetime

    class Config:
        from_attributes = True


class QueueStatsResponse(BaseModel):
    """Job counts per status."""
    pending: int = 0
    processing: int = 0
    retry: int = 0
    completed: int = 0
    failed: int = 0


# =========================================================================
# BATCH RUN MODELS
# =========================================================================


class StartRunRequest(BaseModel):
    run_type: str = Field("manual", description="manual, scheduled_daily or weekly_full")


class BatchRunErrorResponse(BaseModel):
    job_id: int
    error: str
    timestamp: datetime
    will_retry: bool

    class Config:
        from_attributes = True


class BatchRunResponse(BaseModel):
    """Batch run response model."""
    id: UUID = Field(..., description="Run UUID")
    run_type: str
    status: str = Field(..., description="running, completed, failed")
    started_at: datetime
    completed_at: Optional[datetime] = None
    total_jobs: int
    completed_jobs: int
    failed_jobs: int
    tokens_used: int
    api_cost_cents: int
    duration_seconds: Optional[int] = None
    sealed: bool
    summary: Optional[Dict[str, Any]] = None

    class Config:
        from_attributes = True


class BatchRunDetailResponse(BatchRunResponse):
    """Batch run with its error log."""
    error_log: List[BatchRunErrorResponse] = Field(default_factory=list)


class BatchRunsListResponse(BaseModel):
    """Paginated batch runs list response."""
    items: List[BatchRunResponse]
    limit: int
    offset: int


# =========================================================================
# SCORE MODELS
# =========================================================================


class UniquenessResponse(BaseModel):
    user_id: str
    score: int
    explanation: Optional[str] = None
    calculated_at: Optional[datetime] = None


class OriginalityResponse(BaseModel):
    user_id: str
    score: int
    percentile: Optional[float] = None
    label: str
    last_calculated_at: Optional[datetime] = None
    tooltip: str = "How unique your perspective is compared to others"


class DnaScoreResponse(BaseModel):
    user_id: str
    score: int
    rarity_tier: str
    trait_uniqueness_score: Optional[int] = None
    profile_completeness_score: Optional[int] = None
    behavior_score: Optional[int] = None
    content_score: Optional[int] = None
    cultural_score: Optional[int] = None
    approved_insights_count: Optional[int] = None
    calculated_at: Optional[datetime] = None


# =========================================================================
# MATCH MODELS
# =========================================================================


class WeeklyMatchResponse(BaseModel):
    match_user_id: str
    score: float
    rank: int
    week_start_date: date
    compatibility_factors: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    class Config:
        from_attributes = True


class WeeklyMatchesResponse(BaseModel):
    user_id: str
    week_start_date: date
    matches: List[WeeklyMatchResponse]


# =========================================================================
# CONTENT MODELS
# =========================================================================


class CreateContentRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    text: str = Field(..., min_length=1)
    priority: Optional[int] = None


class ContentResponse(BaseModel):
    id: UUID
    user_id: str
    analysis_status: str
    created_at: datetime
    embedded_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# =========================================================================
# SYSTEM MODELS
# =========================================================================


class HealthResponse(BaseModel):
    status: str
    version: str
    database: Dict[str, Any]
    queue: Optional[QueueStatsResponse] = None
    timestamp: datetime
