"""
Handlers for every job type.

Each handler runs inside its own session, opened by the worker, which
commits when the handler returns. Handlers are safe to re-run: analysis
skips already analysed content, scores are upserts and weekly match lists
are replaced.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import Job
from ..services.content_service import content_service
from ..services.dna_score_service import dna_score_service
from ..services.match_ranker import match_ranker
from ..services.originality_service import originality_service
from .payloads import (
    ContentAnalysisPayload,
    DnaRecalculationPayload,
    EmbeddingUpdatePayload,
    JobType,
    OriginalityRecalculationPayload,
    WeeklyMatchesPayload,
)
from .registry import HandlerResult, job_registry

logger = logging.getLogger("soulscore.jobs.handlers")


@job_registry.register(JobType.CONTENT_ANALYSIS)
async def handle_content_analysis(
    session: AsyncSession, job: Job, payload: ContentAnalysisPayload
) -> HandlerResult:
    tokens_used = await content_service.analyze_content(session, payload.content_id)
    return HandlerResult(tokens_used=tokens_used)


@job_registry.register(JobType.EMBEDDING_UPDATE)
async def handle_embedding_update(
    session: AsyncSession, job: Job, payload: EmbeddingUpdatePayload
) -> HandlerResult:
    embedding = await content_service.embed_content(session, payload.content_id)
    return HandlerResult(details={"dimensions": len(embedding)})


@job_registry.register(JobType.DNA_RECALCULATION)
async def handle_dna_recalculation(
    session: AsyncSession, job: Job, payload: DnaRecalculationPayload
) -> HandlerResult:
    result = await dna_score_service.recalculate(session, job.user_id, payload.days_active)
    return HandlerResult(
        details={
            "dna_score": result.score,
            "rarity_tier": result.rarity_tier,
            "behavior_score": result.behavior_score,
        }
    )


@job_registry.register(JobType.ORIGINALITY_RECALCULATION)
async def handle_originality_recalculation(
    session: AsyncSession, job: Job, payload: OriginalityRecalculationPayload
) -> HandlerResult:
    result = await originality_service.compute(session, job.user_id)
    return HandlerResult(
        details={
            "originality_score": result.score,
            "from_cache": result.from_cache,
            "is_fallback": result.is_fallback,
        }
    )


@job_registry.register(JobType.WEEKLY_MATCHES)
async def handle_weekly_matches(
    session: AsyncSession, job: Job, payload: WeeklyMatchesPayload
) -> HandlerResult:
    matches = await match_ranker.rank_week(
        session,
        job.user_id,
        payload.week_start_date,
        payload.candidates,
        batch_run_id=job.batch_run_id,
    )
    return HandlerResult(details={"matches_generated": len(matches)})
