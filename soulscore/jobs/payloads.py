"""
Typed job payloads.

Every job type has its own payload model; together they form a tagged union
discriminated by ``job_type``. Payloads are stored without the tag (the job
row carries it) and re-attached when parsed.
"""

from datetime import date
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter


class JobType(str, Enum):
    """Job types understood by the worker pool."""
    CONTENT_ANALYSIS = "content_analysis"                    # Insight extraction + embedding
    EMBEDDING_UPDATE = "embedding_update"                    # Embedding only
    DNA_RECALCULATION = "dna_recalculation"                  # Behavioral uniqueness + composite score
    ORIGINALITY_RECALCULATION = "originality_recalculation"  # Content originality
    WEEKLY_MATCHES = "weekly_matches"                        # Weekly ranked match list


class ContentAnalysisPayload(BaseModel):
    job_type: Literal["content_analysis"] = "content_analysis"
    content_id: UUID


class EmbeddingUpdatePayload(BaseModel):
    job_type: Literal["embedding_update"] = "embedding_update"
    content_id: UUID


class DnaRecalculationPayload(BaseModel):
    job_type: Literal["dna_recalculation"] = "dna_recalculation"
    days_active: int = Field(..., ge=0, description="Days the user has been active")


class OriginalityRecalculationPayload(BaseModel):
    job_type: Literal["originality_recalculation"] = "originality_recalculation"


class MatchCandidate(BaseModel):
    """Externally scored match candidate."""
    match_user_id: str
    score: float
    compatibility_factors: Dict[str, Any] = Field(default_factory=dict)


class WeeklyMatchesPayload(BaseModel):
    job_type: Literal["weekly_matches"] = "weekly_matches"
    week_start_date: date
    candidates: List[MatchCandidate] = Field(default_factory=list)


JobPayload = Annotated[
    Union[
        ContentAnalysisPayload,
        EmbeddingUpdatePayload,
        DnaRecalculationPayload,
        OriginalityRecalculationPayload,
        WeeklyMatchesPayload,
    ],
    Field(discriminator="job_type"),
]

_payload_adapter: TypeAdapter = TypeAdapter(JobPayload)


def parse_payload(job_type: str, payload: Optional[Dict[str, Any]]) -> JobPayload:
    """
    Build the typed payload for a stored job.

    Raises:
        pydantic.ValidationError: If the job type is unknown or the payload
            does not match its model
    """
    data = dict(payload or {})
    data["job_type"] = job_type
    return _payload_adapter.validate_python(data)


def dump_payload(payload: BaseModel) -> Dict[str, Any]:
    """Serialize a payload for the JSON column (without the tag)."""
    return payload.model_dump(mode="json", exclude={"job_type"})
