# soulscore/database/models.py
"""
SQLAlchemy ORM models for the scoring pipeline.

Models:
    - Job: Durable scoring job in the priority queue
    - BatchRun: One scheduler invocation with aggregated counters
    - BatchRunError: Append-only error log entry of a batch run
    - BehavioralMetricsSnapshot: Rolled-up activity metrics for a tracking period
    - PopulationStatistics: Cached per-metric mean/stddev across all snapshots
    - ContentItem: User-authored content with its embedding
    - ContentInsight: Insight extracted from a content item
    - SimilarityCacheEntry: Last computed originality statistics per user
    - UserScore: Latest committed scores per user (read side)
    - WeeklyMatch: Ranked weekly match list rows

User ids are opaque strings issued by the identity provider.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    TypeDecorator,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship

from .base import Base


# UUID type that works with both SQLite and PostgreSQL
class UUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL's UUID type when available, otherwise uses String(36).
    """
    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == "postgresql":
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None:
            return value
        if dialect.name == "postgresql":
            return value if isinstance(value, uuid.UUID) else uuid.UUID(str(value))
        return str(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return value
        if not isinstance(value, uuid.UUID):
            return uuid.UUID(value)
        return value


class Job(Base):
    """
    Scoring job in the durable priority queue.

    Attributes:
        id: Integer id, also the insertion-order tie breaker
        user_id: User the job scores
        job_type: Handler key (content_analysis, dna_recalculation, ...)
        payload: Typed payload serialized as JSON
        status: pending, processing, retry, completed, failed
        priority: Lower is more urgent
        attempts: Failed executions so far (never exceeds max_attempts)
        max_attempts: Executions allowed before the job is failed
        scheduled_for: Earliest eligible execution time
        started_at: When the current/last execution was claimed
        heartbeat_at: Last liveness signal from the executing worker
        completed_at: When the job reached completed or failed
        worker_id: Worker holding (or last holding) the job
        last_error: Error text of the last failed execution
        batch_run_id: Batch run that spawned the job (None for ad hoc jobs)
        requeued_from_id: Failed job this job was re-enqueued from

    Status Transitions:
        pending/retry → processing  (claim)
        processing → completed      (complete)
        processing → retry          (fail, attempts < max_attempts)
        processing → failed         (fail, attempts exhausted)
    """

    __tablename__ = "jobs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(128), nullable=False, index=True)
    job_type = Column(String(50), nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)

    status = Column(String(20), nullable=False, default="pending")
    priority = Column(Integer, nullable=False, default=5)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=3)

    scheduled_for = Column(DateTime, nullable=False, default=datetime.utcnow)
    started_at = Column(DateTime, nullable=True)
    heartbeat_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    worker_id = Column(String(100), nullable=True)
    last_error = Column(Text, nullable=True)

    batch_run_id = Column(
        UUID(), ForeignKey("batch_runs.id", ondelete="SET NULL"), nullable=True, index=True
    )
    requeued_from_id = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    batch_run = relationship("BatchRun", back_populates="jobs")

    __table_args__ = (
        Index("ix_jobs_claim", "status", "priority", "scheduled_for", "id"),
    )

    def __repr__(self) -> str:
        return f"<Job(id={self.id}, type={self.job_type}, status={self.status})>"


class BatchRun(Base):
    """
    One invocation of the scheduler.

    Counters are only ever changed with SQL-side increments so concurrent
    workers never lose updates. The error log lives in batch_run_errors as
    append-only rows.

    Run Types:
        - manual: Operator-triggered
        - scheduled_daily: Daily recalculation of users with new data
        - weekly_full: Full recalculation of every user with data
    """

    __tablename__ = "batch_runs"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    run_type = Column(String(50), nullable=False, index=True)
    status = Column(String(20), nullable=False, default="running", index=True)

    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)

    total_jobs = Column(Integer, nullable=False, default=0)
    completed_jobs = Column(Integer, nullable=False, default=0)
    failed_jobs = Column(Integer, nullable=False, default=0)
    tokens_used = Column(Integer, nullable=False, default=0)
    api_cost_cents = Column(Integer, nullable=False, default=0)
    duration_seconds = Column(Integer, nullable=True)

    # All jobs of the run have been enqueued
    sealed = Column(Boolean, nullable=False, default=False)
    summary = Column(JSON, nullable=True)

    jobs = relationship("Job", back_populates="batch_run")
    errors = relationship(
        "BatchRunError",
        back_populates="batch_run",
        cascade="all, delete-orphan",
        order_by="BatchRunError.id",
    )

    @property
    def error_log(self) -> List[Dict[str, Any]]:
        return [error.to_dict() for error in self.errors]

    def __repr__(self) -> str:
        return f"<BatchRun(id={self.id}, type={self.run_type}, status={self.status})>"


class BatchRunError(Base):
    """Error log entry of a batch run; rows are only ever inserted."""

    __tablename__ = "batch_run_errors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    batch_run_id = Column(
        UUID(), ForeignKey("batch_runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    job_id = Column(Integer, nullable=False)
    error = Column(Text, nullable=False)
    timestamp = Column(DateTime, nullable=False, default=datetime.utcnow)
    will_retry = Column(Boolean, nullable=False)

    batch_run = relationship("BatchRun", back_populates="errors")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "error": self.error,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
            "will_retry": self.will_retry,
        }


class BehavioralMetricsSnapshot(Base):
    """
    One user's rolled-up activity metrics for a tracking period.

    Metrics arrive pre-aggregated. The analyzer writes z_scores and
    uniqueness_score back onto the latest snapshot.
    """

    __tablename__ = "behavioral_snapshots"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(128), nullable=False, index=True)
    tracking_period_start = Column(DateTime, nullable=False)
    tracking_period_end = Column(DateTime, nullable=False)

    avg_response_time_hours = Column(Float, nullable=True)
    median_response_time_hours = Column(Float, nullable=True)
    response_time_stddev = Column(Float, nullable=True)
    messages_per_match = Column(Float, nullable=True)
    avg_message_length = Column(Float, nullable=True)
    emoji_usage_rate = Column(Float, nullable=True)
    voice_message_ratio = Column(Float, nullable=True)
    profile_views_per_day = Column(Float, nullable=True)
    match_acceptance_rate = Column(Float, nullable=True)
    peak_activity_hour = Column(Float, nullable=True)
    weekend_activity_ratio = Column(Float, nullable=True)
    profile_completion_speed_days = Column(Float, nullable=True)
    insights_approval_rate = Column(Float, nullable=True)
    avg_swipe_time_seconds = Column(Float, nullable=True)

    z_scores = Column(JSON, nullable=True)
    uniqueness_score = Column(Integer, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "tracking_period_end", name="uq_snapshot_user_period"),
        Index("ix_snapshots_user_period", "user_id", "tracking_period_end"),
    )


class PopulationStatistics(Base):
    """Cached population statistics (single row, id=1)."""

    __tablename__ = "population_statistics"

    id = Column(Integer, primary_key=True)
    stats = Column(JSON, nullable=False)  # {metric: {"mean": float, "stddev": float}}
    snapshot_count = Column(Integer, nullable=False, default=0)
    is_default = Column(Boolean, nullable=False, default=False)
    computed_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class ContentItem(Base):
    """
    User-authored content.

    The embedding is generated once (embedding_update / content_analysis jobs)
    and reused. Deletion is soft so population queries can skip the row.
    """

    __tablename__ = "content_items"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(128), nullable=False, index=True)
    text = Column(Text, nullable=False)
    text_hash = Column(String(64), nullable=True, index=True)

    embedding = Column(JSON(none_as_null=True), nullable=True)
    embedded_at = Column(DateTime, nullable=True)

    analysis_status = Column(String(20), nullable=False, default="pending")
    analysis_result = Column(JSON(none_as_null=True), nullable=True)
    analyzed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    deleted_at = Column(DateTime, nullable=True)

    insights = relationship(
        "ContentInsight", back_populates="content", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("ix_content_user_created", "user_id", "created_at"),
    )


class ContentInsight(Base):
    """Insight extracted from a content item; approved by the user elsewhere."""

    __tablename__ = "content_insights"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    content_id = Column(
        UUID(), ForeignKey("content_items.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id = Column(String(128), nullable=False, index=True)
    category = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    confidence = Column(Integer, nullable=False, default=70)
    status = Column(String(20), nullable=False, default="pending")  # pending, approved, rejected
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    content = relationship("ContentItem", back_populates="insights")


class SimilarityCacheEntry(Base):
    """Last computed originality statistics for a user."""

    __tablename__ = "content_similarity_cache"

    user_id = Column(String(128), primary_key=True)
    originality_score = Column(Integer, nullable=False)
    avg_similarity = Column(Float, nullable=False)
    min_similarity = Column(Float, nullable=False)
    max_similarity = Column(Float, nullable=False)
    content_count = Column(Integer, nullable=False)
    population_sample_size = Column(Integer, nullable=False, default=0)
    calculated_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    valid_until = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class UserScore(Base):
    """Latest committed scores per user; read APIs only ever read this table."""

    __tablename__ = "user_scores"

    user_id = Column(String(128), primary_key=True)

    uniqueness_score = Column(Integer, nullable=True)
    uniqueness_explanation = Column(Text, nullable=True)
    uniqueness_calculated_at = Column(DateTime, nullable=True)

    originality_score = Column(Integer, nullable=True)
    originality_percentile = Column(Float, nullable=True)
    originality_calculated_at = Column(DateTime, nullable=True)

    dna_score = Column(Integer, nullable=True)
    rarity_tier = Column(String(20), nullable=True)
    trait_uniqueness_score = Column(Integer, nullable=True)
    profile_completeness_score = Column(Integer, nullable=True)
    behavior_score = Column(Integer, nullable=True)
    content_score = Column(Integer, nullable=True)
    cultural_score = Column(Integer, nullable=True)
    approved_insights_count = Column(Integer, nullable=True)
    dna_calculated_at = Column(DateTime, nullable=True)

    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow)


class WeeklyMatch(Base):
    """
    Ranked weekly match row.

    (user_id, match_user_id, week_start_date) is unique; re-ranking a week
    replaces its rows.
    """

    __tablename__ = "weekly_matches"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    user_id = Column(String(128), nullable=False)
    match_user_id = Column(String(128), nullable=False)
    score = Column(Float, nullable=False)
    rank = Column(Integer, nullable=False)
    week_start_date = Column(Date, nullable=False)
    compatibility_factors = Column(JSON, nullable=False, default=dict)
    batch_run_id = Column(
        UUID(), ForeignKey("batch_runs.id", ondelete="SET NULL"), nullable=True
    )
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint(
            "user_id", "match_user_id", "week_start_date", name="uq_weekly_match_pair"
        ),
        UniqueConstraint("user_id", "week_start_date", "rank", name="uq_weekly_match_rank"),
        Index("ix_weekly_matches_user_week", "user_id", "week_start_date"),
    )
