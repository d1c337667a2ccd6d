# ============================================================================
# SoulScore - Application Configuration
# ============================================================================
"""
Application configuration module using Pydantic Settings.

This module defines all configuration parameters for the scoring pipeline,
including:
- API settings
- Database connection
- OpenAI embedding / chat configuration
- Job queue retry, backoff and worker settings
- Scoring constants for the behavioral and originality analyzers

Usage:
    from soulscore.config import settings
    delay = settings.queue_backoff_base_seconds
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # =========================================================================
    # API SETTINGS
    # =========================================================================
    api_title: str = "SoulScore API"
    api_version: str = "1.0.0"
    debug: bool = Field(default=False, description="Enable verbose logging & SQL echo")
    log_level: str = Field(default="INFO", description="Root log level for entry points")

    # =========================================================================
    # DATABASE
    # =========================================================================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/soulscore.db",
        description="SQLAlchemy async URL (sqlite+aiosqlite or postgresql+asyncpg)",
    )
    db_pool_size: int = Field(default=20, description="PostgreSQL pool size")
    db_max_overflow: int = Field(default=40, description="PostgreSQL pool overflow")
    db_pool_recycle: int = Field(default=3600, description="Recycle connections after N seconds")

    # =========================================================================
    # OPENAI CONFIGURATION
    # =========================================================================
    openai_api_key: Optional[str] = Field(default=None, description="OpenAI API key")
    openai_base_url: str = Field(default="https://api.openai.com/v1", description="OpenAI base URL")
    openai_model: str = Field(default="gpt-4o-mini", description="Chat model for content analysis")
    openai_embedding_model: str = Field(default="text-embedding-3-small", description="Embedding model")
    openai_embedding_dimensions: int = Field(default=1536, description="Embedding vector length")
    openai_timeout: float = Field(default=30.0, description="Timeout (s) for OpenAI requests")
    openai_max_retries: int = Field(default=0, description="Client-side retries (job backoff retries instead)")
    analysis_max_tokens: int = Field(default=300, description="Completion budget for content analysis")
    analysis_temperature: float = Field(default=0.3)
    analysis_max_insights: int = Field(default=5, description="Insights kept per content item")

    # =========================================================================
    # JOB QUEUE
    # =========================================================================
    queue_default_priority: int = Field(default=5, description="Lower = more urgent")
    queue_default_max_attempts: int = Field(default=3, description="Attempts before a job is failed")
    queue_backoff_base_seconds: int = Field(default=300, description="Backoff = base * 2^attempts")
    queue_job_timeout_seconds: float = Field(default=120.0, description="Max execution time per job")
    queue_heartbeat_interval_seconds: float = Field(default=15.0, description="Heartbeat while executing")
    queue_stale_grace_seconds: int = Field(default=600, description="Processing jobs without heartbeat are reclaimable after this")
    queue_poll_interval_seconds: float = Field(default=2.0, description="Idle worker sleep")
    queue_claim_retries: int = Field(default=5, description="CAS attempts per claim, and consecutive queue errors a draining worker tolerates")
    worker_concurrency: int = Field(default=4, description="Workers in the pool")

    # =========================================================================
    # BATCH RUNS
    # =========================================================================
    batch_cost_cents_per_1k_tokens: float = Field(default=0.15, description="Estimated API cost")
    batch_fail_on_any_failure: bool = Field(default=True, description="Run status failed if any job failed")
    batch_drain_timeout_seconds: float = Field(default=3600.0, description="Max wait for a run to drain")

    # =========================================================================
    # BEHAVIORAL UNIQUENESS
    # =========================================================================
    behavior_min_days_active: int = Field(default=7)
    behavior_no_snapshot_score: int = Field(default=30)
    behavior_uniqueness_scale: float = Field(default=30.0, description="Score = mean(|z|) * scale")
    behavior_extreme_z_threshold: float = Field(default=2.0)
    population_min_snapshots: int = Field(default=10, description="Below this, default statistics are used")
    population_stats_ttl_seconds: int = Field(default=3600, description="Cached statistics reuse window")

    # =========================================================================
    # CONTENT ORIGINALITY
    # =========================================================================
    originality_min_content: int = Field(default=3)
    originality_min_population: int = Field(default=10)
    originality_max_user_embeddings: int = Field(default=10)
    originality_population_sample_size: int = Field(default=1000)
    originality_default_score: int = Field(default=50)
    originality_cache_days: int = Field(default=7)
    embedding_max_chars: int = Field(default=8000, description="Embedding input budget")

    # =========================================================================
    # WEEKLY MATCHES
    # =========================================================================
    weekly_matches_top_n: Optional[int] = Field(default=5, description="Matches kept per user per week")

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False
        extra = "ignore"


# Global settings instance (imported elsewhere)
settings = Settings()
