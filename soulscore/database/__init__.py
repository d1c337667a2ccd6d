# soulscore/database/__init__.py
"""
Database package for SoulScore.

Provides SQLAlchemy models, base classes, and database session management.
"""

from .base import Base, get_db
from .models import (
    BatchRun,
    BatchRunError,
    BehavioralMetricsSnapshot,
    ContentInsight,
    ContentItem,
    Job,
    PopulationStatistics,
    SimilarityCacheEntry,
    UserScore,
    WeeklyMatch,
)

__all__ = [
    "Base",
    "get_db",
    "BatchRun",
    "BatchRunError",
    "BehavioralMetricsSnapshot",
    "ContentInsight",
    "ContentItem",
    "Job",
    "PopulationStatistics",
    "SimilarityCacheEntry",
    "UserScore",
    "WeeklyMatch",
]
