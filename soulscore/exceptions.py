"""
Domain exceptions for the scoring pipeline.

Insufficient-data conditions (too few active days, too little content, a tiny
population sample) are not errors and never raise; analyzers return fallback
scores with an explanation instead.
"""

from typing import Optional
from uuid import UUID


class ScoringError(Exception):
    """Base class for pipeline errors."""


class JobNotFoundError(ScoringError):
    def __init__(self, job_id: int):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class InvalidJobStateError(ScoringError):
    """A job was not in the status an operation requires (lost compare-and-set)."""

    def __init__(self, job_id: int, expected: str, actual: Optional[str] = None):
        message = f"Job {job_id} is not {expected}"
        if actual:
            message += f" (status: {actual})"
        super().__init__(message)
        self.job_id = job_id
        self.expected = expected
        self.actual = actual


class UnknownJobTypeError(ScoringError):
    def __init__(self, job_type: str):
        super().__init__(f"No handler registered for job type: {job_type}")
        self.job_type = job_type


class BatchRunNotFoundError(ScoringError):
    def __init__(self, run_id: UUID):
        super().__init__(f"Batch run not found: {run_id}")
        self.run_id = run_id


class ContentNotFoundError(ScoringError):
    def __init__(self, content_id: UUID):
        super().__init__(f"Content not found: {content_id}")
        self.content_id = content_id


class EmbeddingUnavailableError(ScoringError):
    """Raised when the OpenAI client cannot be configured."""
