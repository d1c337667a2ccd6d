"""
Job handler registry.

Handlers are registered explicitly per job type:

    @job_registry.register(JobType.DNA_RECALCULATION)
    async def handle_dna_recalculation(session, job, payload) -> HandlerResult:
        ...

A job whose type has no handler fails (UnknownJobTypeError) rather than
being silently skipped.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession

from ..database.models import Job
from ..exceptions import UnknownJobTypeError
from .payloads import JobType

logger = logging.getLogger("soulscore.jobs.registry")


@dataclass
class HandlerResult:
    """What a handler reports back to the worker."""
    tokens_used: int = 0
    details: Dict[str, Any] = field(default_factory=dict)


JobHandler = Callable[[AsyncSession, Job, Any], Awaitable[Optional[HandlerResult]]]


class JobRegistry:

    def __init__(self):
        self._handlers: Dict[str, JobHandler] = {}

    def register(self, job_type: Union[JobType, str]):
        """Decorator registering a handler for a job type (replaces any previous one)."""
        key = JobType(job_type).value

        def decorator(func: JobHandler) -> JobHandler:
            if key in self._handlers and self._handlers[key] is not func:
                logger.warning(f"Replacing handler for job type {key}")
            self._handlers[key] = func
            return func

        return decorator

    def get(self, job_type: str) -> JobHandler:
        try:
            return self._handlers[job_type]
        except KeyError:
            raise UnknownJobTypeError(job_type)

    def job_types(self) -> List[str]:
        return sorted(self._handlers)

    def __contains__(self, job_type: str) -> bool:
        return job_type in self._handlers


# Global registry
job_registry = JobRegistry()
