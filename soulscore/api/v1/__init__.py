from fastapi import APIRouter

# Aggregate all v1 routers here
from .routers import content, jobs, matches, runs, scores, system

api_router = APIRouter()
api_router.include_router(system.router)
api_router.include_router(jobs.router)
api_router.include_router(runs.router)
api_router.include_router(scores.router)
api_router.include_router(matches.router)
api_router.include_router(content.router)

__all__ = ["api_router"]
