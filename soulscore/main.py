# ============================================================================
# SoulScore - FastAPI Application Entry Point
# ============================================================================
"""
Main FastAPI application module for SoulScore, the user scoring pipeline.

This module sets up the FastAPI application with:
- Application lifespan (database initialization and engine disposal)
- Error handling for validation, HTTP and unexpected errors
- API router integration

The API only reads committed scores and enqueues work; scoring itself runs
in worker processes (see soulscore.commands.run_batch).

Usage:
    Direct: python -m soulscore.main
    Server: uvicorn soulscore.main:app --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .api.v1 import api_router
from .api.v1.models import ErrorResponse
from .config import settings
from .services.database_service import database_service

logger = logging.getLogger("soulscore.main")


# ============================================================================
# APPLICATION LIFESPAN
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup and dispose of the engine on shutdown."""
    logger.info(f"Starting {settings.api_title} v{settings.api_version}")
    await database_service.init_db()

    yield

    logger.info(f"Shutting down {settings.api_title}")
    await database_service.close()


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    description=(
        "SoulScore - behavioral uniqueness, content originality and DNA scores\n\n"
        "Scores are computed asynchronously by a durable job queue and read "
        "from committed results."
    ),
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
)


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """
    Global exception handler for Pydantic validation errors.

    Job payloads are validated against their type inside the service layer,
    so a mismatched payload surfaces here as a 422.
    """
    error_response = ErrorResponse(
        error="Validation Error",
        detail=str(exc),
        timestamp=datetime.now()
    )
    return JSONResponse(status_code=422, content=error_response.model_dump(mode="json"))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    error_response = ErrorResponse(
        error=f"HTTP {exc.status_code}",
        detail=str(exc.detail),
        timestamp=datetime.now()
    )
    return JSONResponse(status_code=exc.status_code, content=error_response.model_dump(mode="json"))


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Global exception handler for unhandled exceptions.

    The error detail is only exposed in debug mode.
    """
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")

    error_response = ErrorResponse(
        error="Internal Server Error",
        detail="An unexpected error occurred",
        timestamp=datetime.now()
    )
    if settings.debug:
        error_response.detail = str(exc)

    return JSONResponse(status_code=500, content=error_response.model_dump(mode="json"))


# ============================================================================
# ROUTER CONFIGURATION
# ============================================================================

app.include_router(api_router, prefix="/api/v1")


@app.get("/", tags=["root"])
async def root() -> Dict[str, Any]:
    """Root endpoint providing API information."""
    return {
        "name": settings.api_title,
        "version": settings.api_version,
        "status": "running",
        "docs_url": "/docs",
        "health_check": "/api/v1/health",
        "timestamp": datetime.now(),
    }


# ============================================================================
# DEVELOPMENT SERVER
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    uvicorn.run("soulscore.main:app", host="0.0.0.0", port=8000, log_level="info")
