"""
FastAPI application for headshot-studio.

The app is a thin adapter over the JobService; the dispatcher and janitor
run inside the application lifespan.

Usage:
    uvicorn app.main:app --reload --port 8081
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.jobs.routes import router as jobs_router
from app.limiter import limiter
from headshot_core.config import settings
from headshot_core.factory import get_job_service
from headshot_core.logging import setup_logging
from headshot_core.runtime.errors import ErrorKind, JobFailedError, ServiceError
from headshot_core.service import JobService

STATUS_BY_KIND = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.EXPIRED: 410,
    ErrorKind.NOT_READY: 202,
    ErrorKind.STORAGE_UNAVAILABLE: 503,
}


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Map core errors to HTTP responses."""
    if isinstance(exc, JobFailedError):
        status_code = 409
    else:
        status_code = STATUS_BY_KIND.get(exc.kind, 500)
    return JSONResponse(status_code=status_code, content={"error": exc.to_dict()})


def create_app(service: JobService | None = None) -> FastAPI:
    """
    Create the FastAPI app.

    Args:
        service: JobService to expose (defaults to the process-wide one).
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.LOG_LEVEL)
        await app.state.job_service.start()
        try:
            yield
        finally:
            await app.state.job_service.stop()

    app = FastAPI(
        title="Headshot Studio",
        description="Asynchronous AI headshot generation jobs",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.job_service = service or get_job_service()

    # Rate limiter setup
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_middleware(SlowAPIMiddleware)

    # NOTE: CORS must be the last middleware added so it runs FIRST
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["http://localhost:5173", "http://localhost:3000"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(jobs_router, tags=["Jobs"])

    @app.get("/health")
    def health():
        """Health check endpoint."""
        service = app.state.job_service
        return {
            "status": "ok",
            "service": settings.SERVICE_NAME,
            "dispatcher_running": service.dispatcher.running,
            "inflight": service.dispatcher.inflight,
        }

    return app


app = create_app()
