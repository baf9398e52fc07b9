# =============================================================================
# FastAPI Application — Submission and Polling Surface
# =============================================================================
#
# The API process is the producer side of the pipeline: it validates and
# enqueues jobs and serves their status and reports. It never runs an
# analysis itself; that happens in the worker (app/workers/worker.py).
#
# RUN:
#   uvicorn app.main:app --reload
# =============================================================================

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse

from app.api.analysis import router as analysis_router
from app.api.deps import close_job_store, get_job_store, get_settings
from app.config import Settings
from app.errors import StorageError, ValidationError
from app.logging import configure_logging
from app.models.responses import HealthResponse
from app.services.job_store import JobStore

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    await close_job_store()


def create_app() -> FastAPI:
    """Factory for the FastAPI application."""
    settings = get_settings()
    configure_logging(settings.log_level)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=(
            "Queue documents for multi-agent pre-review analysis and poll "
            "for the aggregated report."
        ),
        lifespan=lifespan,
    )
    app.include_router(analysis_router)

    # -------------------------------------------------------------------------
    # Error mapping
    # -------------------------------------------------------------------------

    @app.exception_handler(ValidationError)
    async def _validation_error(request: Request, exc: ValidationError):
        logger.info("Rejected submission: %s", exc)
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(StorageError)
    async def _storage_error(request: Request, exc: StorageError):
        logger.error("Job store unavailable: %s", exc)
        return JSONResponse(
            status_code=503,
            content={"detail": "Job store unavailable, try again later."},
        )

    # -------------------------------------------------------------------------
    # GET /health
    # -------------------------------------------------------------------------

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health(
        store: JobStore = Depends(get_job_store),
        settings: Settings = Depends(get_settings),
    ):
        try:
            queue_length = await store.queue_length()
        except StorageError as e:
            logger.warning("Health check: job store unreachable: %s", e)
            body = HealthResponse(
                status="unavailable",
                version=settings.app_version,
                service=settings.app_name,
            )
            return JSONResponse(
                status_code=503, content=body.model_dump(by_alias=True),
            )

        return HealthResponse(
            version=settings.app_version,
            service=settings.app_name,
            queue_length=queue_length,
        )

    return app


app = create_app()

__all__ = ["app", "create_app"]
