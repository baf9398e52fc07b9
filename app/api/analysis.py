# =============================================================================
# Analysis API — Submission and Polling
# =============================================================================
#
# ENDPOINTS:
#   POST /analysis                 — Validate + enqueue a document, 202
#   GET  /analysis/{job_id}        — Poll status (report included once terminal)
#   GET  /analysis/{job_id}/result — Fetch the report alone (404 until ready)
#
# POST /analysis accepts either:
#   - multipart/form-data with a `file` part (+ optional `reviewMode`)
#   - application/json matching SubmitTextRequest
#
# DESIGN DECISION: 202 Accepted (not 200 OK) for POST /analysis.
# The analysis runs in the worker process, minutes later; the response only
# confirms the job is queued.
#
# Error mapping is registered on the app (app/main.py):
#   app.errors.ValidationError → 400, app.errors.StorageError → 503
# =============================================================================

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError as PydanticValidationError

from app.api.deps import get_job_store, get_settings
from app.config import Settings
from app.errors import ValidationError
from app.models.domain import AnalysisResult
from app.models.requests import SubmitTextRequest
from app.models.responses import ErrorResponse, JobStatusResponse, SubmitResponse
from app.services.job_store import JobStore
from app.services.submission import submit_document, submit_text

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Analysis"])


# ---------------------------------------------------------------------------
# POST /analysis — Submit a document
# ---------------------------------------------------------------------------


@router.post(
    "/analysis",
    response_model=SubmitResponse,
    status_code=202,
    responses={400: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    summary="Submit a document for pre-review analysis",
    description=(
        "Upload a text document (multipart `file`) or post its text as JSON. "
        "Returns immediately with a jobId for polling."
    ),
)
async def submit_analysis(
    request: Request,
    store: JobStore = Depends(get_job_store),
    settings: Settings = Depends(get_settings),
) -> SubmitResponse:
    content_type = request.headers.get("content-type", "")

    if content_type.startswith("multipart/form-data"):
        form = await request.form()
        upload = form.get("file")
        if upload is None or isinstance(upload, str):
            raise ValidationError("Multipart submissions need a 'file' part.")
        review_mode = form.get("reviewMode") or form.get("review_mode") or "full"
        job = await submit_document(
            store,
            settings,
            file_name=upload.filename,
            content=await upload.read(),
            review_mode=str(review_mode),
        )
    else:
        try:
            body = SubmitTextRequest.model_validate(await request.json())
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise ValidationError(f"Request body is not valid JSON: {e}") from e
        except PydanticValidationError as e:
            fields = ", ".join(
                ".".join(str(p) for p in err["loc"]) for err in e.errors()
            )
            raise ValidationError(f"Invalid submission fields: {fields}") from e
        job = await submit_text(
            store,
            settings,
            file_name=body.file_name,
            text=body.content,
            review_mode=body.review_mode,
        )

    return SubmitResponse(job_id=job.id)


# ---------------------------------------------------------------------------
# GET /analysis/{job_id} — Poll status
# ---------------------------------------------------------------------------


@router.get(
    "/analysis/{job_id}",
    response_model=JobStatusResponse,
    responses={404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    summary="Check analysis status",
)
async def get_analysis_status(
    job_id: str,
    store: JobStore = Depends(get_job_store),
) -> JobStatusResponse:
    """
    Poll until status is "completed" or "failed".

    Job states: pending → running → completed | failed
    """
    status = await store.get_status(job_id)
    if status is None:
        raise HTTPException(status_code=404, detail=f"Job {job_id} not found")

    result = await store.get_result(job_id) if status.is_terminal else None
    return JobStatusResponse(job_id=job_id, status=status, result=result)


# ---------------------------------------------------------------------------
# GET /analysis/{job_id}/result — Fetch the report
# ---------------------------------------------------------------------------


@router.get(
    "/analysis/{job_id}/result",
    response_model=AnalysisResult,
    responses={404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}},
    summary="Fetch the analysis report",
)
async def get_analysis_result(
    job_id: str,
    store: JobStore = Depends(get_job_store),
) -> AnalysisResult:
    result = await store.get_result(job_id)
    if result is None:
        status = await store.get_status(job_id)
        if status is None:
            raise HTTPException(status_code=404, detail=f"Job {job_id} not found")
        raise HTTPException(
            status_code=404,
            detail=f"Job {job_id} is {status.value}; no result yet",
        )
    return result
