# =============================================================================
# API Response Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming OUT of the API.
# FastAPI serialises response models by alias, so every field goes out in
# camelCase like the stored report (jobId, queueLength, ...).
#
# DESIGN DECISION: Status and report are separate reads.
# GET /analysis/{id} is the cheap poll (status, plus the report once
# terminal); GET /analysis/{id}/result returns the report alone.
# =============================================================================

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.models.domain import AnalysisResult, JobStatus


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class HealthResponse(_ApiModel):
    """Response for GET /health — confirms the API and job store are up."""

    status: str = "ok"
    version: str
    service: str
    queue_length: int | None = Field(
        default=None,
        description="Jobs waiting in the queue (null when Redis is unreachable)",
    )


class SubmitResponse(_ApiModel):
    """
    Response for POST /analysis — the job was accepted and queued.

    The report is NOT ready yet. Poll GET /analysis/{jobId} until status is
    "completed" or "failed".
    """

    job_id: str = Field(description="ID to poll for status and result")
    status: JobStatus = Field(default=JobStatus.PENDING)
    message: str = Field(default="Document queued for analysis.")


class JobStatusResponse(_ApiModel):
    """Response for GET /analysis/{job_id}."""

    job_id: str
    status: JobStatus
    result: AnalysisResult | None = Field(
        default=None,
        description="The report, present once the job is completed or failed",
    )


class ErrorResponse(_ApiModel):
    """Body of 4xx/5xx responses raised by the analysis routes."""

    detail: str
