# =============================================================================
# Domain Models — Jobs, Statuses and Analysis Reports
# =============================================================================
#
# These models are what the job store persists in Redis and what the
# polling API returns. They are SEPARATE from the HTTP request schemas
# (app/models/requests.py), which only describe what a client may submit.
#
# WIRE FORMAT: camelCase JSON (documentContent, agentResults, ...).
# Models accept snake_case or camelCase on input (populate_by_name) and
# always dump with aliases via `to_json()`.
#
# DESIGN DECISION: AgentResult and AgentFailure are two distinct models,
# discriminated by `status`. Aggregation only reads AgentResult, so a failed
# (chunk, agent) slot cannot leak into scores or findings.
# =============================================================================

from __future__ import annotations

import base64
import binascii
import enum
from datetime import UTC, datetime
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def _utcnow() -> datetime:
    return datetime.now(UTC)


class _WireModel(BaseModel):
    """Base for every model persisted in the job store."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


# ---------------------------------------------------------------------------
# Job Lifecycle
# ---------------------------------------------------------------------------


class JobStatus(str, enum.Enum):
    """
    Lifecycle of an analysis job.

    Transitions are strictly forward:
        (none) → pending → running → completed
                                   → failed
    """

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)

    def can_transition_to(self, new: JobStatus) -> bool:
        return new in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.RUNNING}),
    JobStatus.RUNNING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class Job(_WireModel):
    """
    A submitted document waiting for (or undergoing) analysis.

    Immutable once built: the job store owns it from enqueue until the
    worker claims it, and nobody edits the payload in between.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    document_content: str
    content_encoding: Literal["text", "base64"] = "text"
    file_name: str
    file_type: str
    review_mode: str = "full"
    created_at: datetime = Field(default_factory=_utcnow)

    def text(self) -> str:
        """
        Return the document as text.

        base64 payloads are decoded as UTF-8; undecodable bytes are replaced
        rather than rejected, since extraction happened upstream.
        """
        if self.content_encoding == "text":
            return self.document_content
        try:
            raw = base64.b64decode(self.document_content, validate=True)
        except binascii.Error as e:
            raise ValueError(f"Job {self.id} has invalid base64 content: {e}") from e
        return raw.decode("utf-8", errors="replace")


# ---------------------------------------------------------------------------
# Per-(chunk, agent) Outcomes
# ---------------------------------------------------------------------------


class AgentResult(_WireModel):
    """Successful analysis of one chunk by one agent."""

    status: Literal["ok"] = "ok"
    agent_id: str
    chunk_index: int = Field(ge=0)
    confidence: float = Field(ge=0.0, le=1.0)
    summary: str = ""
    findings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    duration_ms: int = 0


class AgentFailure(_WireModel):
    """Explicit failure marker for one (chunk, agent) slot."""

    status: Literal["failed"] = "failed"
    agent_id: str
    chunk_index: int = Field(ge=0)
    error: str
    duration_ms: int = 0


AgentOutcome = Annotated[AgentResult | AgentFailure, Field(discriminator="status")]


# ---------------------------------------------------------------------------
# Final Report
# ---------------------------------------------------------------------------


class AnalysisResult(_WireModel):
    """
    The report stored under `result:{job_id}`.

    Written once per job by the orchestrator processing it; reads are
    idempotent. `status` mirrors the terminal job status.
    """

    analysis_id: str
    document_name: str
    review_mode: str = "full"
    timestamp: datetime = Field(default_factory=_utcnow)
    status: JobStatus
    error: str = ""
    overall_score: float = 0.0  # 0–10
    confidence: float = 0.0     # 0–1, mean of successful agent confidences
    summary: str = ""
    key_findings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    agent_results: list[AgentOutcome] = Field(default_factory=list)
    detailed_analysis: dict[str, dict[str, Any]] = Field(default_factory=dict)
    chunk_count: int = 0
    timings: dict[str, int] = Field(default_factory=dict)

    @classmethod
    def failed(cls, job: Job, error: str, **extra: Any) -> AnalysisResult:
        """Build a terminal failure report for a job."""
        return cls(
            analysis_id=job.id,
            document_name=job.file_name,
            review_mode=job.review_mode,
            status=JobStatus.FAILED,
            error=error or "Unknown error",
            **extra,
        )
