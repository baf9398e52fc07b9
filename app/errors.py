# =============================================================================
# Error Taxonomy — Pipeline Exceptions
# =============================================================================
#
# Each failure class is handled at exactly one layer:
#
#   ValidationError        → producer (submission), rejected before enqueue
#   TransientServiceError  → RateLimiter, retried with backoff
#   AgentOutputError       → Orchestrator, folded into an AgentFailure marker
#   JobFailure             → Orchestrator, job persisted as "failed"
#   StorageError           → whoever touched the JobStore; Worker logs it
#
# AgentFailure itself is NOT an exception: it is a result model
# (app.models.domain.AgentFailure) so that a failed (chunk, agent) slot can
# only ever be recorded, never raised past the Orchestrator.
# =============================================================================

from __future__ import annotations


class PipelineError(Exception):
    """Base class for every error raised by the analysis pipeline."""


class ValidationError(PipelineError):
    """Malformed or missing job input. Raised before anything is enqueued."""


class TransientServiceError(PipelineError):
    """
    Throttling response from the completion service (HTTP 429).

    Carries `status_code` so it matches the same retry predicate as raw SDK
    errors.
    """

    status_code = 429


class AgentOutputError(PipelineError):
    """The completion service answered, but the agent could not parse it."""


class JobFailure(PipelineError):
    """Fatal, per-job error. The job ends in status "failed" and is not retried."""


class StorageError(PipelineError):
    """The job store backend is unreachable or rejected an operation."""


class InvalidStatusTransition(ValueError):
    """A status write that would move a job backwards or skip a stage."""
