# =============================================================================
# Submission Service — Producer Side of the Job Queue
# =============================================================================
#
# Turns an uploaded document (raw bytes or plain text) into a Job and puts
# it on the queue:
#
#   validate ──▶ build Job (uuid4 id, base64 payload) ──▶ JobStore.enqueue
#
# Validation failures raise ValidationError BEFORE anything touches Redis,
# so a rejected submission never leaves a queue entry or a status key.
#
# DESIGN DECISION: Uploaded bytes are stored base64-encoded.
# The queue holds JSON; base64 keeps arbitrary uploads intact through it.
# Plain-text submissions (JSON body) are stored as-is with
# content_encoding="text".
# =============================================================================

from __future__ import annotations

import base64
import logging
import uuid
from pathlib import PurePath

from app.config import Settings
from app.errors import ValidationError
from app.models.domain import Job
from app.services.job_store import JobStore

logger = logging.getLogger(__name__)


def file_type_of(file_name: str) -> str:
    """Lower-cased extension without the dot ("" when there is none)."""
    return PurePath(file_name).suffix.lstrip(".").lower()


def validate_submission(
    file_name: str | None,
    size_bytes: int,
    settings: Settings,
) -> str:
    """
    Check a submission against the configured limits.

    Returns:
        The normalised file type.

    Raises:
        ValidationError: Missing name, empty content, unsupported type,
            or a payload above max_file_size_bytes.
    """
    if not file_name or not file_name.strip():
        raise ValidationError("A file name is required.")

    if size_bytes == 0:
        raise ValidationError("Submitted document is empty.")

    if size_bytes > settings.max_file_size_bytes:
        raise ValidationError(
            f"File too large: {size_bytes} bytes "
            f"(limit {settings.max_file_size_bytes} bytes)."
        )

    file_type = file_type_of(file_name)
    if file_type not in settings.supported_file_types:
        raise ValidationError(
            f"Unsupported file type '{file_type or file_name}'. "
            f"Supported: {', '.join(settings.supported_file_types)}."
        )
    return file_type


async def submit_document(
    store: JobStore,
    settings: Settings,
    file_name: str | None,
    content: bytes,
    review_mode: str = "full",
) -> Job:
    """Validate raw uploaded bytes and enqueue them as a base64 job."""
    file_type = validate_submission(file_name, len(content), settings)
    job = Job(
        id=str(uuid.uuid4()),
        document_content=base64.b64encode(content).decode("ascii"),
        content_encoding="base64",
        file_name=file_name,
        file_type=file_type,
        review_mode=review_mode,
    )
    await store.enqueue(job)
    logger.info(
        "Accepted submission %s: %s (%d bytes, mode=%s)",
        job.id, file_name, len(content), review_mode,
    )
    return job


async def submit_text(
    store: JobStore,
    settings: Settings,
    file_name: str | None,
    text: str,
    review_mode: str = "full",
) -> Job:
    """Validate an already-extracted text document and enqueue it."""
    if not text.strip():
        raise ValidationError("Submitted document is empty.")
    file_type = validate_submission(
        file_name, len(text.encode("utf-8")), settings,
    )
    job = Job(
        id=str(uuid.uuid4()),
        document_content=text,
        content_encoding="text",
        file_name=file_name,
        file_type=file_type,
        review_mode=review_mode,
    )
    await store.enqueue(job)
    logger.info(
        "Accepted text submission %s: %s (%d chars, mode=%s)",
        job.id, file_name, len(text), review_mode,
    )
    return job
