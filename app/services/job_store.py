# =============================================================================
# Job Store — Redis Queue + Status/Result Keys
# =============================================================================
#
# The only shared mutable resource between the producer (API) and the
# worker. Layout, with the default prefix "analysis":
#
#   analysis:job-queue        LIST    serialized Job, RPUSH / LPOP (FIFO)
#   analysis:status:{id}      STRING  pending | running | completed | failed
#   analysis:result:{id}      STRING  serialized AnalysisResult
#   analysis:dead-letter      LIST    raw payloads that failed to parse
#
# GUARANTEES:
# - enqueue() pushes the job and writes "pending" in one MULTI/EXEC
#   transaction, so no reader ever sees a queued job without a status.
# - set_status() only accepts forward transitions (see JobStatus).
# - get_status()/get_result() are read-only and return None for unknown ids.
# - Every Redis failure, and any stored report that no longer parses,
#   surfaces as StorageError.
#
# CONCURRENCY: LPOP is atomic, but there is no lease or visibility timeout.
# A job popped by a worker that then dies is lost. The pipeline assumes a
# single worker process.
# =============================================================================

from __future__ import annotations

import logging
from typing import Any

import redis.asyncio as aioredis
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from app.config import Settings
from app.errors import InvalidStatusTransition, StorageError
from app.models.domain import AnalysisResult, Job, JobStatus

logger = logging.getLogger(__name__)


class JobStore:
    """Durable FIFO of analysis jobs plus their status and result records."""

    def __init__(
        self,
        redis: aioredis.Redis,
        key_prefix: str = "analysis",
        result_ttl_seconds: int = 0,
    ) -> None:
        self._redis = redis
        self._prefix = key_prefix
        self._ttl = result_ttl_seconds or None

    @classmethod
    def from_settings(cls, settings: Settings) -> JobStore:
        client = aioredis.from_url(settings.redis_url, decode_responses=True)
        return cls(
            client,
            key_prefix=settings.job_key_prefix,
            result_ttl_seconds=settings.result_ttl_seconds,
        )

    # -------------------------------------------------------------------------
    # Keys
    # -------------------------------------------------------------------------

    @property
    def queue_key(self) -> str:
        return f"{self._prefix}:job-queue"

    @property
    def dead_letter_key(self) -> str:
        return f"{self._prefix}:dead-letter"

    def status_key(self, job_id: str) -> str:
        return f"{self._prefix}:status:{job_id}"

    def result_key(self, job_id: str) -> str:
        return f"{self._prefix}:result:{job_id}"

    # -------------------------------------------------------------------------
    # Queue
    # -------------------------------------------------------------------------

    async def enqueue(self, job: Job) -> None:
        """Append a job to the queue tail and mark it pending, atomically."""
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.rpush(self.queue_key, job.to_json())
                pipe.set(self.status_key(job.id), JobStatus.PENDING.value)
                await pipe.execute()
        except RedisError as e:
            raise StorageError(f"Failed to enqueue job {job.id}: {e}") from e

        logger.info("Enqueued job %s (%s)", job.id, job.file_name)

    async def dequeue(self) -> Job | None:
        """
        Pop the job at the head of the queue.

        Returns None when the queue is empty. A payload that is not valid
        UTF-8, or does not parse as a Job, is moved to the dead-letter list
        and also yields None.
        """
        try:
            raw = await self._call("dequeue", self._redis.lpop(self.queue_key))
        except UnicodeDecodeError as e:
            # The client decodes replies as UTF-8; the undecodable bytes ride on the error
            logger.error("Discarding undecodable job payload (%d bytes): %s", len(e.object), e)
            await self._call(
                "dead-letter", self._redis.rpush(self.dead_letter_key, e.object),
            )
            return None
        if raw is None:
            return None

        try:
            return Job.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.error(
                "Discarding malformed job payload (%d bytes): %s",
                len(raw), e.errors(include_url=False)[:3],
            )
            await self._call(
                "dead-letter", self._redis.rpush(self.dead_letter_key, raw),
            )
            return None

    async def queue_length(self) -> int:
        return int(await self._call("queue_length", self._redis.llen(self.queue_key)))

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    async def set_status(self, job_id: str, status: JobStatus) -> None:
        """
        Record a status change.

        Raises:
            InvalidStatusTransition: If the move is not strictly forward.
            StorageError: If Redis is unreachable.
        """
        current = await self.get_status(job_id)
        allowed = (
            status == JobStatus.PENDING
            if current is None
            else current.can_transition_to(status)
        )
        if not allowed:
            raise InvalidStatusTransition(
                f"Job {job_id}: cannot move from "
                f"{current.value if current else 'none'} to {status.value}"
            )

        ttl = self._ttl if status.is_terminal else None
        await self._call(
            "set_status",
            self._redis.set(self.status_key(job_id), status.value, ex=ttl),
        )
        logger.debug("Job %s status → %s", job_id, status.value)

    async def get_status(self, job_id: str) -> JobStatus | None:
        raw = await self._call("get_status", self._redis.get(self.status_key(job_id)))
        if raw is None:
            return None
        try:
            return JobStatus(raw)
        except ValueError:
            logger.warning("Job %s has unknown status %r", job_id, raw)
            return None

    # -------------------------------------------------------------------------
    # Results
    # -------------------------------------------------------------------------

    async def set_result(self, job_id: str, result: AnalysisResult) -> None:
        await self._call(
            "set_result",
            self._redis.set(self.result_key(job_id), result.to_json(), ex=self._ttl),
        )

    async def get_result(self, job_id: str) -> AnalysisResult | None:
        """
        Read a stored report, or None if the job has none yet.

        Raises:
            StorageError: Redis is unreachable or the stored report is corrupt.
        """
        raw = await self._call("get_result", self._redis.get(self.result_key(job_id)))
        if raw is None:
            return None
        try:
            return AnalysisResult.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.error(
                "Job %s has a corrupt stored result: %s",
                job_id, e.errors(include_url=False)[:3],
            )
            raise StorageError(f"Stored result for job {job_id} is unreadable") from e

    async def close(self) -> None:
        await self._redis.aclose()

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    async def _call(operation: str, awaitable: Any) -> Any:
        """Await a Redis command, translating client errors to StorageError."""
        try:
            return await awaitable
        except RedisError as e:
            raise StorageError(f"Job store {operation} failed: {e}") from e
