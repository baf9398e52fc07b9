# =============================================================================
# Analysis Worker — Queue Consumer Loop
# =============================================================================
#
# Drains the Redis job queue one job at a time:
#
#   ┌──────────┐   LPOP   ┌──────────────┐   analyze_document   ┌────────┐
#   │ JobStore │────────▶│ AnalysisWorker│─────────────────────▶│Orchestr.│
#   └──────────┘          └──────────────┘                       └────────┘
#        ▲                     │ idle: wait poll_interval_seconds
#        └─────────────────────┘
#
# ONE JOB IN FLIGHT: run_once() holds an asyncio.Lock for the whole job.
# A second concurrent run_once() is a programming error and raises.
#
# ERRORS: the loop never dies on a job. A StorageError while polling or any
# exception while processing is logged and the loop carries on. A job that
# was popped is not re-queued (no lease), so exactly-once is NOT promised.
#
# USAGE:
#   prereview-worker                 (console script, see pyproject.toml)
#   python -m app.workers.worker
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import signal

from app.agents.orchestrator import Orchestrator
from app.agents.registry import default_registry
from app.config import get_settings
from app.errors import StorageError
from app.logging import configure_logging
from app.services.job_store import JobStore
from app.services.knowledge import get_knowledge_search
from app.services.llm import get_completion_service
from app.services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class AnalysisWorker:
    """Poll the job queue and run each job through the orchestrator."""

    def __init__(
        self,
        store: JobStore,
        orchestrator: Orchestrator,
        poll_interval_seconds: float = 2.0,
    ) -> None:
        self._store = store
        self._orchestrator = orchestrator
        self._poll_interval = poll_interval_seconds
        self._lock = asyncio.Lock()
        self._stop = asyncio.Event()

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    async def run_once(self) -> bool:
        """
        Claim and process at most one job.

        Returns:
            True if a job was dequeued (whatever its outcome), False if the
            queue was empty.

        Raises:
            RuntimeError: Another run_once() is still in progress.
            StorageError: The queue could not be read.
        """
        if self._lock.locked():
            raise RuntimeError("A job is already being processed by this worker")

        async with self._lock:
            job = await self._store.dequeue()
            if job is None:
                return False

            logger.info("[%s] Dequeued job (%s)", job.id, job.file_name)
            try:
                await self._orchestrator.analyze_document(job)
            except Exception:
                logger.exception("[%s] Failed processing analysis job", job.id)
            return True

    async def run_forever(self) -> None:
        """Process jobs until stop() is called."""
        logger.info(
            "Analysis worker started (poll interval %.1fs)", self._poll_interval,
        )
        while not self._stop.is_set():
            try:
                processed = await self.run_once()
            except StorageError as e:
                logger.error("Job store unavailable, retrying: %s", e)
                processed = False
            except Exception:
                logger.exception("Unexpected error while polling the job queue")
                processed = False

            if not processed:
                await self._idle()

        logger.info("Analysis worker stopped")

    def stop(self) -> None:
        """Ask run_forever() to exit after the current job."""
        self._stop.set()

    async def _idle(self) -> None:
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=self._poll_interval)
        except TimeoutError:
            pass


# ---------------------------------------------------------------------------
# Entry Point
# ---------------------------------------------------------------------------


async def main() -> None:
    """Wire up the pipeline from settings and run the worker loop."""
    settings = get_settings()
    configure_logging(settings.log_level)

    store = JobStore.from_settings(settings)
    orchestrator = Orchestrator(
        store=store,
        rate_limiter=RateLimiter.from_settings(settings),
        registry=default_registry(get_completion_service(), settings),
        knowledge=get_knowledge_search(settings),
        settings=settings,
    )
    worker = AnalysisWorker(
        store,
        orchestrator,
        poll_interval_seconds=settings.worker_poll_interval_seconds,
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, worker.stop)
        except NotImplementedError:  # Windows event loops
            pass

    try:
        await worker.run_forever()
    finally:
        await store.close()


def cli() -> None:
    """Console script entry point (`prereview-worker`)."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Analysis worker interrupted")


if __name__ == "__main__":
    cli()
