# =============================================================================
# Rate Limiter — Serialising Gate for the Completion Service
# =============================================================================
#
# The completion service enforces a per-credential request rate. Every
# outbound call goes through one RateLimiter instance, which guarantees:
#
#   (a) no two dispatches start less than min_interval_ms apart
#   (b) calls start in the order they were scheduled (FIFO)
#   (c) throttling errors (HTTP 429) are retried in place, up to
#       max_retries times, with backoff min(base * 2^(attempt-1), max);
#       the call keeps its head-of-queue position while it retries
#   (d) any other error, or exhausted retries, goes back to that caller
#       only; the rest of the queue keeps draining
#
# ARCHITECTURE:
#   schedule(task) ──▶ deque of _ScheduledCall ──▶ _drain() task ──▶ task()
#        │                                               │
#        └────────── asyncio.Future ◀── result/error ────┘
#
# schedule() enqueues synchronously, so the order in which callers invoke
# it is the order in which calls run. A single drain task runs while the
# queue is non-empty, which makes "one in-flight call" a property of the
# structure rather than of caller discipline.
#
# The limiter owns all of its mutable state (queue, last dispatch time).
# Build one per process and pass it by reference; tests build their own
# with a fake clock and sleep.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from app.config import Settings
from app.errors import TransientServiceError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_throttling_error(exc: BaseException) -> bool:
    """
    True for errors that mean "slow down", not "this request is bad".

    Matches TransientServiceError and raw SDK/HTTP errors that carry a 429
    in `status_code` (anthropic, openai, httpx) or `status`.
    """
    if isinstance(exc, TransientServiceError):
        return True
    for attr in ("status_code", "status"):
        if getattr(exc, attr, None) == 429:
            return True
    return False


@dataclass
class _ScheduledCall:
    task: Callable[[], Awaitable[Any]]
    future: asyncio.Future


class RateLimiter:
    """Process-wide gate in front of the completion service."""

    def __init__(
        self,
        min_interval_ms: int = 2000,
        max_retries: int = 3,
        backoff_base_ms: int = 1000,
        backoff_max_ms: int = 16000,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        is_retryable: Callable[[BaseException], bool] = is_throttling_error,
        history_size: int = 1000,
    ) -> None:
        if min_interval_ms < 0:
            raise ValueError("min_interval_ms must not be negative")
        if max_retries < 0:
            raise ValueError("max_retries must not be negative")

        self._min_interval = min_interval_ms / 1000
        self._max_retries = max_retries
        self._backoff_base = backoff_base_ms / 1000
        self._backoff_max = backoff_max_ms / 1000
        self._clock = clock
        self._sleep = sleep
        self._is_retryable = is_retryable

        self._queue: deque[_ScheduledCall] = deque()
        self._drainer: asyncio.Task | None = None
        self._last_dispatch: float | None = None
        self._dispatches: deque[float] = deque(maxlen=history_size)

    @classmethod
    def from_settings(cls, settings: Settings) -> RateLimiter:
        return cls(
            min_interval_ms=settings.rate_limit_min_interval_ms,
            max_retries=settings.rate_limit_max_retries,
            backoff_base_ms=settings.rate_limit_backoff_base_ms,
            backoff_max_ms=settings.rate_limit_backoff_max_ms,
        )

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def schedule(self, task: Callable[[], Awaitable[T]]) -> asyncio.Future[T]:
        """
        Queue a zero-argument async operation behind the gate.

        Must be called from inside a running event loop. The returned future
        resolves with the task's result, or with its exception once it is
        not retryable (or out of retries).
        """
        loop = asyncio.get_running_loop()
        future: asyncio.Future[T] = loop.create_future()
        self._queue.append(_ScheduledCall(task=task, future=future))
        if self._drainer is None or self._drainer.done():
            self._drainer = loop.create_task(self._drain())
        return future

    @property
    def pending(self) -> int:
        """Calls waiting for their turn (not counting the one in flight)."""
        return len(self._queue)

    @property
    def recent_dispatches(self) -> list[float]:
        """Clock readings at which recent attempts were dispatched."""
        return list(self._dispatches)

    def backoff_delay(self, attempt: int) -> float:
        """Seconds to wait after the `attempt`-th throttled try (1-based)."""
        return min(self._backoff_base * 2 ** (attempt - 1), self._backoff_max)

    # -------------------------------------------------------------------------
    # Internal Helpers
    # -------------------------------------------------------------------------

    async def _drain(self) -> None:
        while self._queue:
            call = self._queue.popleft()
            if call.future.cancelled():
                continue
            try:
                result = await self._execute(call.task)
            except Exception as exc:
                if not call.future.cancelled():
                    call.future.set_exception(exc)
            else:
                if not call.future.cancelled():
                    call.future.set_result(result)

    async def _execute(self, task: Callable[[], Awaitable[T]]) -> T:
        attempt = 1
        while True:
            await self._wait_for_slot()
            self._last_dispatch = self._clock()
            self._dispatches.append(self._last_dispatch)
            try:
                return await task()
            except Exception as exc:
                if not self._is_retryable(exc) or attempt > self._max_retries:
                    if self._is_retryable(exc):
                        logger.warning(
                            "Throttled call gave up after %d retries: %s",
                            self._max_retries, exc,
                        )
                    raise
                delay = self.backoff_delay(attempt)
                logger.warning(
                    "Throttled by completion service (attempt %d/%d), "
                    "retrying in %.1fs: %s",
                    attempt, self._max_retries, delay, exc,
                )
                await self._sleep(delay)
                attempt += 1

    async def _wait_for_slot(self) -> None:
        if self._last_dispatch is None:
            return
        wait = self._min_interval - (self._clock() - self._last_dispatch)
        if wait > 0:
            await self._sleep(wait)
