# =============================================================================
# API Dependencies — FastAPI Dependency Injection
# =============================================================================
#
# Route handlers get their collaborators through Depends():
#
#   get_settings()   — cached Settings (app/config.py)
#   get_job_store()  — process-wide JobStore over one Redis connection pool
#
# DESIGN DECISION: Dependencies (not module globals imported by routes).
# Tests swap in fakes with app.dependency_overrides, no Redis required:
#     app.dependency_overrides[get_job_store] = lambda: JobStore(FakeRedis())
# =============================================================================

from __future__ import annotations

from functools import lru_cache

from app.config import get_settings
from app.services.job_store import JobStore


@lru_cache
def get_job_store() -> JobStore:
    """
    Create and cache the JobStore.

    The Redis client connects lazily, so building it never blocks startup.
    """
    return JobStore.from_settings(get_settings())


async def close_job_store() -> None:
    """Close the cached store's connection pool, if one was created."""
    if get_job_store.cache_info().currsize:
        await get_job_store().close()
        get_job_store.cache_clear()


__all__ = ["close_job_store", "get_job_store", "get_settings"]
