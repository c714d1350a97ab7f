"""Periodic maintenance jobs that run through the scheduler like scrapers."""

import asyncio
from datetime import datetime, timezone
from typing import Callable, Protocol

import logfire

from knowledge_ingest.models.job_models import ScrapeOutcome


class ExpiringCache(Protocol):
    def delete_expired_cache_entries(self, now: datetime | None = None) -> int: ...


class CacheCleanupTask:
    """Delete expired AI knowledge cache rows; ``count`` is the rows removed."""

    name = "knowledge-cache-cleanup"

    def __init__(
        self,
        cache: ExpiringCache,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._cache = cache
        self._clock = clock

    async def run(self) -> ScrapeOutcome:
        try:
            deleted = await asyncio.to_thread(
                self._cache.delete_expired_cache_entries, self._clock()
            )
        except Exception as e:
            logfire.error(
                "Cache cleanup failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            return ScrapeOutcome(success=False, errors=[f"Cache cleanup failed: {e}"])

        logfire.info("Cache cleanup completed", deleted=deleted)
        return ScrapeOutcome(success=True, count=deleted)
