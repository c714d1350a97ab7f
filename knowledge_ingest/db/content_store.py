"""Durable storage of ingested knowledge content in Supabase.

The pipeline depends on a single capability: upsert a row by its stable
id, overwriting every mutable column on conflict (last write wins). The
store is shared by all scrapers and relies on Postgres' atomic
``INSERT ... ON CONFLICT`` for concurrent writers.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Iterable, Protocol

import logfire
from supabase import Client

from knowledge_ingest.constants import (
    KNOWLEDGE_CACHE_TABLE,
    KNOWLEDGE_CONTENT_TABLE,
    KNOWLEDGE_STATS_WINDOW_DAYS,
)
from knowledge_ingest.db.client import get_supabase_client
from knowledge_ingest.db.query_executor import QueryTimer, timed_query
from knowledge_ingest.errors import PersistenceError
from knowledge_ingest.models.content_models import (
    BatchWriteResult,
    KnowledgeStats,
    ScrapedContentItem,
)


class ContentStore(Protocol):
    """Write side of the content store used by scrapers."""

    def upsert(self, item: ScrapedContentItem) -> None:
        """Insert or fully overwrite the row with ``item.id``.

        Raises:
            PersistenceError: If the write fails
        """
        ...


class SupabaseContentStore:
    """ContentStore backed by the ``knowledge_source_content`` table."""

    def __init__(self, client: Client | None = None):
        self._client = client

    @property
    def client(self) -> Client:
        if self._client is None:
            self._client = get_supabase_client()
        return self._client

    def upsert(self, item: ScrapedContentItem) -> None:
        row = item.to_row()
        try:
            with timed_query(
                "upsert_knowledge_content",
                content_id=item.id,
                source_type=item.source_type.value,
                content_hash=item.content_hash,
            ):
                result = (
                    self.client.table(KNOWLEDGE_CONTENT_TABLE)
                    .upsert(row, on_conflict="id")
                    .execute()
                )
        except Exception as e:
            raise PersistenceError(
                f"Failed to upsert {item.id}: {e}", item_id=item.id
            ) from e

        if not result.data:
            raise PersistenceError(
                f"Upsert of {item.id} returned no row", item_id=item.id
            )

    def get_knowledge_stats(
        self, window_days: int = KNOWLEDGE_STATS_WINDOW_DAYS
    ) -> KnowledgeStats:
        """Entries, distinct sources and latest update over the recent window."""
        cutoff = datetime.now(timezone.utc) - timedelta(days=window_days)
        timer = QueryTimer("get_knowledge_stats", window_days=window_days).start()
        try:
            result = (
                self.client.table(KNOWLEDGE_CONTENT_TABLE)
                .select("source_type, last_updated")
                .gte("last_updated", cutoff.isoformat())
                .execute()
            )
        except Exception as e:
            timer.error(e)
            raise

        rows = result.data or []
        timer.success(row_count=len(rows))
        timestamps = [
            datetime.fromisoformat(row["last_updated"])
            for row in rows
            if row.get("last_updated")
        ]
        return KnowledgeStats(
            total_entries=len(rows),
            sources=len({row["source_type"] for row in rows}),
            last_updated=max(timestamps) if timestamps else None,
        )

    def delete_expired_cache_entries(self, now: datetime | None = None) -> int:
        """Remove AI knowledge cache rows past ``expires_at``; returns rows deleted."""
        now = now or datetime.now(timezone.utc)
        with timed_query("delete_expired_cache_entries", table=KNOWLEDGE_CACHE_TABLE):
            result = (
                self.client.table(KNOWLEDGE_CACHE_TABLE)
                .delete()
                .lt("expires_at", now.isoformat())
                .execute()
            )
        return len(result.data or [])


async def write_batch(
    store: ContentStore, items: Iterable[ScrapedContentItem]
) -> BatchWriteResult:
    """Write items one at a time, in order.

    Any failed write is logged and recorded, whatever the store raised;
    later items are still attempted.

    Args:
        store: Destination store
        items: Items to persist

    Returns:
        Count of successful writes and one error message per failed item
    """
    result = BatchWriteResult()
    for item in items:
        try:
            # Supabase's client is synchronous
            await asyncio.to_thread(store.upsert, item)
        except Exception as e:
            logfire.error(
                "Content write failed, continuing batch",
                content_id=item.id,
                url=item.url,
                error=str(e),
                error_type=type(e).__name__,
            )
            result.errors.append(f"Failed to save {item.id} ({item.url}): {e}")
        else:
            result.count += 1
    return result
