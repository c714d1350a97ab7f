"""Content store and database helpers."""

from knowledge_ingest.db.content_store import (
    ContentStore,
    SupabaseContentStore,
    write_batch,
)
from knowledge_ingest.db.query_executor import QueryTimer, timed_query

__all__ = [
    "ContentStore",
    "SupabaseContentStore",
    "write_batch",
    "QueryTimer",
    "timed_query",
]
