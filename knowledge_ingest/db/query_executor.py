"""Timing and logging helpers for content store operations."""

import time
from contextlib import contextmanager
from typing import Any, Generator

import logfire


@contextmanager
def timed_query(operation_name: str, **log_context: Any) -> Generator[None, None, None]:
    """
    Time a store operation and log its completion or failure.

    Exceptions are logged with their type and re-raised unchanged.

    Args:
        operation_name: Name of the operation (e.g., "upsert_knowledge_content")
        **log_context: Extra fields attached to every log record

    Example:
        with timed_query("upsert_knowledge_content", content_id=item.id):
            client.table(KNOWLEDGE_CONTENT_TABLE).upsert(row, on_conflict="id").execute()
    """
    started = time.perf_counter()
    try:
        yield
    except Exception as e:
        logfire.error(
            f"{operation_name} failed",
            operation=operation_name,
            error=str(e),
            error_type=type(e).__name__,
            response_time_ms=(time.perf_counter() - started) * 1000,
            **log_context,
        )
        raise
    logfire.info(
        f"{operation_name} completed",
        operation=operation_name,
        response_time_ms=(time.perf_counter() - started) * 1000,
        **log_context,
    )


class QueryTimer:
    """
    Class-based timer for operations whose completion log needs result details.

    Example:
        timer = QueryTimer("get_knowledge_stats", window_days=30).start()
        rows = client.table(...).select(...).execute().data
        timer.success(row_count=len(rows))
    """

    def __init__(self, operation_name: str, **log_context: Any):
        self.operation_name = operation_name
        self.log_context = log_context
        self._started: float | None = None
        self.elapsed_ms: float | None = None

    def start(self) -> "QueryTimer":
        self._started = time.perf_counter()
        return self

    def _stop(self) -> float:
        if self._started is None:
            raise RuntimeError("Timer was not started. Call start() first.")
        self.elapsed_ms = (time.perf_counter() - self._started) * 1000
        return self.elapsed_ms

    def success(self, **extra_context: Any) -> float:
        """Log completion with ``extra_context``; returns elapsed milliseconds."""
        elapsed = self._stop()
        logfire.info(
            f"{self.operation_name} completed",
            operation=self.operation_name,
            response_time_ms=elapsed,
            **self.log_context,
            **extra_context,
        )
        return elapsed

    def error(self, exception: Exception, **extra_context: Any) -> float:
        """Log failure of the timed operation; returns elapsed milliseconds."""
        elapsed = self._stop()
        logfire.error(
            f"{self.operation_name} failed",
            operation=self.operation_name,
            error=str(exception),
            error_type=type(exception).__name__,
            response_time_ms=elapsed,
            **self.log_context,
            **extra_context,
        )
        return elapsed
