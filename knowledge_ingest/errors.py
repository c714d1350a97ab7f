"""Exception hierarchy for the ingestion pipeline.

Per-URL and per-item failures are reported as values by the scrapers;
these exceptions are raised inside helpers and converted at the
``SourceScraper.run()`` boundary, or raised to operators by the scheduler.
"""

from __future__ import annotations


class KnowledgeIngestError(Exception):
    """Base exception for ingestion errors."""

    pass


class FetchError(KnowledgeIngestError):
    """Fetching a URL failed.

    ``retryable`` is True for transient conditions (network errors, 5xx, 429)
    while the fetcher is still deciding; errors surfaced to callers after the
    retry budget is spent, or for terminal 4xx responses, carry False.
    """

    def __init__(
        self,
        message: str,
        *,
        url: str,
        status_code: int | None = None,
        retryable: bool = False,
    ):
        super().__init__(message)
        self.url = url
        self.status_code = status_code
        self.retryable = retryable


class ExtractionError(KnowledgeIngestError):
    """Extracted content could not be turned into a viable item."""

    pass


class PersistenceError(KnowledgeIngestError):
    """A single content store write failed."""

    def __init__(self, message: str, *, item_id: str | None = None):
        super().__init__(message)
        self.item_id = item_id


class StructuralError(KnowledgeIngestError):
    """Failure outside the per-URL/per-item boundaries of a scraper run."""

    pass


class SchedulerConflictError(KnowledgeIngestError):
    """Raised when triggering a job that is already running."""

    def __init__(self, job_name: str):
        super().__init__(f"Job {job_name} is already running")
        self.job_name = job_name


class JobNotFoundError(KnowledgeIngestError):
    """Raised when a job name is not registered."""

    def __init__(self, job_name: str):
        super().__init__(f"Job {job_name} not found")
        self.job_name = job_name


class JobNotRunnableError(KnowledgeIngestError):
    """Raised when a placeholder job without a scraper is triggered or enabled."""

    def __init__(self, job_name: str):
        super().__init__(f"Job {job_name} has no scraper implementation")
        self.job_name = job_name
