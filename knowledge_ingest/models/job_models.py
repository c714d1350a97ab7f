"""Models for scheduled jobs, their results and aggregate health."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol

from pydantic import BaseModel, Field


class JobStatus(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    ERROR = "error"


class HealthLevel(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    ERROR = "error"


class ScrapeOutcome(BaseModel):
    """What a job runner reports back: ``{success, count, errors}``."""

    success: bool
    count: int = Field(default=0, ge=0)
    errors: list[str] = Field(default_factory=list)


class JobRunner(Protocol):
    """Anything the scheduler can execute as a job."""

    async def run(self) -> ScrapeOutcome:
        """Run once. Must report failure through the outcome, never raise."""
        ...


@dataclass
class ScrapingJob:
    """Scheduler registry entry.

    A job whose ``scraper`` is None is a placeholder: it is listed and
    reported but never scheduled or triggered.
    """

    name: str
    schedule: str
    timezone: str
    scraper: JobRunner | None = None
    enabled: bool = True
    status: JobStatus = JobStatus.IDLE
    last_run: datetime | None = None
    next_run: datetime | None = None
    description: str = ""
    source: str | None = None

    @property
    def runnable(self) -> bool:
        return self.scraper is not None

    @property
    def schedulable(self) -> bool:
        return self.enabled and self.runnable


class JobStatusView(BaseModel):
    """Read-only snapshot of a ScrapingJob."""

    name: str
    description: str = ""
    source: str | None = None
    schedule: str
    timezone: str
    enabled: bool
    runnable: bool
    status: JobStatus
    last_run: datetime | None = None
    next_run: datetime | None = None

    @classmethod
    def from_job(cls, job: ScrapingJob) -> "JobStatusView":
        return cls(
            name=job.name,
            description=job.description,
            source=job.source,
            schedule=job.schedule,
            timezone=job.timezone,
            # Placeholders always report as disabled
            enabled=job.schedulable,
            runnable=job.runnable,
            status=job.status,
            last_run=job.last_run,
            next_run=job.next_run if job.schedulable else None,
        )


class ScrapingResult(BaseModel):
    """One completed job run, success or failure."""

    job_name: str
    success: bool
    count: int = Field(default=0, ge=0)
    duration_ms: float = Field(default=0.0, ge=0)
    errors: list[str] = Field(default_factory=list)
    timestamp: datetime


class HealthStatus(BaseModel):
    """Aggregate scheduler health for monitoring probes."""

    status: HealthLevel
    total_jobs: int
    enabled_jobs: int
    running_jobs: int
    error_jobs: int
    placeholder_jobs: int
    recent_results: list[ScrapingResult] = Field(default_factory=list)
