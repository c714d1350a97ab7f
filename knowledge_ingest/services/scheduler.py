"""Cron-driven job scheduler with bounded run history and health reporting.

All mutable scheduler data lives in a SchedulerState built once at startup
and injected where needed (FastAPI app state, CLI). Each job moves
idle -> running -> idle on success or idle -> running -> error on failure;
``error`` never stops the next scheduled tick.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from itertools import islice
from datetime import datetime, timezone
from typing import Awaitable, Callable
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import logfire
from croniter import croniter

from knowledge_ingest.constants import (
    DEFAULT_RECENT_RESULTS_LIMIT,
    HEALTH_RECENT_RESULTS_COUNT,
    RESULT_HISTORY_CAPACITY,
)
from knowledge_ingest.errors import (
    JobNotFoundError,
    JobNotRunnableError,
    SchedulerConflictError,
)
from knowledge_ingest.models.content_models import KnowledgeStats
from knowledge_ingest.models.job_models import (
    HealthLevel,
    HealthStatus,
    JobStatus,
    JobStatusView,
    ScrapeOutcome,
    ScrapingJob,
    ScrapingResult,
)

ALL_SOURCES = "all"

# Wait this long for in-flight runs when stopping before cancelling them
SHUTDOWN_TIMEOUT_SECONDS = 30.0


def validate_cron(expression: str) -> None:
    """Raise ValueError unless ``expression`` is a five-field cron expression."""
    if len(expression.split()) != 5 or not croniter.is_valid(expression):
        raise ValueError(f"Invalid cron expression: {expression!r}")


def next_run_time(expression: str, tz_name: str, after: datetime) -> datetime:
    """Next fire time strictly after ``after``, evaluated in ``tz_name``.

    Args:
        expression: Five-field cron expression
        tz_name: IANA timezone name, e.g. "Asia/Singapore"
        after: Timezone-aware reference time

    Returns:
        Timezone-aware datetime in ``tz_name``
    """
    local = after.astimezone(ZoneInfo(tz_name))
    return croniter(expression, local).get_next(datetime)


class SchedulerState:
    """Job registry and result history owned by one scheduler."""

    def __init__(self, history_capacity: int = RESULT_HISTORY_CAPACITY):
        if history_capacity < 1:
            raise ValueError("history_capacity must be positive")
        self.jobs: dict[str, ScrapingJob] = {}
        self.history: deque[ScrapingResult] = deque(maxlen=history_capacity)
        self.knowledge_stats: KnowledgeStats | None = None


class KnowledgeScheduler:
    """Register, trigger and schedule ingestion jobs."""

    def __init__(
        self,
        state: SchedulerState,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
        stats_provider: Callable[[], KnowledgeStats] | None = None,
    ):
        """Initialize the scheduler.

        Args:
            state: Registry and history to operate on
            clock: Returns the current timezone-aware time
            sleep: Awaitable sleep used by the cron timers
            stats_provider: Loads knowledge-base statistics after successful runs
        """
        self.state = state
        self._clock = clock
        self._sleep = sleep
        self._stats_provider = stats_provider
        self._timers: dict[str, asyncio.Task] = {}
        self._runs: set[asyncio.Task] = set()
        self.started = False

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register_job(self, job: ScrapingJob) -> None:
        """Add a job to the registry.

        Jobs without a scraper are kept as disabled placeholders.

        Raises:
            ValueError: On duplicate name, invalid cron expression or timezone
        """
        if job.name in self.state.jobs:
            raise ValueError(f"Job {job.name} is already registered")
        validate_cron(job.schedule)
        try:
            ZoneInfo(job.timezone)
        except ZoneInfoNotFoundError as e:
            raise ValueError(f"Unknown timezone: {job.timezone}") from e

        if not job.runnable and job.enabled:
            logfire.info("Registering placeholder job as disabled", job_name=job.name)
            job.enabled = False

        self.state.jobs[job.name] = job
        self._refresh_next_run(job)
        logfire.info(
            "Job registered",
            job_name=job.name,
            schedule=job.schedule,
            timezone=job.timezone,
            enabled=job.enabled,
            runnable=job.runnable,
        )
        if self.started and job.schedulable:
            self._start_timer(job)

    def _get_job(self, name: str) -> ScrapingJob:
        job = self.state.jobs.get(name)
        if job is None:
            raise JobNotFoundError(name)
        return job

    def _refresh_next_run(self, job: ScrapingJob) -> None:
        job.next_run = (
            next_run_time(job.schedule, job.timezone, self._clock())
            if job.schedulable
            else None
        )

    def set_job_enabled(self, name: str, enabled: bool) -> JobStatusView:
        """Enable or disable scheduled runs of a job.

        Raises:
            JobNotFoundError: If no job has this name
            JobNotRunnableError: When enabling a placeholder job
        """
        job = self._get_job(name)
        if enabled and not job.runnable:
            raise JobNotRunnableError(name)

        job.enabled = enabled
        self._refresh_next_run(job)
        if self.started:
            if enabled:
                self._start_timer(job)
            else:
                self._cancel_timer(name)
        logfire.info("Job enabled state changed", job_name=name, enabled=enabled)
        return JobStatusView.from_job(job)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def trigger_job(self, name: str) -> ScrapingResult:
        """Run a job now, outside its schedule.

        Raises:
            JobNotFoundError: If no job has this name
            JobNotRunnableError: If the job is a placeholder
            SchedulerConflictError: If the job is already running
        """
        job = self._get_job(name)
        if not job.runnable:
            raise JobNotRunnableError(name)
        if job.status is JobStatus.RUNNING:
            logfire.warning("Rejected trigger of running job", job_name=name)
            raise SchedulerConflictError(name)
        return await self._execute(job)

    async def _execute(self, job: ScrapingJob) -> ScrapingResult:
        # No await between the running check and this assignment
        job.status = JobStatus.RUNNING
        job.last_run = self._clock()
        started = time.perf_counter()
        logfire.info("Job started", job_name=job.name)

        try:
            outcome = await job.scraper.run()
        except Exception as e:
            # Runners report failure in their outcome; this is a bug in one
            self._record(
                job,
                ScrapeOutcome(success=False, errors=[f"{type(e).__name__}: {e}"]),
                started,
            )
            raise
        except asyncio.CancelledError:
            job.status = JobStatus.IDLE
            raise

        result = self._record(job, outcome, started)
        if result.success:
            await self._refresh_knowledge_stats()
        return result

    def _record(
        self, job: ScrapingJob, outcome: ScrapeOutcome, started: float
    ) -> ScrapingResult:
        result = ScrapingResult(
            job_name=job.name,
            success=outcome.success,
            count=outcome.count,
            duration_ms=(time.perf_counter() - started) * 1000,
            errors=list(outcome.errors),
            timestamp=self._clock(),
        )
        self.state.history.append(result)
        job.status = JobStatus.IDLE if result.success else JobStatus.ERROR
        self._refresh_next_run(job)

        log = logfire.info if result.success else logfire.error
        log(
            "Job finished",
            job_name=job.name,
            success=result.success,
            count=result.count,
            duration_ms=result.duration_ms,
            error_count=len(result.errors),
        )
        return result

    async def _refresh_knowledge_stats(self) -> None:
        if self._stats_provider is None:
            return
        try:
            self.state.knowledge_stats = await asyncio.to_thread(self._stats_provider)
        except Exception as e:
            logfire.warning(
                "Could not refresh knowledge stats",
                error=str(e),
                error_type=type(e).__name__,
            )

    async def trigger_emergency_update(self, source: str) -> list[ScrapingResult]:
        """Run the job(s) for ``source`` ("moh", "hsa", "ndf" or "all") immediately.

        With "all", every runnable source job that is not already running is
        run concurrently.

        Raises:
            ValueError: If no runnable job serves ``source``
            SchedulerConflictError: If the single requested job is running
        """
        source = source.lower()
        jobs = [
            job
            for job in self.state.jobs.values()
            if job.runnable
            and job.source is not None
            and (source == ALL_SOURCES or job.source == source)
        ]
        if not jobs:
            raise ValueError(f"No runnable job for source {source!r}")

        logfire.info(
            "Emergency update triggered",
            source=source,
            jobs=[job.name for job in jobs],
        )
        if source != ALL_SOURCES:
            return [await self.trigger_job(job.name) for job in jobs]

        results = await asyncio.gather(*(self._execute_if_idle(job) for job in jobs))
        return [result for result in results if result is not None]

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_job_status(self, name: str) -> JobStatusView:
        """Raises JobNotFoundError for unknown names."""
        return JobStatusView.from_job(self._get_job(name))

    def get_all_jobs_status(self) -> list[JobStatusView]:
        return [JobStatusView.from_job(job) for job in self.state.jobs.values()]

    def get_recent_results(
        self, limit: int = DEFAULT_RECENT_RESULTS_LIMIT
    ) -> list[ScrapingResult]:
        """Most recent results first, at most ``limit`` of them."""
        if limit <= 0:
            return []
        return list(islice(reversed(self.state.history), limit))

    def get_health_status(self) -> HealthStatus:
        jobs = list(self.state.jobs.values())
        enabled = sum(1 for job in jobs if job.schedulable)
        running = sum(1 for job in jobs if job.status is JobStatus.RUNNING)
        errored = sum(1 for job in jobs if job.status is JobStatus.ERROR)

        if errored > 0:
            level = HealthLevel.ERROR
        elif running > enabled / 2:
            level = HealthLevel.WARNING
        else:
            level = HealthLevel.HEALTHY

        return HealthStatus(
            status=level,
            total_jobs=len(jobs),
            enabled_jobs=enabled,
            running_jobs=running,
            error_jobs=errored,
            placeholder_jobs=sum(1 for job in jobs if not job.runnable),
            recent_results=self.get_recent_results(HEALTH_RECENT_RESULTS_COUNT),
        )

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------

    def start(self, initial_sync: bool = False) -> None:
        """Start one cron timer per enabled, runnable job. Needs a running loop.

        With ``initial_sync`` every source job also runs once in the
        background; ``stop()`` waits for that run like any scheduled one.
        """
        if self.started:
            return
        self.started = True
        for job in self.state.jobs.values():
            if job.schedulable:
                self._start_timer(job)
        logfire.info("Scheduler started", timers=len(self._timers))
        if initial_sync:
            task = asyncio.create_task(self.run_initial_sync(), name="initial-sync")
            self._runs.add(task)
            task.add_done_callback(self._runs.discard)

    async def run_initial_sync(self) -> list[ScrapingResult]:
        """Run every runnable source job once and log the totals. Never raises."""
        logfire.info("Initial sync started")
        try:
            results = await self.trigger_emergency_update(ALL_SOURCES)
        except ValueError:
            logfire.warning("Initial sync skipped, no runnable source jobs")
            return []
        except Exception as e:
            logfire.error(
                "Initial sync raised",
                error=str(e),
                error_type=type(e).__name__,
            )
            return []

        succeeded = sum(1 for result in results if result.success)
        logfire.info(
            "Initial sync finished",
            succeeded=succeeded,
            failed=len(results) - succeeded,
            total_items=sum(result.count for result in results),
            error_count=sum(len(result.errors) for result in results),
        )
        return results

    async def stop(self, timeout: float = SHUTDOWN_TIMEOUT_SECONDS) -> None:
        """Cancel timers, then wait up to ``timeout`` for in-flight runs."""
        if not self.started:
            return
        self.started = False
        for name in list(self._timers):
            self._cancel_timer(name)

        if self._runs:
            logfire.info("Waiting for running jobs", job_count=len(self._runs))
            done, pending = await asyncio.wait(self._runs, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                logfire.warning(
                    "Cancelled jobs still running at shutdown",
                    completed_count=len(done),
                    cancelled_count=len(pending),
                )
                await asyncio.gather(*pending, return_exceptions=True)
        logfire.info("Scheduler stopped")

    def _start_timer(self, job: ScrapingJob) -> None:
        if job.name in self._timers:
            return
        self._timers[job.name] = asyncio.create_task(
            self._timer_loop(job.name), name=f"cron:{job.name}"
        )

    def _cancel_timer(self, name: str) -> None:
        task = self._timers.pop(name, None)
        if task is not None:
            task.cancel()

    async def _timer_loop(self, name: str) -> None:
        job = self.state.jobs[name]
        after = self._clock()
        while True:
            fire_at = next_run_time(job.schedule, job.timezone, after)
            job.next_run = fire_at
            await self._sleep(max(0.0, (fire_at - self._clock()).total_seconds()))
            # Never fire the same slot twice, never replay missed slots
            after = max(fire_at, self._clock())

            if not job.schedulable:
                return
            self._spawn_run(job)

    def _spawn_run(self, job: ScrapingJob) -> None:
        task = asyncio.create_task(self._scheduled_run(job), name=f"run:{job.name}")
        self._runs.add(task)
        task.add_done_callback(self._runs.discard)

    async def _execute_if_idle(self, job: ScrapingJob) -> ScrapingResult | None:
        if job.status is JobStatus.RUNNING:
            logfire.warning("Skipping job that is already running", job_name=job.name)
            return None
        return await self._execute(job)

    async def _scheduled_run(self, job: ScrapingJob) -> None:
        try:
            await self._execute_if_idle(job)
        except Exception as e:
            logfire.error(
                "Scheduled run raised",
                job_name=job.name,
                error=str(e),
                error_type=type(e).__name__,
            )
