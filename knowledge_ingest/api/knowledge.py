"""Operator endpoints for ingestion jobs.

Read endpoints have no side effects and are meant for dashboards and
monitoring probes. Trigger endpoints run jobs synchronously and return
the same ScrapingResult shape as scheduled runs.
"""

import asyncio

import logfire
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from knowledge_ingest.constants import DEFAULT_RECENT_RESULTS_LIMIT, RESULT_HISTORY_CAPACITY
from knowledge_ingest.errors import (
    JobNotFoundError,
    JobNotRunnableError,
    SchedulerConflictError,
)
from knowledge_ingest.models.content_models import KnowledgeStats
from knowledge_ingest.models.job_models import (
    HealthStatus,
    JobStatusView,
    ScrapingResult,
)
from knowledge_ingest.services.scheduler import KnowledgeScheduler

router = APIRouter()


class JobEnabledUpdate(BaseModel):
    enabled: bool


def get_scheduler(request: Request) -> KnowledgeScheduler:
    """Scheduler built by the application lifespan."""
    return request.app.state.scheduler


def _not_found(e: JobNotFoundError) -> HTTPException:
    return HTTPException(status_code=404, detail=str(e))


@router.get("/jobs", response_model=list[JobStatusView])
async def list_jobs(scheduler: KnowledgeScheduler = Depends(get_scheduler)):
    return scheduler.get_all_jobs_status()


@router.get("/jobs/{name}", response_model=JobStatusView)
async def get_job(name: str, scheduler: KnowledgeScheduler = Depends(get_scheduler)):
    try:
        return scheduler.get_job_status(name)
    except JobNotFoundError as e:
        raise _not_found(e) from e


@router.patch("/jobs/{name}", response_model=JobStatusView)
async def update_job(
    name: str,
    update: JobEnabledUpdate,
    scheduler: KnowledgeScheduler = Depends(get_scheduler),
):
    """Enable or disable scheduled runs of a job."""
    try:
        return scheduler.set_job_enabled(name, update.enabled)
    except JobNotFoundError as e:
        raise _not_found(e) from e
    except JobNotRunnableError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e


@router.post("/jobs/{name}/trigger", response_model=ScrapingResult)
async def trigger_job(
    name: str, scheduler: KnowledgeScheduler = Depends(get_scheduler)
):
    """Run a job now. 409 if it is already running."""
    try:
        return await scheduler.trigger_job(name)
    except JobNotFoundError as e:
        raise _not_found(e) from e
    except JobNotRunnableError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    except SchedulerConflictError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e


@router.post("/emergency/{source}", response_model=list[ScrapingResult])
async def emergency_update(
    source: str, scheduler: KnowledgeScheduler = Depends(get_scheduler)
):
    """Run the jobs for one source (moh, hsa, ndf) or all of them."""
    try:
        return await scheduler.trigger_emergency_update(source)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except SchedulerConflictError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e


@router.get("/results", response_model=list[ScrapingResult])
async def recent_results(
    limit: int = Query(DEFAULT_RECENT_RESULTS_LIMIT, ge=1, le=RESULT_HISTORY_CAPACITY),
    scheduler: KnowledgeScheduler = Depends(get_scheduler),
):
    return scheduler.get_recent_results(limit)


@router.get("/health", response_model=HealthStatus)
async def scheduler_health(scheduler: KnowledgeScheduler = Depends(get_scheduler)):
    return scheduler.get_health_status()


@router.get("/stats", response_model=KnowledgeStats)
async def knowledge_stats(request: Request):
    """Knowledge-base statistics for the last 30 days, read from the store."""
    store = request.app.state.content_store
    try:
        return await asyncio.to_thread(store.get_knowledge_stats)
    except Exception as e:
        logfire.error(
            "Knowledge stats query failed", error=str(e), error_type=type(e).__name__
        )
        raise HTTPException(status_code=503, detail="Content store unavailable") from e
