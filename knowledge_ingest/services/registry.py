"""Default job table for the Singapore pharmacy knowledge sources."""

import asyncio

from knowledge_ingest.config import Settings
from knowledge_ingest.constants import CACHE_CLEANUP_CRON
from knowledge_ingest.db.content_store import SupabaseContentStore
from knowledge_ingest.models.content_models import SourceType
from knowledge_ingest.models.job_models import ScrapingJob
from knowledge_ingest.scrapers.hsa import create_hsa_scraper
from knowledge_ingest.scrapers.moh import create_moh_scraper
from knowledge_ingest.scrapers.ndf import create_ndf_scraper
from knowledge_ingest.services.fetcher import Sleep
from knowledge_ingest.services.housekeeping import CacheCleanupTask
from knowledge_ingest.services.scheduler import KnowledgeScheduler, SchedulerState

# name -> cron expression (evaluated in settings.scheduler_timezone)
MOH_GUIDELINES_SCHEDULE = "0 2 * * 1"  # Mondays 02:00
HSA_ALERTS_SCHEDULE = "0 1 * * *"  # daily 01:00
NDF_MEDICATIONS_SCHEDULE = "0 3 * * 3"  # Wednesdays 03:00
SPC_STANDARDS_SCHEDULE = "0 4 1 * *"  # 1st of the month 04:00


def build_scheduler(
    settings: Settings,
    store: SupabaseContentStore | None = None,
    sleep: Sleep = asyncio.sleep,
) -> KnowledgeScheduler:
    """Create a scheduler with every known source registered.

    Args:
        settings: Application settings
        store: Content store shared by all scrapers (Supabase by default)
        sleep: Awaitable sleep for rate limits, backoff and timers

    Returns:
        Scheduler with a fresh SchedulerState; timers are not started
    """
    store = store or SupabaseContentStore()
    scheduler = KnowledgeScheduler(
        SchedulerState(settings.result_history_capacity),
        sleep=sleep,
        stats_provider=store.get_knowledge_stats,
    )
    tz = settings.scheduler_timezone

    jobs = [
        ScrapingJob(
            name="moh-guidelines",
            description="MOH clinical practice guidelines",
            schedule=MOH_GUIDELINES_SCHEDULE,
            timezone=tz,
            scraper=create_moh_scraper(store, settings, sleep=sleep),
            source=SourceType.MOH.value,
        ),
        ScrapingJob(
            name="hsa-alerts",
            description="HSA safety alerts and ADR bulletins",
            schedule=HSA_ALERTS_SCHEDULE,
            timezone=tz,
            scraper=create_hsa_scraper(store, settings, sleep=sleep),
            source=SourceType.HSA.value,
        ),
        ScrapingJob(
            name="ndf-medications",
            description="National Drug Formulary monographs",
            schedule=NDF_MEDICATIONS_SCHEDULE,
            timezone=tz,
            scraper=create_ndf_scraper(store, settings, sleep=sleep),
            source=SourceType.NDF.value,
        ),
        # TODO: add an SPC practice-standards scraper and enable this job
        ScrapingJob(
            name="spc-standards",
            description="Singapore Pharmacy Council practice standards",
            schedule=SPC_STANDARDS_SCHEDULE,
            timezone=tz,
            scraper=None,
            enabled=False,
            source=SourceType.SPC.value,
        ),
        ScrapingJob(
            name=CacheCleanupTask.name,
            description="Purge expired AI knowledge cache entries",
            schedule=CACHE_CLEANUP_CRON,
            timezone=tz,
            scraper=CacheCleanupTask(store),
        ),
    ]
    for job in jobs:
        scheduler.register_job(job)
    return scheduler
