"""FastAPI application initialization."""

import os
from contextlib import asynccontextmanager

import logfire
import sentry_sdk
from fastapi import FastAPI
from sentry_sdk.integrations.fastapi import FastApiIntegration

from knowledge_ingest.api import health, knowledge
from knowledge_ingest.config import get_settings
from knowledge_ingest.db.content_store import SupabaseContentStore
from knowledge_ingest.logging_config import setup_logfire
from knowledge_ingest.services.registry import build_scheduler

APP_VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the scheduler on startup and stop it gracefully on shutdown."""
    settings = get_settings()

    setup_logfire(app)

    if settings.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry_dsn,
            traces_sample_rate=settings.sentry_traces_sample_rate,
            environment=settings.env,
            integrations=[FastApiIntegration()],
        )

    store = SupabaseContentStore()
    scheduler = build_scheduler(settings, store)
    app.state.content_store = store
    app.state.scheduler = scheduler

    if settings.scheduler_enabled:
        scheduler.start(initial_sync=settings.initial_sync_on_startup)

    logfire.info(
        "Application startup complete",
        environment=settings.env,
        scheduler_enabled=settings.scheduler_enabled,
        initial_sync=settings.scheduler_enabled and settings.initial_sync_on_startup,
        jobs=len(scheduler.state.jobs),
    )

    yield

    logfire.info("Application shutdown initiated")
    await scheduler.stop()
    logfire.info("Application shutdown complete")


app = FastAPI(
    title="Pharmacy Knowledge Ingestion",
    description="Scheduled ingestion of MOH, HSA and NDF content into the knowledge base",
    version=APP_VERSION,
    lifespan=lifespan,
)

app.include_router(health.router, tags=["health"])
app.include_router(knowledge.router, prefix="/knowledge", tags=["knowledge"])


@app.get("/")
def root():
    """Root endpoint."""
    return {"message": "Pharmacy Knowledge Ingestion API", "version": APP_VERSION}


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", 8000))
    uvicorn.run(
        "knowledge_ingest.main:app",
        host="0.0.0.0",
        port=port,
        reload=os.getenv("ENV") == "local",
    )
