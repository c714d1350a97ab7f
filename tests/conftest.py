"""Shared pytest fixtures and configuration.

Fixture Categories:
1. Infrastructure: respx_mock, test_settings, mock_settings, mock_logfire,
   mock_supabase_client
2. Doubles: fake_store, recording_sleep, api_scheduler (classes live in
   tests/factories.py)
3. E2E: test_client
"""

import os
from unittest.mock import MagicMock, Mock

import pytest

# Logfire stays silent when tests never call logfire.configure()
os.environ.setdefault("LOGFIRE_IGNORE_NO_CONFIG", "1")

import logfire
import respx

from knowledge_ingest.config import Settings
from knowledge_ingest.models.job_models import ScrapeOutcome, ScrapingJob
from knowledge_ingest.services.scheduler import KnowledgeScheduler, SchedulerState
from tests.factories import FakeContentStore, FakeRunner, RecordingSleep


@pytest.fixture
def respx_mock():
    """Respx mock fixture for HTTP mocking."""
    with respx.mock:
        yield respx


@pytest.fixture
def test_settings():
    """Settings that never reach real infrastructure."""
    return Settings(
        supabase_url="https://test.supabase.co",
        supabase_service_key="test-service-key",
        env="local",
        logfire_token=None,
        sentry_dsn=None,
        scheduler_enabled=False,
        respect_robots_txt=False,
        scraper_timeout_seconds=5.0,
    )


@pytest.fixture
def mock_settings(monkeypatch, test_settings):
    """Patch get_settings wherever it is imported."""
    monkeypatch.setattr("knowledge_ingest.config.get_settings", lambda: test_settings)
    monkeypatch.setattr("knowledge_ingest.main.get_settings", lambda: test_settings)
    monkeypatch.setattr(
        "knowledge_ingest.logging_config.get_settings", lambda: test_settings
    )
    monkeypatch.setattr("knowledge_ingest.db.client.get_settings", lambda: test_settings)
    monkeypatch.setattr(
        "knowledge_ingest.cli.ingest_cli.get_settings", lambda: test_settings
    )
    return test_settings


@pytest.fixture
def fake_store():
    return FakeContentStore()


@pytest.fixture
def recording_sleep():
    return RecordingSleep()


@pytest.fixture
def mock_supabase_client():
    """Mock Supabase client whose query chains return ``client.result``."""
    client = MagicMock()
    result = MagicMock()
    result.data = [{"id": "row"}]
    client.result = result
    table = client.table.return_value
    table.upsert.return_value.execute.return_value = result
    table.select.return_value.gte.return_value.execute.return_value = result
    table.delete.return_value.lt.return_value.execute.return_value = result
    return client


@pytest.fixture
def mock_logfire(monkeypatch):
    """
    Replace logfire's logging functions with mocks.

    Modules call ``logfire.info(...)`` through the module object, so patching
    the attributes covers every import site.
    """
    mock_logfire_module = MagicMock()
    for attr in (
        "info",
        "warning",
        "error",
        "configure",
        "instrument_fastapi",
        "instrument_httpx",
    ):
        mock = Mock()
        setattr(mock_logfire_module, attr, mock)
        monkeypatch.setattr(logfire, attr, mock)
    return mock_logfire_module


@pytest.fixture
def api_scheduler():
    """Scheduler with one job per outcome the API has to render."""
    scheduler = KnowledgeScheduler(SchedulerState())
    scheduler.register_job(
        ScrapingJob(
            name="moh-guidelines",
            description="MOH clinical practice guidelines",
            schedule="0 2 * * 1",
            timezone="Asia/Singapore",
            scraper=FakeRunner(ScrapeOutcome(success=True, count=5)),
            source="moh",
        )
    )
    scheduler.register_job(
        ScrapingJob(
            name="hsa-alerts",
            schedule="0 1 * * *",
            timezone="Asia/Singapore",
            scraper=FakeRunner(ScrapeOutcome(success=False, errors=["HTTP 503"])),
            source="hsa",
        )
    )
    scheduler.register_job(
        ScrapingJob(
            name="spc-standards",
            schedule="0 4 1 * *",
            timezone="Asia/Singapore",
            source="spc",
        )
    )
    return scheduler


@pytest.fixture
def test_client(mock_settings, mock_logfire, api_scheduler, fake_store):
    """FastAPI TestClient for E2E tests, wired to api_scheduler and fake_store."""
    from fastapi.testclient import TestClient
    from knowledge_ingest.main import app

    with TestClient(app) as client:
        app.state.scheduler = api_scheduler
        app.state.content_store = fake_store
        yield client
