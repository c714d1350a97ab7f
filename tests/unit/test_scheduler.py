"""Tests for KnowledgeScheduler registry, triggering, history and health."""

import asyncio
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from knowledge_ingest.errors import (
    JobNotFoundError,
    JobNotRunnableError,
    SchedulerConflictError,
)
from knowledge_ingest.models.job_models import (
    HealthLevel,
    JobStatus,
    ScrapeOutcome,
    ScrapingJob,
    ScrapingResult,
)
from knowledge_ingest.services.scheduler import (
    KnowledgeScheduler,
    SchedulerState,
    next_run_time,
    validate_cron,
)
from tests.factories import FakeRunner

SGT = "Asia/Singapore"
NOW = datetime(2025, 6, 2, 0, 0, tzinfo=timezone.utc)  # Monday 08:00 SGT


def job(name="moh-guidelines", runner=None, schedule="0 2 * * 1", **kwargs) -> ScrapingJob:
    return ScrapingJob(name=name, schedule=schedule, timezone=SGT, scraper=runner, **kwargs)


def make_scheduler(capacity=1000, **kwargs) -> KnowledgeScheduler:
    return KnowledgeScheduler(SchedulerState(capacity), clock=lambda: NOW, **kwargs)


def result(i: int) -> ScrapingResult:
    return ScrapingResult(job_name=f"job-{i}", success=True, count=i, timestamp=NOW)


class TestCron:
    """Tests for cron helpers."""

    def test_next_run_in_singapore_time(self):
        fire = next_run_time("0 2 * * 1", SGT, NOW)
        assert fire.tzinfo is not None
        # 02:00 SGT on the following Monday
        assert fire == datetime(2025, 6, 9, 2, 0, tzinfo=ZoneInfo(SGT))
        assert fire.astimezone(timezone.utc) == datetime(2025, 6, 8, 18, 0, tzinfo=timezone.utc)

    def test_next_run_is_strictly_after(self):
        at_fire_time = datetime(2025, 6, 2, 1, 0, tzinfo=ZoneInfo(SGT))
        assert next_run_time("0 1 * * *", SGT, at_fire_time) == datetime(
            2025, 6, 3, 1, 0, tzinfo=ZoneInfo(SGT)
        )

    def test_monthly_schedule(self):
        fire = next_run_time("0 4 1 * *", SGT, NOW)
        assert fire == datetime(2025, 7, 1, 4, 0, tzinfo=ZoneInfo(SGT))

    @pytest.mark.parametrize("expression", ["", "* * *", "61 * * * *", "0 2 * * 1 2025", "bogus"])
    def test_invalid_expressions(self, expression):
        with pytest.raises(ValueError):
            validate_cron(expression)


class TestRegistry:
    """Tests for register_job() and set_job_enabled()."""

    def test_register_sets_next_run(self):
        scheduler = make_scheduler()
        scheduler.register_job(job(runner=FakeRunner()))
        status = scheduler.get_job_status("moh-guidelines")
        assert status.status is JobStatus.IDLE
        assert status.next_run == datetime(2025, 6, 9, 2, 0, tzinfo=ZoneInfo(SGT))

    def test_duplicate_name_rejected(self):
        scheduler = make_scheduler()
        scheduler.register_job(job(runner=FakeRunner()))
        with pytest.raises(ValueError):
            scheduler.register_job(job(runner=FakeRunner()))

    def test_invalid_schedule_rejected(self):
        with pytest.raises(ValueError):
            make_scheduler().register_job(job(runner=FakeRunner(), schedule="every monday"))

    def test_unknown_timezone_rejected(self):
        bad = ScrapingJob(name="x", schedule="0 1 * * *", timezone="Mars/Olympus", scraper=FakeRunner())
        with pytest.raises(ValueError):
            make_scheduler().register_job(bad)

    def test_placeholder_reported_as_disabled(self):
        scheduler = make_scheduler()
        scheduler.register_job(job(name="spc-standards", runner=None, enabled=True))
        status = scheduler.get_job_status("spc-standards")
        assert status.enabled is False
        assert status.runnable is False
        assert status.next_run is None

    def test_enabling_placeholder_rejected(self):
        scheduler = make_scheduler()
        scheduler.register_job(job(name="spc-standards"))
        with pytest.raises(JobNotRunnableError):
            scheduler.set_job_enabled("spc-standards", True)

    def test_disable_and_enable(self):
        scheduler = make_scheduler()
        scheduler.register_job(job(runner=FakeRunner()))
        view = scheduler.set_job_enabled("moh-guidelines", False)
        assert view.enabled is False
        assert view.next_run is None
        view = scheduler.set_job_enabled("moh-guidelines", True)
        assert view.enabled is True
        assert view.next_run is not None

    def test_unknown_job(self):
        scheduler = make_scheduler()
        with pytest.raises(JobNotFoundError):
            scheduler.get_job_status("nope")
        with pytest.raises(JobNotFoundError):
            scheduler.set_job_enabled("nope", True)


class TestTriggerJob:
    """Tests for trigger_job()."""

    @pytest.mark.asyncio
    async def test_success_records_result(self):
        scheduler = make_scheduler()
        scheduler.register_job(job(runner=FakeRunner(ScrapeOutcome(success=True, count=5))))

        res = await scheduler.trigger_job("moh-guidelines")

        assert res.success
        assert res.count == 5
        assert res.job_name == "moh-guidelines"
        assert res.duration_ms >= 0
        assert scheduler.get_recent_results() == [res]
        status = scheduler.get_job_status("moh-guidelines")
        assert status.status is JobStatus.IDLE
        assert status.last_run == NOW

    @pytest.mark.asyncio
    async def test_failure_sets_error_status(self):
        scheduler = make_scheduler()
        outcome = ScrapeOutcome(success=False, errors=["store unreachable"])
        scheduler.register_job(job(runner=FakeRunner(outcome)))

        res = await scheduler.trigger_job("moh-guidelines")

        assert not res.success
        assert res.errors == ["store unreachable"]
        assert scheduler.get_job_status("moh-guidelines").status is JobStatus.ERROR

    @pytest.mark.asyncio
    async def test_error_is_not_sticky(self):
        runner = FakeRunner(ScrapeOutcome(success=False, errors=["boom"]))
        scheduler = make_scheduler()
        scheduler.register_job(job(runner=runner))
        await scheduler.trigger_job("moh-guidelines")

        runner.outcome = ScrapeOutcome(success=True, count=2)
        res = await scheduler.trigger_job("moh-guidelines")

        assert res.success
        assert scheduler.get_job_status("moh-guidelines").status is JobStatus.IDLE

    @pytest.mark.asyncio
    async def test_running_job_rejected(self):
        runner = FakeRunner(block=True)
        scheduler = make_scheduler()
        scheduler.register_job(job(runner=runner))

        first = asyncio.create_task(scheduler.trigger_job("moh-guidelines"))
        await runner.started.wait()

        with pytest.raises(SchedulerConflictError):
            await scheduler.trigger_job("moh-guidelines")
        assert scheduler.get_job_status("moh-guidelines").status is JobStatus.RUNNING
        assert runner.calls == 1

        runner.release.set()
        await first
        assert scheduler.get_job_status("moh-guidelines").status is JobStatus.IDLE
        assert len(scheduler.get_recent_results()) == 1

    @pytest.mark.asyncio
    async def test_different_jobs_run_concurrently(self):
        a, b = FakeRunner(block=True), FakeRunner(block=True)
        scheduler = make_scheduler()
        scheduler.register_job(job(name="a", runner=a))
        scheduler.register_job(job(name="b", runner=b))

        tasks = [asyncio.create_task(scheduler.trigger_job(n)) for n in ("a", "b")]
        await a.started.wait()
        await b.started.wait()
        assert scheduler.get_health_status().running_jobs == 2

        a.release.set()
        b.release.set()
        await asyncio.gather(*tasks)

    @pytest.mark.asyncio
    async def test_placeholder_cannot_be_triggered(self):
        scheduler = make_scheduler()
        scheduler.register_job(job(name="spc-standards"))
        with pytest.raises(JobNotRunnableError):
            await scheduler.trigger_job("spc-standards")
        assert scheduler.get_recent_results() == []

    @pytest.mark.asyncio
    async def test_unknown_job(self):
        with pytest.raises(JobNotFoundError):
            await make_scheduler().trigger_job("nope")

    @pytest.mark.asyncio
    async def test_runner_bug_recorded_then_raised(self):
        class BrokenRunner:
            async def run(self):
                raise RuntimeError("programming error")

        scheduler = make_scheduler()
        scheduler.register_job(job(runner=BrokenRunner()))

        with pytest.raises(RuntimeError):
            await scheduler.trigger_job("moh-guidelines")
        assert scheduler.get_job_status("moh-guidelines").status is JobStatus.ERROR
        assert scheduler.get_recent_results()[0].success is False

    @pytest.mark.asyncio
    async def test_stats_refreshed_after_success(self, fake_store):
        scheduler = make_scheduler(stats_provider=fake_store.get_knowledge_stats)
        scheduler.register_job(job(runner=FakeRunner()))
        await scheduler.trigger_job("moh-guidelines")
        assert scheduler.state.knowledge_stats is not None

    @pytest.mark.asyncio
    async def test_stats_failure_does_not_fail_job(self):
        def broken_stats():
            raise RuntimeError("store down")

        scheduler = make_scheduler(stats_provider=broken_stats)
        scheduler.register_job(job(runner=FakeRunner()))
        res = await scheduler.trigger_job("moh-guidelines")
        assert res.success
        assert scheduler.state.knowledge_stats is None


class TestEmergencyUpdate:
    """Tests for trigger_emergency_update()."""

    def _scheduler(self):
        scheduler = make_scheduler()
        runners = {name: FakeRunner() for name in ("moh", "hsa", "ndf")}
        for source, runner in runners.items():
            scheduler.register_job(job(name=f"{source}-job", runner=runner, source=source))
        scheduler.register_job(job(name="spc-standards", source="spc"))
        scheduler.register_job(job(name="knowledge-cache-cleanup", runner=FakeRunner()))
        return scheduler, runners

    @pytest.mark.asyncio
    async def test_single_source(self):
        scheduler, runners = self._scheduler()
        results = await scheduler.trigger_emergency_update("HSA")
        assert [r.job_name for r in results] == ["hsa-job"]
        assert runners["hsa"].calls == 1
        assert runners["moh"].calls == 0

    @pytest.mark.asyncio
    async def test_all_sources_skips_placeholders_and_housekeeping(self):
        scheduler, runners = self._scheduler()
        results = await scheduler.trigger_emergency_update("all")
        assert sorted(r.job_name for r in results) == ["hsa-job", "moh-job", "ndf-job"]
        assert all(r.calls == 1 for r in runners.values())

    @pytest.mark.asyncio
    async def test_all_skips_running_job(self):
        scheduler, runners = self._scheduler()
        runners["moh"].block = True
        running = asyncio.create_task(scheduler.trigger_job("moh-job"))
        await runners["moh"].started.wait()

        results = await scheduler.trigger_emergency_update("all")
        assert sorted(r.job_name for r in results) == ["hsa-job", "ndf-job"]

        runners["moh"].release.set()
        await running

    @pytest.mark.asyncio
    async def test_unknown_or_placeholder_source(self):
        scheduler, _ = self._scheduler()
        with pytest.raises(ValueError):
            await scheduler.trigger_emergency_update("spc")
        with pytest.raises(ValueError):
            await scheduler.trigger_emergency_update("fda")


class TestInitialSync:
    """Tests for run_initial_sync()."""

    @pytest.mark.asyncio
    async def test_runs_every_source_and_logs_totals(self, mock_logfire):
        scheduler = make_scheduler()
        scheduler.register_job(
            job(name="moh-job", runner=FakeRunner(ScrapeOutcome(success=True, count=3)), source="moh")
        )
        scheduler.register_job(
            job(
                name="hsa-job",
                runner=FakeRunner(ScrapeOutcome(success=False, errors=["HTTP 503", "timeout"])),
                source="hsa",
            )
        )
        scheduler.register_job(job(name="spc-standards", source="spc"))

        results = await scheduler.run_initial_sync()

        assert sorted(r.job_name for r in results) == ["hsa-job", "moh-job"]
        mock_logfire.info.assert_any_call(
            "Initial sync finished", succeeded=1, failed=1, total_items=3, error_count=2
        )

    @pytest.mark.asyncio
    async def test_no_runnable_jobs_is_skipped(self, mock_logfire):
        scheduler = make_scheduler()
        scheduler.register_job(job(name="spc-standards", source="spc"))

        assert await scheduler.run_initial_sync() == []
        mock_logfire.warning.assert_called_once_with("Initial sync skipped, no runnable source jobs")

    @pytest.mark.asyncio
    async def test_runner_bug_is_logged_not_raised(self, mock_logfire):
        class BrokenRunner:
            async def run(self):
                raise KeyError("title")

        scheduler = make_scheduler()
        scheduler.register_job(job(name="ndf-job", runner=BrokenRunner(), source="ndf"))

        assert await scheduler.run_initial_sync() == []
        assert scheduler.get_job_status("ndf-job").status is JobStatus.ERROR
        errors = [c for c in mock_logfire.error.call_args_list if c.args[0] == "Initial sync raised"]
        assert errors[0].kwargs["error_type"] == "KeyError"


class TestHistory:
    """Tests for the bounded result history."""

    def test_recent_results_newest_first(self):
        scheduler = make_scheduler()
        for i in range(5):
            scheduler.state.history.append(result(i))
        assert [r.count for r in scheduler.get_recent_results(3)] == [4, 3, 2]

    def test_default_limit_is_50(self):
        scheduler = make_scheduler()
        for i in range(80):
            scheduler.state.history.append(result(i))
        assert len(scheduler.get_recent_results()) == 50

    def test_non_positive_limit(self):
        scheduler = make_scheduler()
        scheduler.state.history.append(result(1))
        assert scheduler.get_recent_results(0) == []

    def test_oldest_evicted_at_capacity(self):
        scheduler = make_scheduler(capacity=1000)
        for i in range(1005):
            scheduler.state.history.append(result(i))
        recent = scheduler.get_recent_results(2000)
        assert len(recent) == 1000
        assert recent[0].count == 1004
        assert recent[-1].count == 5

    def test_capacity_must_be_positive(self):
        with pytest.raises(ValueError):
            SchedulerState(0)


class TestHealth:
    """Tests for get_health_status()."""

    def test_healthy(self):
        scheduler = make_scheduler()
        scheduler.register_job(job(name="a", runner=FakeRunner()))
        scheduler.register_job(job(name="spc-standards"))
        health = scheduler.get_health_status()
        assert health.status is HealthLevel.HEALTHY
        assert health.total_jobs == 2
        assert health.enabled_jobs == 1
        assert health.placeholder_jobs == 1

    def test_error_when_any_job_errored(self):
        scheduler = make_scheduler()
        scheduler.register_job(job(name="a", runner=FakeRunner()))
        scheduler.register_job(job(name="b", runner=FakeRunner()))
        scheduler.state.jobs["b"].status = JobStatus.ERROR
        health = scheduler.get_health_status()
        assert health.status is HealthLevel.ERROR
        assert health.error_jobs == 1

    def test_warning_when_more_than_half_running(self):
        scheduler = make_scheduler()
        for name in ("a", "b", "c"):
            scheduler.register_job(job(name=name, runner=FakeRunner()))
        scheduler.state.jobs["a"].status = JobStatus.RUNNING
        assert scheduler.get_health_status().status is HealthLevel.HEALTHY
        scheduler.state.jobs["b"].status = JobStatus.RUNNING
        assert scheduler.get_health_status().status is HealthLevel.WARNING

    def test_recent_results_limited_to_ten(self):
        scheduler = make_scheduler()
        for i in range(25):
            scheduler.state.history.append(result(i))
        health = scheduler.get_health_status()
        assert len(health.recent_results) == 10
        assert health.recent_results[0].count == 24
