"""Tests for background job registration."""

import logging

import pytest
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from backoffice_api.config import Settings
from backoffice_api.services import backup_service
from backoffice_api.tasks.scheduler import (
    BACKUP_JOB_ID,
    INITIAL_BACKUP_JOB_ID,
    SESSION_PURGE_JOB_ID,
    build_scheduler,
    get_scheduler,
    scheduled_backup_job,
    start_scheduler,
)


class TestBuildScheduler:
    """Registered jobs and triggers."""

    def test_daily_backup_job(self) -> None:
        scheduler = build_scheduler(Settings(backup_schedule_hour=2, backup_misfire_grace_seconds=600))
        job = scheduler.get_job(BACKUP_JOB_ID)

        assert isinstance(job.trigger, CronTrigger)
        assert "hour='2'" in str(job.trigger)
        assert "minute='0'" in str(job.trigger)
        assert job.coalesce is True
        assert job.max_instances == 1
        assert job.misfire_grace_time == 600

    def test_startup_backup_optional(self) -> None:
        with_startup = build_scheduler(Settings(backup_on_startup=True))
        without_startup = build_scheduler(Settings(backup_on_startup=False))

        assert with_startup.get_job(INITIAL_BACKUP_JOB_ID) is not None
        assert without_startup.get_job(INITIAL_BACKUP_JOB_ID) is None

    def test_session_purge_job(self) -> None:
        job = build_scheduler(Settings()).get_job(SESSION_PURGE_JOB_ID)
        assert isinstance(job.trigger, IntervalTrigger)
        assert job.trigger.interval.total_seconds() == 3600


class TestJobs:
    """Job bodies and lifecycle."""

    @pytest.mark.asyncio
    async def test_disabled_scheduler_not_started(self) -> None:
        await start_scheduler()
        assert get_scheduler() is None

    @pytest.mark.asyncio
    async def test_backup_failure_is_logged(
        self, monkeypatch: pytest.MonkeyPatch, caplog: pytest.LogCaptureFixture
    ) -> None:
        """A failing scheduled backup never propagates into the scheduler."""

        class BrokenService:
            async def create_full_backup(self) -> str:
                raise RuntimeError("disk unavailable")

        monkeypatch.setattr(backup_service, "get_backup_service", lambda: BrokenService())

        with caplog.at_level(logging.ERROR, logger="backoffice_api.tasks.scheduler"):
            await scheduled_backup_job()

        assert "Scheduled backup failed" in caplog.text
