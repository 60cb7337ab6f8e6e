"""
Tests for the scheduler and the scheduled report job.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from apscheduler.triggers.interval import IntervalTrigger

from src.jobs.scheduled_reports import JOB_ID, register_report_jobs, run_scheduled_reports
from src.jobs.scheduler import SchedulerManager, get_scheduler


@pytest.mark.unit
def test_scheduler_manager_initialization():
    """Test SchedulerManager initialization."""
    manager = SchedulerManager()

    assert manager.scheduler is not None
    assert not manager.scheduler.running


@pytest.mark.unit
@pytest.mark.asyncio
async def test_scheduler_manager_start_stop():
    """Starting needs a running event loop."""
    manager = SchedulerManager()

    manager.add_interval_job(lambda: None, job_id="tick", minutes=5)
    manager.start()
    assert manager.running
    assert manager.describe_jobs()[0]["job_id"] == "tick"
    assert manager.describe_jobs()[0]["next_run_time"] is not None

    manager.shutdown(wait=False)
    assert not manager.running


@pytest.mark.unit
def test_scheduler_manager_add_interval_job():
    """Test adding interval job to scheduler."""
    manager = SchedulerManager()

    def test_job():
        pass

    manager.add_interval_job(test_job, job_id="test_interval", minutes=5)

    jobs = manager.get_jobs()
    assert len(jobs) == 1
    assert jobs[0].id == "test_interval"
    assert isinstance(jobs[0].trigger, IntervalTrigger)


@pytest.mark.unit
def test_scheduler_manager_interval_required():
    manager = SchedulerManager()

    with pytest.raises(ValueError):
        manager.add_interval_job(lambda: None, job_id="no_interval")


@pytest.mark.unit
def test_scheduler_manager_remove_job():
    """Test removing job from scheduler."""
    manager = SchedulerManager()

    manager.add_interval_job(lambda: None, job_id="test_remove", minutes=5)
    assert len(manager.get_jobs()) == 1

    manager.remove_job("test_remove")

    assert len(manager.get_jobs()) == 0


@pytest.mark.unit
def test_get_scheduler_singleton():
    """Test that get_scheduler returns singleton."""
    assert get_scheduler() is get_scheduler()


@pytest.mark.unit
def test_scheduler_manager_event_listeners():
    """Test scheduler event listeners are registered."""
    manager = SchedulerManager()

    assert len(manager.scheduler._listeners) > 0


@pytest.mark.unit
def test_register_report_jobs_adds_interval_job():
    manager = SchedulerManager()

    register_report_jobs(manager)

    jobs = manager.get_jobs()
    assert [job.id for job in jobs] == [JOB_ID]
    assert isinstance(jobs[0].trigger, IntervalTrigger)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_run_scheduled_reports_uses_generator(mock_db_session):
    now = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)
    generator = MagicMock()
    generator.run_due_schedules = AsyncMock(return_value={"processed": 2, "failed": 0, "report_ids": [1, 2]})

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=mock_db_session)
    context.__aexit__ = AsyncMock(return_value=False)

    with patch("src.jobs.scheduled_reports.get_db_context", return_value=context), \
         patch("src.jobs.scheduled_reports.get_report_generator", return_value=generator):
        result = await run_scheduled_reports(now)

    assert result["processed"] == 2
    generator.run_due_schedules.assert_awaited_once_with(now)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_run_scheduled_reports_reraises(mock_db_session):
    generator = MagicMock()
    generator.run_due_schedules = AsyncMock(side_effect=RuntimeError("database gone"))

    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=mock_db_session)
    context.__aexit__ = AsyncMock(return_value=False)

    with patch("src.jobs.scheduled_reports.get_db_context", return_value=context), \
         patch("src.jobs.scheduled_reports.get_report_generator", return_value=generator):
        with pytest.raises(RuntimeError, match="database gone"):
            await run_scheduled_reports()


@pytest.mark.unit
def test_pending_jobs_have_no_next_run():
    manager = SchedulerManager()
    manager.add_interval_job(lambda: None, job_id="pending", hours=1)

    assert manager.describe_jobs() == [{"job_id": "pending", "next_run_time": None}]


@pytest.mark.unit
def test_job_defaults_follow_settings():
    defaults = SchedulerManager().scheduler._job_defaults

    assert defaults["coalesce"] is True
    assert defaults["max_instances"] == 1
    assert defaults["misfire_grace_time"] == 300
