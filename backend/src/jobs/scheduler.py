"""
Background job scheduling on the application's event loop.

The only recurring work is the scheduled-reports runner, an async function
that opens its own database session, so AsyncIOScheduler is used instead
of a thread pool. Missed runs are coalesced into one and a job never
overlaps itself.

Usage:
    scheduler = get_scheduler()
    register_report_jobs(scheduler)
    scheduler.start()
"""
from typing import Any, Callable, Dict, List, Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, JobExecutionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from src.lib.logging import get_logger, log_with_context
from src.lib.settings import settings

logger = get_logger(__name__)


_scheduler: Optional["SchedulerManager"] = None


class SchedulerManager:
    """Owns one AsyncIOScheduler and logs every job outcome."""

    def __init__(self):
        self.scheduler = AsyncIOScheduler(
            timezone="UTC",
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": settings.scheduler_misfire_grace_seconds,
            },
        )
        self.scheduler.add_listener(self._on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)

    def _on_job_event(self, event: JobExecutionEvent) -> None:
        if event.exception is not None:
            logger.error(
                f"Job {event.job_id} failed: {event.exception.__class__.__name__}: {event.exception}",
                exc_info=event.exception,
            )
            return
        summary = event.retval if isinstance(event.retval, dict) else {}
        log_with_context(
            logger,
            "info",
            f"Job {event.job_id} finished",
            job_id=event.job_id,
            processed=summary.get("processed"),
            failed=summary.get("failed"),
        )

    @property
    def running(self) -> bool:
        return self.scheduler.running

    def start(self) -> None:
        """Start scheduling. Needs a running event loop."""
        if self.scheduler.running:
            logger.warning("Scheduler already running")
            return
        self.scheduler.start()
        logger.info(f"Scheduler started with {len(self.scheduler.get_jobs())} job(s)")

    def shutdown(self, wait: bool = True) -> None:
        if not self.scheduler.running:
            logger.warning("Scheduler not running")
            return
        self.scheduler.shutdown(wait=wait)
        logger.info("Scheduler stopped")

    def add_interval_job(
        self,
        func: Callable,
        job_id: str,
        seconds: Optional[int] = None,
        minutes: Optional[int] = None,
        hours: Optional[int] = None,
        **kwargs,
    ) -> None:
        """
        Run `func` every fixed interval, replacing any job with the same id.

        Raises:
            ValueError: No interval given
        """
        if not any([seconds, minutes, hours]):
            raise ValueError("At least one of seconds, minutes, or hours must be specified")

        self.scheduler.add_job(
            func,
            trigger=IntervalTrigger(
                seconds=seconds or 0,
                minutes=minutes or 0,
                hours=hours or 0,
                timezone="UTC",
            ),
            id=job_id,
            replace_existing=True,
            **kwargs,
        )
        logger.info(f"Scheduled {job_id} every {hours or 0}h {minutes or 0}m {seconds or 0}s")

    def remove_job(self, job_id: str) -> None:
        self.scheduler.remove_job(job_id)
        logger.info(f"Removed job: {job_id}")

    def get_jobs(self) -> list:
        return self.scheduler.get_jobs()

    def describe_jobs(self) -> List[Dict[str, Any]]:
        """Job ids with their next run time (None while paused or not started)."""
        return [
            {
                "job_id": job.id,
                "next_run_time": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
            }
            for job in self.scheduler.get_jobs()
        ]


def get_scheduler() -> SchedulerManager:
    """Process-wide scheduler instance."""
    global _scheduler

    if _scheduler is None:
        _scheduler = SchedulerManager()

    return _scheduler
