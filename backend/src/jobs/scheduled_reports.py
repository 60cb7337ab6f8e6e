"""
Scheduled Reports Job - exports reports whose schedule has come due.

Execution flow:
1. Open a session and a record store
2. ReportGenerator.run_due_schedules() exports each due schedule and
   advances its next_run_date
3. Log the run summary with a correlation_id

Default schedule: every `scheduled_reports_interval_minutes` minutes.
Delivery to the schedule's recipients is not part of this job.
"""
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from uuid import uuid4

from src.lib.db import SessionLocal, get_db_context
from src.lib.logging import bind_log_context, get_logger, set_correlation_id
from src.lib.settings import settings
from src.services.record_store import SqlRecordStore
from src.services.report_generator import get_report_generator

logger = get_logger(__name__)

JOB_ID = "scheduled_reports"


async def run_scheduled_reports(now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Process every active schedule whose next_run_date has passed.

    Returns:
        Dictionary with correlation_id, processed, failed, report_ids and
        duration_seconds
    """
    correlation_id = uuid4()
    set_correlation_id(str(correlation_id))
    bind_log_context(job_id=JOB_ID)
    started_at = datetime.now(timezone.utc)
    logger.info(f"Starting scheduled reports run (correlation_id: {correlation_id})")

    try:
        async with get_db_context() as db:
            generator = get_report_generator(SqlRecordStore(SessionLocal), db)
            outcome = await generator.run_due_schedules(now)
    except Exception as e:
        duration = (datetime.now(timezone.utc) - started_at).total_seconds()
        logger.error(
            f"Scheduled reports run failed "
            f"(correlation_id: {correlation_id}, duration: {duration:.2f}s): {e}",
            exc_info=True,
        )
        # Re-raise so the scheduler records the job error
        raise

    duration = (datetime.now(timezone.utc) - started_at).total_seconds()
    logger.info(
        f"Scheduled reports run completed "
        f"(correlation_id: {correlation_id}, duration: {duration:.2f}s, "
        f"processed: {outcome['processed']}, failed: {outcome['failed']})"
    )
    return {
        "correlation_id": str(correlation_id),
        "duration_seconds": duration,
        **outcome,
    }


def register_report_jobs(scheduler_manager) -> None:
    """
    Register the scheduled reports job with the scheduler.

    Example:
        scheduler = get_scheduler()
        register_report_jobs(scheduler)
        scheduler.start()
    """
    scheduler_manager.add_interval_job(
        func=run_scheduled_reports,
        job_id=JOB_ID,
        minutes=settings.scheduled_reports_interval_minutes,
    )
    logger.info("Scheduled report jobs registered")
