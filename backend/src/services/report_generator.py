"""
ReportGenerator - generated, exported and scheduled analytics reports.

Export is the only multi-step write in the analytics core:
1. insert the report_artifacts row (no file path yet)
2. render the bundle into the requested format
3. write the file
4. back-fill file_path

A failure in steps 2-4 leaves the row in place with file_path NULL, so
history shows it as "generating" and callers can regenerate.
"""
import asyncio
import enum
import math
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi.encoders import jsonable_encoder
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.middleware.error_handler import AppException, NotFoundException
from src.lib.logging import get_logger, log_with_context
from src.lib.metrics import get_metrics_collector
from src.lib.settings import settings
from src.models.reports import (
    ReportArtifact,
    ReportFormat,
    ReportFrequency,
    ReportType,
    ScheduledReport,
)
from src.services.benchmarking_service import BenchmarkingService
from src.services.customer_analytics import CustomerAnalytics
from src.services.performance_analytics import PerformanceAnalytics
from src.services.period_resolver import add_months, period_for_range, utc_now
from src.services.record_store import RecordStore, as_utc
from src.services.report_exporter import render_report, write_report_file
from src.services.revenue_analytics import RevenueAnalytics


logger = get_logger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class ReportSection(str, enum.Enum):
    REVENUE = "revenue"
    PERFORMANCE = "performance"
    CUSTOMER = "customer"
    BENCHMARKS = "benchmarks"


REPORT_TEMPLATES: Dict[ReportType, Dict[str, Any]] = {
    ReportType.REVENUE: {
        "name": "Revenue Analytics Report",
        "description": "Comprehensive revenue and earnings analysis",
        "sections": [ReportSection.REVENUE],
        "estimated_generation_seconds": 30,
    },
    ReportType.PERFORMANCE: {
        "name": "Performance Metrics Report",
        "description": "Service performance and completion analytics",
        "sections": [ReportSection.PERFORMANCE],
        "estimated_generation_seconds": 45,
    },
    ReportType.CUSTOMER: {
        "name": "Customer Analytics Report",
        "description": "Customer insights and behavior analysis",
        "sections": [ReportSection.CUSTOMER],
        "estimated_generation_seconds": 45,
    },
    ReportType.COMPREHENSIVE: {
        "name": "Comprehensive Analytics Report",
        "description": "Complete business performance overview",
        "sections": [
            ReportSection.REVENUE,
            ReportSection.PERFORMANCE,
            ReportSection.CUSTOMER,
            ReportSection.BENCHMARKS,
        ],
        "estimated_generation_seconds": 120,
    },
    ReportType.CUSTOM: {
        "name": "Custom Report",
        "description": "User-defined report with selected metrics",
        "sections": [],
        "estimated_generation_seconds": 60,
    },
}


# Request models
class ReportOptions(BaseModel):
    """What goes into a report and over which dates."""
    report_type: ReportType = Field(default=ReportType.COMPREHENSIVE, description="Report template")
    format: ReportFormat = Field(default=ReportFormat.PDF, description="Output format")
    date_range_start: Optional[datetime] = Field(None, description="Inclusive start of the analysed range")
    date_range_end: Optional[datetime] = Field(None, description="End of the analysed range")
    include_sections: List[ReportSection] = Field(
        default_factory=list,
        description="Sections for custom reports",
    )

    @model_validator(mode="after")
    def check_options(self) -> "ReportOptions":
        if self.date_range_start and self.date_range_end:
            if as_utc(self.date_range_start) > as_utc(self.date_range_end):
                raise ValueError("date_range_start must not be after date_range_end")
        if self.report_type == ReportType.CUSTOM and not self.include_sections:
            raise ValueError("Custom reports require at least one section in include_sections")
        return self


class ReportScheduleConfig(BaseModel):
    """Recurrence and delivery list for a scheduled report."""
    frequency: ReportFrequency = Field(..., description="daily, weekly or monthly")
    email_recipients: List[str] = Field(..., min_length=1, description="Delivery addresses")
    start_date: Optional[datetime] = Field(None, description="First run is one frequency unit after this")

    @field_validator("email_recipients")
    @classmethod
    def validate_recipients(cls, v: List[str]) -> List[str]:
        invalid = [address for address in v if not EMAIL_PATTERN.match(address)]
        if invalid:
            raise ValueError(f"Invalid email addresses: {', '.join(invalid)}")
        return v


class ReportHistoryFilters(BaseModel):
    report_type: Optional[ReportType] = None
    format: Optional[ReportFormat] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    limit: int = Field(default=20, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


def advance_schedule(moment: datetime, frequency: ReportFrequency) -> datetime:
    """One frequency unit after `moment`; months clamp to the target month's end."""
    frequency = ReportFrequency(frequency)
    if frequency == ReportFrequency.DAILY:
        return moment + timedelta(days=1)
    if frequency == ReportFrequency.WEEKLY:
        return moment + timedelta(days=7)
    return add_months(moment, 1)


def artifact_status(artifact: ReportArtifact, now: datetime) -> str:
    if as_utc(artifact.expires_at) < now:
        return "expired"
    if artifact.file_path:
        return "available"
    return "generating"


def report_sections(options: ReportOptions) -> List[ReportSection]:
    if options.report_type == ReportType.CUSTOM:
        return list(dict.fromkeys(options.include_sections))
    return REPORT_TEMPLATES[options.report_type]["sections"]


def _template_payload(report_type: ReportType, sections: List[ReportSection]) -> Dict[str, Any]:
    template = REPORT_TEMPLATES[report_type]
    return {
        "report_type": report_type.value,
        "name": template["name"],
        "description": template["description"],
        "sections": [s.value for s in sections],
        "estimated_generation_seconds": template["estimated_generation_seconds"],
    }


def _schedule_payload(schedule: ScheduledReport) -> Dict[str, Any]:
    return {
        "schedule_id": schedule.id,
        "provider_id": schedule.provider_id,
        "report_type": schedule.report_type,
        "format": schedule.format,
        "frequency": schedule.frequency,
        "next_run_date": as_utc(schedule.next_run_date).isoformat(),
        "last_run_date": as_utc(schedule.last_run_date).isoformat() if schedule.last_run_date else None,
        "email_recipients": schedule.email_recipients,
        "is_active": schedule.is_active,
    }


def report_templates() -> Dict[str, Any]:
    """Available templates plus the supported formats and frequencies."""
    return {
        "templates": [
            _template_payload(report_type, template["sections"])
            for report_type, template in REPORT_TEMPLATES.items()
        ],
        "formats": [f.value for f in ReportFormat],
        "frequencies": [f.value for f in ReportFrequency],
        "sections": [s.value for s in ReportSection],
    }


class ReportGenerator:
    """
    Builds report bundles from the calculators and manages artifacts and
    schedules in the database.
    """

    def __init__(self, records: RecordStore, db: AsyncSession):
        """
        Initialize ReportGenerator.

        Args:
            records: Collaborator record store for the calculators
            db: Session for report_artifacts and scheduled_reports
        """
        self.records = records
        self.db = db
        self.metrics = get_metrics_collector()
        logger.info("ReportGenerator initialized")

    async def _section_data(
        self,
        provider_id: int,
        section: ReportSection,
        period: str,
        now: datetime,
    ) -> Dict[str, Any]:
        if section == ReportSection.REVENUE:
            return await RevenueAnalytics(self.records).get_revenue_analytics(provider_id, period, now)
        if section == ReportSection.PERFORMANCE:
            return await PerformanceAnalytics(self.records).get_performance_analytics(provider_id, period, now)
        if section == ReportSection.CUSTOMER:
            return await CustomerAnalytics(self.records).get_customer_analytics(provider_id, period, now)
        return await BenchmarkingService(self.records).percentile_rankings(provider_id, now)

    async def _build(
        self,
        provider_id: int,
        options: ReportOptions,
        now: datetime,
    ) -> Dict[str, Any]:
        start = as_utc(options.date_range_start)
        end = as_utc(options.date_range_end)
        period = period_for_range(start, end)
        sections = report_sections(options)

        results = await asyncio.gather(
            *(self._section_data(provider_id, section, period, now) for section in sections)
        )

        analytics_data: Dict[str, Any] = {
            "report_type": options.report_type.value,
            "period": period,
            "date_range": {
                "start": start.isoformat() if start else None,
                "end": end.isoformat() if end else None,
            },
            "generated_at": now.isoformat(),
        }
        keys = {
            ReportSection.REVENUE: "revenue",
            ReportSection.PERFORMANCE: "performance",
            ReportSection.CUSTOMER: "customers",
            ReportSection.BENCHMARKS: "benchmarks",
        }
        for section, data in zip(sections, results):
            analytics_data[keys[section]] = data

        return {
            "analytics_data": jsonable_encoder(analytics_data),
            "template": _template_payload(options.report_type, sections),
        }

    async def _create_artifact(
        self,
        provider_id: int,
        options: ReportOptions,
        now: datetime,
    ):
        built = await self._build(provider_id, options, now)

        artifact = ReportArtifact(
            provider_id=provider_id,
            report_type=options.report_type.value,
            format=options.format.value,
            date_range_start=as_utc(options.date_range_start),
            date_range_end=as_utc(options.date_range_end),
            file_path=None,
            report_data=built["analytics_data"],
            generated_at=now,
            expires_at=now + timedelta(days=settings.report_retention_days),
        )
        self.db.add(artifact)
        await self.db.flush()
        await self.db.commit()

        self.metrics.increment_reports(options.report_type.value, options.format.value, "generated")
        log_with_context(
            logger,
            "info",
            "Report generated",
            provider_id=provider_id,
            report_id=artifact.id,
            report_type=options.report_type.value,
            period=built["analytics_data"]["period"],
        )
        return artifact, built

    async def generate(
        self,
        provider_id: int,
        options: Optional[ReportOptions] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Compose the analytics bundle and persist it as a report artifact.

        Returns:
            Dict with report_metadata, analytics_data and template
        """
        now = now or utc_now()
        options = options or ReportOptions()
        artifact, built = await self._create_artifact(provider_id, options, now)
        return {
            "report_metadata": {
                "report_id": artifact.id,
                "provider_id": provider_id,
                "report_type": artifact.report_type,
                "format": artifact.format,
                "generated_at": now.isoformat(),
                "expires_at": as_utc(artifact.expires_at).isoformat(),
            },
            "analytics_data": built["analytics_data"],
            "template": built["template"],
        }

    async def export(
        self,
        provider_id: int,
        format: Optional[ReportFormat] = None,
        options: Optional[ReportOptions] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Generate, render and write a report file.

        A render, write or back-fill failure is reported in the result (file_path None,
        status "generating") instead of raising; the artifact row stays.
        """
        now = now or utc_now()
        options = options or ReportOptions()
        if format is not None:
            options = options.model_copy(update={"format": ReportFormat(format)})
        fmt = options.format.value

        artifact, built = await self._create_artifact(provider_id, options, now)
        report_id = artifact.id
        row_expires_at = as_utc(artifact.expires_at)
        expires_at = now + timedelta(days=settings.report_retention_days)

        def unfinished(error: Exception) -> Dict[str, Any]:
            self.metrics.increment_reports(options.report_type.value, fmt, "failed")
            logger.error(f"Failed to export report {report_id}: {error}", exc_info=True)
            return {
                "report_id": report_id,
                "file_path": None,
                "filename": None,
                "format": fmt,
                "size": 0,
                "status": "generating",
                "error": str(error),
                "generated_at": now.isoformat(),
                "expires_at": row_expires_at.isoformat(),
            }

        try:
            content = render_report(fmt, built["analytics_data"], built["template"])
            written = await asyncio.to_thread(write_report_file, content, provider_id, fmt, now)
        except (OSError, KeyError, TypeError, ValueError) as e:
            return unfinished(e)

        try:
            artifact.file_path = written["file_path"]
            artifact.expires_at = expires_at
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            return unfinished(e)

        self.metrics.increment_reports(options.report_type.value, fmt, "exported")
        log_with_context(
            logger,
            "info",
            "Report exported",
            provider_id=provider_id,
            report_id=report_id,
            filename=written["filename"],
            size=written["size"],
        )
        return {
            "report_id": report_id,
            "file_path": written["file_path"],
            "filename": written["filename"],
            "format": fmt,
            "size": written["size"],
            "status": "available",
            "generated_at": now.isoformat(),
            "expires_at": expires_at.isoformat(),
        }

    async def schedule_report(
        self,
        provider_id: int,
        config: ReportScheduleConfig,
        options: Optional[ReportOptions] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Persist a recurring report; the first run is one unit after start_date (or now)."""
        now = now or utc_now()
        options = options or ReportOptions()
        start = as_utc(config.start_date) or now

        schedule = ScheduledReport(
            provider_id=provider_id,
            report_type=options.report_type.value,
            format=options.format.value,
            frequency=config.frequency.value,
            next_run_date=advance_schedule(start, config.frequency),
            last_run_date=None,
            email_recipients=list(config.email_recipients),
            report_options=options.model_dump(mode="json"),
            is_active=True,
            created_at=now,
        )
        self.db.add(schedule)
        await self.db.flush()
        await self.db.commit()

        log_with_context(
            logger,
            "info",
            "Report scheduled",
            provider_id=provider_id,
            schedule_id=schedule.id,
            frequency=schedule.frequency,
            next_run_date=schedule.next_run_date.isoformat(),
        )
        payload = _schedule_payload(schedule)
        payload["created_at"] = now.isoformat()
        return payload

    async def cancel_schedule(
        self,
        schedule_id: int,
        provider_id: int,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Deactivate a schedule owned by the provider.

        Raises:
            NotFoundException: No active schedule with this id for this provider
        """
        now = now or utc_now()
        stmt = (
            update(ScheduledReport)
            .where(
                ScheduledReport.id == schedule_id,
                ScheduledReport.provider_id == provider_id,
                ScheduledReport.is_active == True,  # noqa: E712
            )
            .values(is_active=False)
        )
        result = await self.db.execute(stmt)
        if not result.rowcount:
            raise NotFoundException("Scheduled report", str(schedule_id))
        await self.db.commit()

        logger.info(f"Cancelled scheduled report {schedule_id} for provider {provider_id}")
        return {"schedule_id": schedule_id, "cancelled": True, "cancelled_at": now.isoformat()}

    async def history(
        self,
        provider_id: int,
        filters: Optional[ReportHistoryFilters] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Paged report artifacts, newest first, plus active schedules."""
        now = now or utc_now()
        filters = filters or ReportHistoryFilters()

        conditions = [ReportArtifact.provider_id == provider_id]
        if filters.report_type:
            conditions.append(ReportArtifact.report_type == filters.report_type.value)
        if filters.format:
            conditions.append(ReportArtifact.format == filters.format.value)
        if filters.start_date:
            conditions.append(ReportArtifact.generated_at >= as_utc(filters.start_date))
        if filters.end_date:
            conditions.append(ReportArtifact.generated_at <= as_utc(filters.end_date))

        total_result = await self.db.execute(
            select(func.count()).select_from(ReportArtifact).where(*conditions)
        )
        total = total_result.scalar_one()

        rows_result = await self.db.execute(
            select(ReportArtifact)
            .where(*conditions)
            .order_by(ReportArtifact.generated_at.desc())
            .limit(filters.limit)
            .offset(filters.offset)
        )
        artifacts = rows_result.scalars().all()

        schedules_result = await self.db.execute(
            select(ScheduledReport)
            .where(
                ScheduledReport.provider_id == provider_id,
                ScheduledReport.is_active == True,  # noqa: E712
            )
            .order_by(ScheduledReport.next_run_date)
        )
        schedules = schedules_result.scalars().all()

        reports = []
        for artifact in artifacts:
            reports.append({
                "report_id": artifact.id,
                "report_type": artifact.report_type,
                "format": artifact.format,
                "date_range_start": as_utc(artifact.date_range_start).isoformat() if artifact.date_range_start else None,
                "date_range_end": as_utc(artifact.date_range_end).isoformat() if artifact.date_range_end else None,
                "file_path": artifact.file_path,
                "generated_at": as_utc(artifact.generated_at).isoformat(),
                "expires_at": as_utc(artifact.expires_at).isoformat(),
                "status": artifact_status(artifact, now),
            })

        by_status: Dict[str, int] = {"available": 0, "generating": 0, "expired": 0}
        for report in reports:
            by_status[report["status"]] += 1

        return {
            "reports": reports,
            "scheduled_reports": [_schedule_payload(s) for s in schedules],
            "pagination": {
                "total": total,
                "limit": filters.limit,
                "offset": filters.offset,
                "has_more": filters.offset + len(reports) < total,
                "current_page": filters.offset // filters.limit + 1,
                "total_pages": math.ceil(total / filters.limit) if total else 0,
            },
            "summary": {
                "total_reports": total,
                "by_status": by_status,
                "active_schedules": len(schedules),
            },
        }

    async def run_due_schedules(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Export every active schedule whose next_run_date has passed and move
        it forward by one frequency unit (repeatedly, if runs were missed).

        Returns:
            Dict with processed and failed counts and the exported report ids
        """
        now = now or utc_now()
        result = await self.db.execute(
            select(ScheduledReport).where(
                ScheduledReport.is_active == True,  # noqa: E712
                ScheduledReport.next_run_date <= now,
            )
        )
        due = result.scalars().all()

        processed = 0
        failed = 0
        report_ids = []
        for schedule in due:
            schedule_id = schedule.id
            schedule_provider = schedule.provider_id
            frequency = ReportFrequency(schedule.frequency)
            stored = dict(schedule.report_options or {})
            stored["date_range_start"] = as_utc(schedule.last_run_date) or _previous_run(now, frequency)
            stored["date_range_end"] = now
            try:
                options = ReportOptions(**stored)
                exported = await self.export(schedule_provider, ReportFormat(schedule.format), options, now)

                next_run = as_utc(schedule.next_run_date)
                while next_run <= now:
                    next_run = advance_schedule(next_run, frequency)
                schedule.last_run_date = now
                schedule.next_run_date = next_run
                await self.db.commit()
            except (AppException, SQLAlchemyError, ValueError) as e:
                # A failed flush leaves the session unusable until rolled back
                await self.db.rollback()
                failed += 1
                log_with_context(
                    logger,
                    "error",
                    "Scheduled report run failed",
                    schedule_id=schedule_id,
                    provider_id=schedule_provider,
                    error=str(e),
                )
                continue

            processed += 1
            report_ids.append(exported["report_id"])

        if due:
            logger.info(f"Scheduled reports run: {processed} processed, {failed} failed")
        return {"processed": processed, "failed": failed, "report_ids": report_ids}


def _previous_run(now: datetime, frequency: ReportFrequency) -> datetime:
    if frequency == ReportFrequency.DAILY:
        return now - timedelta(days=1)
    if frequency == ReportFrequency.WEEKLY:
        return now - timedelta(days=7)
    return add_months(now, -1)


def get_report_generator(records: RecordStore, db: AsyncSession) -> ReportGenerator:
    """Factory function to create ReportGenerator."""
    return ReportGenerator(records, db)
