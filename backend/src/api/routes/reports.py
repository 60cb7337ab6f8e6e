"""
Provider Reports API - report generation, export, scheduling and history.

Routes (all under /providers/{provider_id}/reports):
- GET    /templates                  - available templates and formats
- POST   ""                          - generate a report bundle
- POST   /export                     - generate and write a report file
- POST   /schedules                  - schedule a recurring report
- DELETE /schedules/{schedule_id}    - cancel a schedule
- GET    /history                    - paged report history
"""
from datetime import datetime
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db, get_record_store, require_provider_access
from src.lib.logging import get_logger
from src.models.reports import ReportFormat, ReportType
from src.services.record_store import RecordStore
from src.services.report_generator import (
    ReportGenerator,
    ReportHistoryFilters,
    ReportOptions,
    ReportScheduleConfig,
    get_report_generator,
    report_templates,
)


logger = get_logger(__name__)
router = APIRouter(prefix="/providers/{provider_id}/reports", tags=["reports"])


# Request Models
class ExportRequest(BaseModel):
    format: ReportFormat = Field(ReportFormat.PDF, description="csv, xlsx or pdf")
    options: ReportOptions = Field(default_factory=ReportOptions)


class ScheduleRequest(BaseModel):
    schedule: ReportScheduleConfig = Field(..., description="Recurrence and recipients")
    options: ReportOptions = Field(default_factory=ReportOptions)


def report_generator(
    records: RecordStore = Depends(get_record_store),
    db: AsyncSession = Depends(get_db),
) -> ReportGenerator:
    return get_report_generator(records, db)


# Routes
@router.get("/templates")
async def list_templates(
    provider_id: int = Depends(require_provider_access),
) -> Dict[str, Any]:
    return report_templates()


@router.post("", status_code=status.HTTP_201_CREATED)
async def generate_report(
    options: ReportOptions,
    provider_id: int = Depends(require_provider_access),
    generator: ReportGenerator = Depends(report_generator),
) -> Dict[str, Any]:
    """Generate and persist a report bundle."""
    logger.info(f"POST reports (provider={provider_id}, type={options.report_type.value})")
    return await generator.generate(provider_id, options)


@router.post("/export", status_code=status.HTTP_201_CREATED)
async def export_report(
    request: ExportRequest,
    provider_id: int = Depends(require_provider_access),
    generator: ReportGenerator = Depends(report_generator),
) -> Dict[str, Any]:
    """
    Generate a report and write it to a file.

    When rendering fails the artifact is kept and the result has
    `file_path: null` with `status: generating`.
    """
    return await generator.export(provider_id, request.format, request.options)


@router.post("/schedules", status_code=status.HTTP_201_CREATED)
async def schedule_report(
    request: ScheduleRequest,
    provider_id: int = Depends(require_provider_access),
    generator: ReportGenerator = Depends(report_generator),
) -> Dict[str, Any]:
    return await generator.schedule_report(provider_id, request.schedule, request.options)


@router.delete("/schedules/{schedule_id}")
async def cancel_schedule(
    schedule_id: int = Path(..., ge=1),
    provider_id: int = Depends(require_provider_access),
    generator: ReportGenerator = Depends(report_generator),
) -> Dict[str, Any]:
    return await generator.cancel_schedule(schedule_id, provider_id)


@router.get("/history")
async def report_history(
    report_type: Optional[ReportType] = Query(None),
    format: Optional[ReportFormat] = Query(None),
    start_date: Optional[datetime] = Query(None),
    end_date: Optional[datetime] = Query(None),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    provider_id: int = Depends(require_provider_access),
    generator: ReportGenerator = Depends(report_generator),
) -> Dict[str, Any]:
    filters = ReportHistoryFilters(
        report_type=report_type,
        format=format,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )
    return await generator.history(provider_id, filters)
