"""
Report models - generated report artifacts and recurring report schedules.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import enum

from sqlalchemy import BigInteger, Boolean, String, DateTime, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from src.lib.db import Base


class ReportType(str, enum.Enum):
    REVENUE = "revenue"
    PERFORMANCE = "performance"
    CUSTOMER = "customer"
    COMPREHENSIVE = "comprehensive"
    CUSTOM = "custom"


class ReportFormat(str, enum.Enum):
    CSV = "csv"
    XLSX = "xlsx"
    PDF = "pdf"


class ReportFrequency(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ReportArtifact(Base):
    """
    One generated report. Immutable after creation except file_path,
    which stays NULL until the export has been written.
    """
    __tablename__ = "report_artifacts"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    provider_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    report_type: Mapped[str] = mapped_column(String(20), nullable=False)
    format: Mapped[str] = mapped_column(String(10), nullable=False)
    date_range_start: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    date_range_end: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    file_path: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    report_data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    generated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_report_artifacts_provider_generated", "provider_id", "generated_at"),
    )

    def __repr__(self) -> str:
        return f"<ReportArtifact(id={self.id}, provider_id={self.provider_id}, type={self.report_type})>"


class ScheduledReport(Base):
    """
    Recurring report definition. Cancelled schedules are deactivated,
    never deleted.
    """
    __tablename__ = "scheduled_reports"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    provider_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    report_type: Mapped[str] = mapped_column(String(20), nullable=False)
    format: Mapped[str] = mapped_column(String(10), nullable=False, default=ReportFormat.PDF.value)
    frequency: Mapped[str] = mapped_column(String(10), nullable=False)
    next_run_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    last_run_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    email_recipients: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    report_options: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<ScheduledReport(id={self.id}, provider_id={self.provider_id}, frequency={self.frequency})>"
