"""
WorkOrder model - one unit of service demand received by a provider.

Rows are written by the booking workflow; the analytics engine only reads them.
"""
from datetime import datetime, timezone
from typing import Optional
import enum

from sqlalchemy import BigInteger, String, Text, DateTime, Enum as SQLEnum, Index
from sqlalchemy.orm import Mapped, mapped_column

from src.lib.db import Base


class WorkOrderStatus(str, enum.Enum):
    """Work order lifecycle status."""
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    REJECTED = "Rejected"


class PriorityLevel(str, enum.Enum):
    """Queue priority, highest first."""
    URGENT = "Urgent"
    HIGH = "High"
    NORMAL = "Normal"
    LOW = "Low"


# Work the provider actually took on; denominator of the completion rate
ACCEPTED_SUPERSET = (
    WorkOrderStatus.ACCEPTED.value,
    WorkOrderStatus.IN_PROGRESS.value,
    WorkOrderStatus.COMPLETED.value,
    WorkOrderStatus.CANCELLED.value,
)

# Still waiting on the provider
QUEUE_STATUSES = (
    WorkOrderStatus.PENDING.value,
    WorkOrderStatus.ACCEPTED.value,
    WorkOrderStatus.IN_PROGRESS.value,
)


class WorkOrder(Base):
    """
    Service request from a customer to a provider.
    """
    __tablename__ = "work_orders"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)

    provider_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    customer_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    status: Mapped[WorkOrderStatus] = mapped_column(
        SQLEnum(WorkOrderStatus, name="work_order_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=WorkOrderStatus.PENDING,
        index=True,
    )
    category: Mapped[str] = mapped_column(String(100), nullable=False, default="General")
    priority: Mapped[Optional[str]] = mapped_column(
        String(20),
        nullable=True,
        default=PriorityLevel.NORMAL.value,
        comment="Urgent, High, Normal, Low (free text tolerated)",
    )
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location_key: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
        comment="Opaque region key used for geographic grouping",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("ix_work_orders_provider_created", "provider_id", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<WorkOrder(id={self.id}, provider_id={self.provider_id}, status={self.status})>"
