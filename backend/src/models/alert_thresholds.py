"""
AlertThreshold model - provider-configured performance alert rules.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
import enum

from sqlalchemy import BigInteger, Boolean, Numeric, DateTime, Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column

from src.lib.db import Base


class AlertMetricType(str, enum.Enum):
    """Metrics a threshold can watch."""
    COMPLETION_RATE = "completion_rate"
    RESPONSE_TIME = "response_time"
    CANCELLATION_RATE = "cancellation_rate"
    RATING = "rating"
    EARNINGS = "earnings"
    REQUEST_COUNT = "request_count"


class ComparisonOperator(str, enum.Enum):
    ABOVE = "above"
    BELOW = "below"
    EQUALS = "equals"


class AlertThreshold(Base):
    """
    One alert rule. The analytics engine reads rules and stamps
    last_triggered_at; creating and editing rules is owned elsewhere.
    """
    __tablename__ = "alert_thresholds"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)
    provider_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    metric_type: Mapped[AlertMetricType] = mapped_column(
        SQLEnum(AlertMetricType, name="alert_metric_type", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    comparison_operator: Mapped[ComparisonOperator] = mapped_column(
        SQLEnum(ComparisonOperator, name="comparison_operator", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    threshold_value: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_triggered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return (
            f"<AlertThreshold(id={self.id}, provider_id={self.provider_id}, "
            f"metric={self.metric_type}, op={self.comparison_operator})>"
        )
