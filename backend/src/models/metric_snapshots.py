"""
MetricSnapshot model - cached review metrics per provider.

One row per provider, overwritten by an upsert keyed on provider_id.
"""
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict

from sqlalchemy import BigInteger, Integer, Boolean, Numeric, DateTime, JSON
from sqlalchemy.orm import Mapped, mapped_column

from src.lib.db import Base


class MetricSnapshot(Base):
    """
    Last computed review metrics for a provider.

    Fresh while not stale and younger than the cache TTL. A stale row is kept
    as the last-known-good value until a recompute succeeds.
    """
    __tablename__ = "metric_snapshots"

    provider_id: Mapped[int] = mapped_column(BigInteger, primary_key=True)

    average_rating: Mapped[Decimal] = mapped_column(Numeric(2, 1), nullable=False, default=Decimal("0.0"))
    total_reviews: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    rating_distribution: Mapped[Dict[str, int]] = mapped_column(
        JSON,
        nullable=False,
        comment="Keys '1'..'5', always present",
    )
    review_counts: Mapped[Dict[str, Any]] = mapped_column(
        JSON,
        nullable=False,
        comment="last_30_days, last_6_months, all_time",
    )

    is_stale: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    computed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    def __repr__(self) -> str:
        return f"<MetricSnapshot(provider_id={self.provider_id}, total_reviews={self.total_reviews})>"
