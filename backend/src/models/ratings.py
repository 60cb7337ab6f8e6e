"""
Rating model - customer rating of a completed work order.
"""
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, Integer, String, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.lib.db import Base


class Rating(Base):
    """
    Rating entity - 1..5 stars (1:1 with a completed WorkOrder).
    """
    __tablename__ = "ratings"

    id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=True)

    work_order_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("work_orders.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    value: Mapped[int] = mapped_column(Integer, nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(String(1000), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        index=True,
    )

    __table_args__ = (
        CheckConstraint("value >= 1 AND value <= 5", name="rating_value_range"),
    )

    def __repr__(self) -> str:
        return f"<Rating(id={self.id}, work_order_id={self.work_order_id}, value={self.value})>"
