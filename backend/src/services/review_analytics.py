"""
ReviewAnalytics - rating metrics and the per-provider metrics cache.

The "basic" review bundle (average rating, rating distribution, review
counts) is read far more often than it changes, so it is kept in
metric_snapshots:

- Fresh: not flagged stale and computed less than `metrics_cache_ttl_seconds` ago
- Refresh: recompute from ratings and upsert in one INSERT ... ON CONFLICT
- Invalidate: flag the row stale, keeping it as last-known-good
- Refresh failure: serve the stale row when one exists, otherwise raise
"""
import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.middleware.error_handler import DataUnavailableException
from src.lib.logging import get_logger, log_with_context
from src.lib.metrics import get_metrics_collector
from src.lib.settings import settings
from src.models.metric_snapshots import MetricSnapshot
from src.services.period_resolver import (
    MONTHLY,
    add_months,
    bucket_key,
    mean,
    utc_now,
)
from src.services.performance_analytics import POSITIVE_RATING, rating_distribution
from src.services.record_store import RatingRecord, RecordStore, as_utc


logger = get_logger(__name__)

SATISFACTION_MESSAGE = "At least {minimum} reviews required for satisfaction metrics"


def validate_distribution(distribution: Dict[Any, int], total_reviews: int) -> bool:
    """True when the star counts add up to the review total."""
    return sum(distribution.values()) == total_reviews


def average_from_distribution(distribution: Dict[Any, int]) -> str:
    """Weighted average of a star distribution, one decimal, '0.0' when empty."""
    total = sum(distribution.values())
    if total == 0:
        return "0.0"
    weighted = sum(int(star) * count for star, count in distribution.items())
    return f"{weighted / total:.1f}"


def _format_rating(ratings: List[RatingRecord]) -> str:
    if not ratings:
        return "0.0"
    return f"{mean(r.value for r in ratings):.1f}"


def _review_counts(ratings: List[RatingRecord], now: datetime) -> Dict[str, int]:
    last_30 = now - timedelta(days=30)
    last_6_months = add_months(now, -6)
    return {
        "last_30_days": sum(1 for r in ratings if r.created_at >= last_30),
        "last_6_months": sum(1 for r in ratings if r.created_at >= last_6_months),
        "all_time": len(ratings),
    }


def _snapshot_payload(snapshot: MetricSnapshot, from_cache: bool, stale: bool = False) -> Dict[str, Any]:
    return {
        "provider_id": snapshot.provider_id,
        "average_rating": f"{float(snapshot.average_rating):.1f}",
        "total_reviews": snapshot.total_reviews,
        "rating_distribution": {int(k): v for k, v in snapshot.rating_distribution.items()},
        "review_counts": snapshot.review_counts,
        "computed_at": as_utc(snapshot.computed_at).isoformat(),
        "from_cache": from_cache,
        "stale": stale,
    }


class ReviewAnalytics:
    """
    Review metrics for one provider, with the snapshot cache in front of
    the basic bundle.
    """

    def __init__(self, records: RecordStore, db: AsyncSession):
        """
        Initialize ReviewAnalytics.

        Args:
            records: Collaborator record store
            db: Session used for the metric_snapshots table
        """
        self.records = records
        self.db = db
        self.metrics = get_metrics_collector()
        logger.info("ReviewAnalytics initialized")

    async def get_average_rating(self, provider_id: int) -> str:
        ratings = await self.records.query_ratings(provider_id)
        return _format_rating(ratings)

    async def get_rating_distribution(self, provider_id: int) -> Dict[int, int]:
        ratings = await self.records.query_ratings(provider_id)
        return rating_distribution(ratings)

    async def get_review_counts(self, provider_id: int, now: Optional[datetime] = None) -> Dict[str, int]:
        ratings = await self.records.query_ratings(provider_id)
        return _review_counts(ratings, now or utc_now())

    async def get_satisfaction_rate(self, provider_id: int) -> Dict[str, Any]:
        """
        Share of 4-5 star ratings, only reported once the provider has
        `satisfaction_min_reviews` reviews.
        """
        ratings = await self.records.query_ratings(provider_id)
        total = len(ratings)
        satisfied = sum(1 for r in ratings if r.value >= POSITIVE_RATING)
        minimum = settings.satisfaction_min_reviews

        if total >= minimum:
            return {
                "eligible": True,
                "total_reviews": total,
                "satisfied_reviews": satisfied,
                "satisfaction_percentage": round(satisfied / total * 100),
            }
        return {
            "eligible": False,
            "total_reviews": total,
            "satisfied_reviews": satisfied,
            "satisfaction_percentage": None,
            "message": SATISFACTION_MESSAGE.format(minimum=minimum),
        }

    async def get_rating_trends(
        self,
        provider_id: int,
        months: int = 12,
        now: Optional[datetime] = None,
    ) -> List[Dict[str, Any]]:
        """Monthly average rating and review count, oldest month first."""
        now = now or utc_now()
        ratings = await self.records.query_ratings(provider_id, date_from=add_months(now, -months))

        buckets: Dict[str, List[int]] = {}
        for rating in ratings:
            buckets.setdefault(bucket_key(rating.created_at, MONTHLY), []).append(rating.value)

        return [
            {
                "month": month,
                "average_rating": f"{mean(values):.1f}",
                "review_count": len(values),
            }
            for month, values in sorted(buckets.items())
        ]

    async def _load_snapshot(self, provider_id: int) -> Optional[MetricSnapshot]:
        stmt = (
            select(MetricSnapshot)
            .where(MetricSnapshot.provider_id == provider_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    def _is_fresh(self, snapshot: MetricSnapshot, now: datetime) -> bool:
        if snapshot.is_stale:
            return False
        age = now - as_utc(snapshot.computed_at)
        return age < timedelta(seconds=settings.metrics_cache_ttl_seconds)

    def _upsert_statement(self, values: Dict[str, Any]):
        stmt = pg_insert(MetricSnapshot).values(**values)
        return stmt.on_conflict_do_update(
            index_elements=[MetricSnapshot.provider_id],
            set_={key: stmt.excluded[key] for key in values if key != "provider_id"},
        )

    async def refresh_snapshot(self, provider_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Recompute the basic bundle and write it in a single keyed upsert."""
        now = now or utc_now()
        ratings = await self.records.query_ratings(provider_id)

        average = _format_rating(ratings)
        distribution = rating_distribution(ratings)
        counts = _review_counts(ratings, now)

        values = {
            "provider_id": provider_id,
            "average_rating": Decimal(average),
            "total_reviews": counts["all_time"],
            "rating_distribution": {str(k): v for k, v in distribution.items()},
            "review_counts": counts,
            "is_stale": False,
            "computed_at": now,
        }

        try:
            await self.db.execute(self._upsert_statement(values))
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            log_with_context(
                logger,
                "error",
                "Failed to write metric snapshot",
                provider_id=provider_id,
                error=str(e),
            )
            raise DataUnavailableException(
                "Failed to update metrics cache",
                details={"provider_id": provider_id},
            ) from e

        logger.info(f"Metric snapshot refreshed for provider {provider_id}")
        return {
            "provider_id": provider_id,
            "average_rating": average,
            "total_reviews": counts["all_time"],
            "rating_distribution": distribution,
            "review_counts": counts,
            "computed_at": now.isoformat(),
            "from_cache": False,
            "stale": False,
        }

    async def get_cached_metrics(
        self,
        provider_id: int,
        force_refresh: bool = False,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Read-through access to the basic review bundle.

        Returns:
            Snapshot dict tagged with from_cache; stale=True when a refresh
            failed and the last-known-good snapshot was served instead

        Raises:
            DataUnavailableException: refresh failed and no snapshot exists
        """
        now = now or utc_now()
        snapshot = await self._load_snapshot(provider_id)

        if not force_refresh and snapshot is not None and self._is_fresh(snapshot, now):
            self.metrics.increment_cache_lookup("hit")
            return _snapshot_payload(snapshot, from_cache=True)

        self.metrics.increment_cache_lookup("miss")
        try:
            return await self.refresh_snapshot(provider_id, now)
        except DataUnavailableException:
            if snapshot is None:
                raise
            self.metrics.increment_cache_lookup("stale_fallback")
            logger.warning(f"Serving last-known-good snapshot for provider {provider_id}")
            return _snapshot_payload(snapshot, from_cache=True, stale=True)

    async def invalidate(self, provider_id: int) -> bool:
        """Flag the provider's snapshot stale. False when there is none."""
        stmt = (
            update(MetricSnapshot)
            .where(MetricSnapshot.provider_id == provider_id)
            .values(is_stale=True)
        )
        result = await self.db.execute(stmt)
        await self.db.commit()
        invalidated = (result.rowcount or 0) > 0
        log_with_context(
            logger,
            "info",
            "Metric snapshot invalidated",
            provider_id=provider_id,
            invalidated=invalidated,
        )
        return invalidated

    async def generate_insights(self, provider_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Full uncached review bundle."""
        now = now or utc_now()
        average, distribution, trends, satisfaction, counts = await asyncio.gather(
            self.get_average_rating(provider_id),
            self.get_rating_distribution(provider_id),
            self.get_rating_trends(provider_id, 12, now),
            self.get_satisfaction_rate(provider_id),
            self.get_review_counts(provider_id, now),
        )
        return {
            "summary": {"average_rating": average, "total_reviews": counts["all_time"]},
            "rating_distribution": distribution,
            "trends": trends,
            "review_counts": counts,
            "satisfaction": satisfaction,
            "metadata": {
                "distribution_total": sum(distribution.values()),
                "generated_at": now.isoformat(),
            },
        }

    async def get_dashboard_analytics(
        self,
        provider_id: int,
        force_refresh: bool = False,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Cached basic bundle plus the uncached satisfaction and 6-month trend."""
        now = now or utc_now()
        basic = await self.get_cached_metrics(provider_id, force_refresh, now)
        satisfaction, trends = await asyncio.gather(
            self.get_satisfaction_rate(provider_id),
            self.get_rating_trends(provider_id, 6, now),
        )
        return {
            "average_rating": basic["average_rating"],
            "total_reviews": basic["total_reviews"],
            "rating_distribution": basic["rating_distribution"],
            "review_counts": basic["review_counts"],
            "trends": trends,
            "satisfaction": satisfaction,
            "from_cache": basic["from_cache"],
            "stale": basic["stale"],
            "generated_at": now.isoformat(),
        }


def get_review_analytics(records: RecordStore, db: AsyncSession) -> ReviewAnalytics:
    """Factory function to create ReviewAnalytics."""
    return ReviewAnalytics(records, db)
