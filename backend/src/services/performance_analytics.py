"""
PerformanceAnalytics - how well a provider handles the work it receives.

Computes:
- Completion rate (completed / accepted-superset)
- Average response time (creation to first provider reaction)
- Request volume trends
- Cancellation rate and reason histogram
- Per-category breakdown
- Performance summary with a weighted performance score

Used by: provider dashboards, alert evaluation and report generation
"""
import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from src.lib.logging import get_logger, log_with_context
from src.models.work_orders import ACCEPTED_SUPERSET, WorkOrderStatus
from src.services.period_resolver import (
    bucket_key,
    directional_trend,
    display_round,
    format_duration,
    mean,
    percentage_change,
    resolve_period,
    safe_rate,
    trend_for,
    utc_now,
)
from src.services.record_store import (
    RatingRecord,
    RecordStore,
    WorkOrderRecord,
    response_minutes,
)


logger = get_logger(__name__)

UNSPECIFIED_REASON = "Unspecified"

# Performance score weights
COMPLETION_WEIGHT = 0.4
SATISFACTION_WEIGHT = 0.4
RELIABILITY_WEIGHT = 0.2

POSITIVE_RATING = 4
NEGATIVE_RATING = 2

ACTIVE_STATUSES = (WorkOrderStatus.ACCEPTED.value, WorkOrderStatus.IN_PROGRESS.value)


def completion_rate(work_orders: List[WorkOrderRecord]) -> float:
    """Completed over accepted-superset, 0 when nothing was accepted."""
    accepted = sum(1 for wo in work_orders if wo.status in ACCEPTED_SUPERSET)
    completed = sum(1 for wo in work_orders if wo.status == WorkOrderStatus.COMPLETED)
    return safe_rate(completed, accepted)


def cancellation_rate(work_orders: List[WorkOrderRecord]) -> float:
    cancelled = sum(1 for wo in work_orders if wo.status == WorkOrderStatus.CANCELLED)
    return safe_rate(cancelled, len(work_orders))


def response_times(work_orders: List[WorkOrderRecord], statuses=ACCEPTED_SUPERSET) -> List[float]:
    """Response minutes for work orders in the given statuses."""
    values = []
    for wo in work_orders:
        if wo.status not in statuses:
            continue
        minutes = response_minutes(wo)
        if minutes is not None:
            values.append(minutes)
    return values


def cancellation_reasons(work_orders: List[WorkOrderRecord]) -> List[Dict[str, Any]]:
    """
    Histogram of cancellation reasons. Cancellations without a reason fall in
    an 'Unspecified' bucket placed last, so percentages cover every cancellation.
    """
    cancelled = [wo for wo in work_orders if wo.status == WorkOrderStatus.CANCELLED]
    if not cancelled:
        return []

    counts: Dict[str, int] = defaultdict(int)
    unspecified = 0
    for wo in cancelled:
        reason = (wo.cancellation_reason or "").strip()
        if reason:
            counts[reason] += 1
        else:
            unspecified += 1

    reasons = [
        {
            "reason": reason,
            "count": count,
            "percentage": display_round(count / len(cancelled) * 100),
        }
        for reason, count in sorted(counts.items(), key=lambda item: item[1], reverse=True)
    ]
    if unspecified:
        reasons.append({
            "reason": UNSPECIFIED_REASON,
            "count": unspecified,
            "percentage": display_round(unspecified / len(cancelled) * 100),
        })
    return reasons


def rating_distribution(ratings: List[RatingRecord]) -> Dict[int, int]:
    """Counts per star value; all five keys are always present."""
    distribution = {value: 0 for value in range(1, 6)}
    for rating in ratings:
        if rating.value in distribution:
            distribution[rating.value] += 1
    return distribution


def satisfaction_rate(ratings: List[RatingRecord]) -> float:
    """Share of ratings that are 4 or 5 stars."""
    positive = sum(1 for r in ratings if r.value >= POSITIVE_RATING)
    return safe_rate(positive, len(ratings))


def performance_score(completion: float, satisfaction: float, cancellation: float) -> float:
    return (
        completion * COMPLETION_WEIGHT
        + satisfaction * SATISFACTION_WEIGHT
        + (100 - cancellation) * RELIABILITY_WEIGHT
    )


def _duration(minutes: float) -> Dict[str, Any]:
    return {"minutes": display_round(minutes), "formatted": format_duration(minutes)}


class PerformanceAnalytics:
    """
    Service computing operational performance metrics for one provider.
    """

    def __init__(self, records: RecordStore):
        """
        Initialize PerformanceAnalytics.

        Args:
            records: Collaborator store for provider records
        """
        self.records = records
        logger.info("PerformanceAnalytics initialized")

    async def _windows(self, provider_id: int, period: str, now: Optional[datetime]):
        """Work orders for the current window and (when it exists) the previous one."""
        window = resolve_period(period, now)
        current = await self.records.query_work_orders(provider_id, date_from=window.start)
        previous = None
        if window.has_comparison:
            previous = await self.records.query_work_orders(
                provider_id,
                date_from=window.previous_start,
                date_to=window.previous_end,
            )
        return window, current, previous

    async def get_completion_rate(
        self,
        provider_id: int,
        period: str = "30days",
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Completion rate for the period.

        Returns:
            Dict with completion_rate (0..100), request counts, previous_period,
            percentage_change, point_change and trend
        """
        window, current, previous = await self._windows(provider_id, period, now)

        rate = completion_rate(current)
        result = {
            "period": period,
            "completion_rate": display_round(rate),
            "accepted_requests": sum(1 for wo in current if wo.status in ACCEPTED_SUPERSET),
            "completed_requests": sum(1 for wo in current if wo.status == WorkOrderStatus.COMPLETED),
            "total_requests": len(current),
            "previous_period": None,
            "percentage_change": None,
            "point_change": None,
            "trend": "stable",
        }

        if previous is not None:
            previous_rate = completion_rate(previous)
            change = percentage_change(rate, previous_rate)
            result.update({
                "previous_period": {"completion_rate": display_round(previous_rate)},
                "percentage_change": display_round(change),
                "point_change": display_round(rate - previous_rate),
                "trend": trend_for(change),
            })
        return result

    async def get_average_response_time(
        self,
        provider_id: int,
        period: str = "30days",
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Average minutes until the provider first reacted to a work order."""
        window, current, previous = await self._windows(provider_id, period, now)

        values = response_times(current)
        average = mean(values)
        result = {
            "period": period,
            "average_response_time": _duration(average),
            "min_response_minutes": display_round(min(values)) if values else 0,
            "max_response_minutes": display_round(max(values)) if values else 0,
            "response_count": len(values),
            "previous_period": None,
            "percentage_change": None,
            "trend": "stable",
        }

        if previous is not None:
            previous_average = mean(response_times(previous))
            result.update({
                "previous_period": _duration(previous_average),
                "percentage_change": display_round(percentage_change(average, previous_average)),
                "trend": directional_trend(average, previous_average, "improved", "slower"),
            })
        return result

    async def get_request_volume_trends(
        self,
        provider_id: int,
        period: str = "30days",
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Work order counts per bucket, split by lifecycle state."""
        window = resolve_period(period, now)
        work_orders = await self.records.query_work_orders(provider_id, date_from=window.start)

        buckets: Dict[str, Dict[str, int]] = {}
        for wo in work_orders:
            bucket = buckets.setdefault(
                bucket_key(wo.created_at, window.granularity),
                {"total": 0, "completed": 0, "cancelled": 0, "pending": 0, "active": 0},
            )
            bucket["total"] += 1
            if wo.status == WorkOrderStatus.COMPLETED:
                bucket["completed"] += 1
            elif wo.status == WorkOrderStatus.CANCELLED:
                bucket["cancelled"] += 1
            elif wo.status == WorkOrderStatus.PENDING:
                bucket["pending"] += 1
            elif wo.status in ACTIVE_STATUSES:
                bucket["active"] += 1

        data_points = []
        previous_total = 0
        for index, label in enumerate(sorted(buckets)):
            counts = buckets[label]
            change = None
            if index > 0 and previous_total > 0:
                change = display_round(percentage_change(counts["total"], previous_total))
            data_points.append({"period_label": label, **counts, "percentage_change": change})
            previous_total = counts["total"]

        peak = max(data_points, key=lambda p: p["total"]) if data_points else None
        lowest = min(data_points, key=lambda p: p["total"]) if data_points else None

        return {
            "period": period,
            "granularity": window.granularity,
            "data_points": data_points,
            "summary": {
                "total_requests": len(work_orders),
                "total_completed": sum(p["completed"] for p in data_points),
                "total_cancelled": sum(p["cancelled"] for p in data_points),
                "average_per_period": display_round(len(work_orders) / len(data_points)) if data_points else 0,
                "data_points": len(data_points),
                "peak_period": {"period_label": peak["period_label"], "requests": peak["total"]} if peak else None,
                "lowest_period": {"period_label": lowest["period_label"], "requests": lowest["total"]} if lowest else None,
            },
        }

    async def get_cancellation_metrics(
        self,
        provider_id: int,
        period: str = "30days",
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Cancellation rate, reason histogram and change against the previous period."""
        window, current, previous = await self._windows(provider_id, period, now)

        rate = cancellation_rate(current)
        result = {
            "period": period,
            "cancellation_rate": display_round(rate),
            "cancelled_requests": sum(1 for wo in current if wo.status == WorkOrderStatus.CANCELLED),
            "total_requests": len(current),
            "reasons": cancellation_reasons(current),
            "previous_period": None,
            "percentage_change": None,
            "point_change": None,
            "trend": "stable",
        }

        if previous is not None:
            previous_rate = cancellation_rate(previous)
            result.update({
                "previous_period": {"cancellation_rate": display_round(previous_rate)},
                "percentage_change": display_round(percentage_change(rate, previous_rate)),
                "point_change": display_round(rate - previous_rate),
                "trend": directional_trend(rate, previous_rate, "improved", "worsened"),
            })
        return result

    async def get_metrics_by_category(self, provider_id: int) -> Dict[str, Any]:
        """All-time completion, cancellation, rating and response time per category."""
        work_orders, ratings = await asyncio.gather(
            self.records.query_work_orders(provider_id),
            self.records.query_ratings(provider_id),
        )

        by_category: Dict[str, List[WorkOrderRecord]] = defaultdict(list)
        for wo in work_orders:
            by_category[wo.category].append(wo)
        ratings_by_category: Dict[str, List[int]] = defaultdict(list)
        for rating in ratings:
            ratings_by_category[rating.category].append(rating.value)

        categories = []
        for category, orders in by_category.items():
            values = ratings_by_category.get(category, [])
            responses = response_times(orders)
            categories.append({
                "category": category,
                "total_requests": len(orders),
                "accepted_requests": sum(1 for wo in orders if wo.status in ACCEPTED_SUPERSET),
                "completed_requests": sum(1 for wo in orders if wo.status == WorkOrderStatus.COMPLETED),
                "cancelled_requests": sum(1 for wo in orders if wo.status == WorkOrderStatus.CANCELLED),
                "completion_rate": display_round(completion_rate(orders)),
                "cancellation_rate": display_round(cancellation_rate(orders)),
                "average_rating": display_round(mean(values)) if values else None,
                "review_count": len(values),
                "average_response_time": _duration(mean(responses)),
            })
        categories.sort(key=lambda c: c["total_requests"], reverse=True)

        best = max(categories, key=lambda c: c["completion_rate"]) if categories else None
        worst = min(categories, key=lambda c: c["completion_rate"]) if categories else None

        return {
            "categories": categories,
            "summary": {
                "category_count": len(categories),
                "total_requests": len(work_orders),
                "best_category": {"category": best["category"], "completion_rate": best["completion_rate"]} if best else None,
                "worst_category": {"category": worst["category"], "completion_rate": worst["completion_rate"]} if worst else None,
            },
        }

    async def get_performance_summary(
        self,
        provider_id: int,
        period: str = "30days",
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Request counts, satisfaction and the weighted performance score."""
        window = resolve_period(period, now)
        work_orders, ratings = await asyncio.gather(
            self.records.query_work_orders(provider_id, date_from=window.start),
            self.records.query_ratings(provider_id, date_from=window.start),
        )

        completion = completion_rate(work_orders)
        cancellation = cancellation_rate(work_orders)
        satisfaction = satisfaction_rate(ratings)

        def count(*statuses):
            return sum(1 for wo in work_orders if wo.status in statuses)

        return {
            "period": period,
            "request_metrics": {
                "total_requests": len(work_orders),
                "accepted_requests": count(*ACCEPTED_SUPERSET),
                "completed_requests": count(WorkOrderStatus.COMPLETED.value),
                "cancelled_requests": count(WorkOrderStatus.CANCELLED.value),
                "pending_requests": count(WorkOrderStatus.PENDING.value),
                "active_requests": count(*ACTIVE_STATUSES),
                "unique_customers": len({wo.customer_id for wo in work_orders}),
            },
            "rates": {
                "completion_rate": display_round(completion),
                "cancellation_rate": display_round(cancellation),
                "satisfaction_rate": display_round(satisfaction),
            },
            "satisfaction": {
                "average_rating": display_round(mean(r.value for r in ratings)),
                "total_ratings": len(ratings),
                "positive_ratings": sum(1 for r in ratings if r.value >= POSITIVE_RATING),
                "negative_ratings": sum(1 for r in ratings if r.value <= NEGATIVE_RATING),
                "rating_distribution": rating_distribution(ratings),
            },
            "performance_score": display_round(performance_score(completion, satisfaction, cancellation)),
        }

    async def get_performance_analytics(
        self,
        provider_id: int,
        period: str = "30days",
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """All performance sections for one period, computed concurrently."""
        resolve_period(period, now)

        (
            completion,
            response_time,
            volume_trends,
            cancellations,
            by_category,
            summary,
        ) = await asyncio.gather(
            self.get_completion_rate(provider_id, period, now),
            self.get_average_response_time(provider_id, period, now),
            self.get_request_volume_trends(provider_id, period, now),
            self.get_cancellation_metrics(provider_id, period, now),
            self.get_metrics_by_category(provider_id),
            self.get_performance_summary(provider_id, period, now),
        )

        log_with_context(
            logger,
            "info",
            "Performance analytics computed",
            provider_id=provider_id,
            period=period,
            completion_rate=completion["completion_rate"],
            performance_score=summary["performance_score"],
        )

        return {
            "period": period,
            "completion_rate": completion,
            "average_response_time": response_time,
            "request_volume_trends": volume_trends,
            "cancellation_metrics": cancellations,
            "metrics_by_category": by_category,
            "performance_summary": summary,
            "generated_at": (now or utc_now()).isoformat(),
        }


def get_performance_analytics(records: RecordStore) -> PerformanceAnalytics:
    """
    Factory function to create PerformanceAnalytics.

    Args:
        records: Collaborator record store

    Returns:
        PerformanceAnalytics instance
    """
    return PerformanceAnalytics(records)
