"""
RealTimeAnalytics - what is happening for a provider today.

Today means the current UTC calendar day up to now; yesterday is the
full previous UTC day.
"""
import asyncio
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from src.api.middleware.error_handler import ValidationException
from src.lib.logging import get_logger, log_with_context
from src.models.payments import PaymentStatus
from src.models.work_orders import PriorityLevel, QUEUE_STATUSES, WorkOrderStatus
from src.services.period_resolver import (
    display_round,
    format_duration,
    mean,
    percentage_change,
    start_of_day,
    trend_for,
    utc_now,
)
from src.services.performance_analytics import NEGATIVE_RATING, POSITIVE_RATING, response_times
from src.services.record_store import RecordStore


logger = get_logger(__name__)

PRIORITY_ORDER = {
    PriorityLevel.URGENT.value: 0,
    PriorityLevel.HIGH.value: 1,
    PriorityLevel.NORMAL.value: 2,
    PriorityLevel.LOW.value: 3,
}
UNRANKED_PRIORITY = len(PRIORITY_ORDER)

QUEUE_CRITICAL_MINUTES = 1440
QUEUE_WARNING_MINUTES = 480

ACTIVITY_WINDOW_DAYS = 7
ACTIVITY_LIMIT_MIN = 1
ACTIVITY_LIMIT_MAX = 100

# Status changes worth surfacing in the activity feed
ACTIVITY_STATUSES = (
    WorkOrderStatus.ACCEPTED.value,
    WorkOrderStatus.COMPLETED.value,
    WorkOrderStatus.CANCELLED.value,
)

RESPONDED_STATUSES = (
    WorkOrderStatus.ACCEPTED.value,
    WorkOrderStatus.IN_PROGRESS.value,
    WorkOrderStatus.COMPLETED.value,
)


def queue_health(oldest_waiting_minutes: float) -> str:
    if oldest_waiting_minutes > QUEUE_CRITICAL_MINUTES:
        return "critical"
    if oldest_waiting_minutes > QUEUE_WARNING_MINUTES:
        return "warning"
    return "good"


def validate_activity_limit(limit: int) -> int:
    if not isinstance(limit, int) or limit < ACTIVITY_LIMIT_MIN or limit > ACTIVITY_LIMIT_MAX:
        raise ValidationException(
            f"Limit must be between {ACTIVITY_LIMIT_MIN} and {ACTIVITY_LIMIT_MAX}",
            errors={"limit": limit},
        )
    return limit


def _change(today: float, yesterday: float) -> Dict[str, Any]:
    change = percentage_change(today, yesterday)
    return {"change_from_yesterday": display_round(change), "trend": trend_for(change)}


class RealTimeAnalytics:
    """
    Service computing same-day activity, the open work queue and the
    recent activity feed for one provider.
    """

    def __init__(self, records: RecordStore):
        self.records = records
        logger.info("RealTimeAnalytics initialized")

    async def get_today_metrics(self, provider_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Today's counts with a comparison against yesterday.

        A customer is "new" today when they had no work order with this
        provider before today.
        """
        now = now or utc_now()
        today = start_of_day(now)
        yesterday = today - timedelta(days=1)

        (
            today_orders,
            yesterday_orders,
            earlier_orders,
            today_payments,
            yesterday_payments,
            today_ratings,
            yesterday_ratings,
        ) = await asyncio.gather(
            self.records.query_work_orders(provider_id, date_from=today),
            self.records.query_work_orders(provider_id, date_from=yesterday, date_to=today),
            self.records.query_work_orders(provider_id, date_to=today),
            self.records.query_payments(provider_id, date_from=today),
            self.records.query_payments(
                provider_id,
                status_in=[PaymentStatus.COMPLETED.value],
                date_from=yesterday,
                date_to=today,
            ),
            self.records.query_ratings(provider_id, date_from=today),
            self.records.query_ratings(provider_id, date_from=yesterday, date_to=today),
        )

        def count_status(orders, status: WorkOrderStatus) -> int:
            return sum(1 for wo in orders if wo.status == status)

        completed_today = count_status(today_orders, WorkOrderStatus.COMPLETED)
        completed_yesterday = count_status(yesterday_orders, WorkOrderStatus.COMPLETED)

        completed_payments = [p for p in today_payments if p.status == PaymentStatus.COMPLETED]
        pending_payments = [p for p in today_payments if p.status == PaymentStatus.PENDING]
        completed_earnings = sum(p.amount for p in completed_payments)
        pending_earnings = sum(p.amount for p in pending_payments)
        yesterday_earnings = sum(p.amount for p in yesterday_payments)

        known_customers = {wo.customer_id for wo in earlier_orders}
        today_customers = {wo.customer_id for wo in today_orders}
        new_customers = today_customers - known_customers
        returning = len(today_customers) - len(new_customers)

        known_before_yesterday = {wo.customer_id for wo in earlier_orders if wo.created_at < yesterday}
        yesterday_customers = {wo.customer_id for wo in yesterday_orders}
        yesterday_new = yesterday_customers - known_before_yesterday
        yesterday_returning = len(yesterday_customers) - len(yesterday_new)

        rating_values = [r.value for r in today_ratings]
        yesterday_rating_values = [r.value for r in yesterday_ratings]
        average_rating = mean(rating_values)
        yesterday_average_rating = mean(yesterday_rating_values)

        result = {
            "date": today.date().isoformat(),
            "requests": {
                "total": len(today_orders),
                "pending": count_status(today_orders, WorkOrderStatus.PENDING),
                "accepted": count_status(today_orders, WorkOrderStatus.ACCEPTED),
                "in_progress": count_status(today_orders, WorkOrderStatus.IN_PROGRESS),
                "completed": completed_today,
                "cancelled": count_status(today_orders, WorkOrderStatus.CANCELLED),
                "rejected": count_status(today_orders, WorkOrderStatus.REJECTED),
                **_change(len(today_orders), len(yesterday_orders)),
            },
            "earnings": {
                "completed_earnings": display_round(completed_earnings),
                "formatted_completed": f"{completed_earnings:.2f}",
                "pending_earnings": display_round(pending_earnings),
                "formatted_pending": f"{pending_earnings:.2f}",
                "completed_payments": len(completed_payments),
                "pending_payments": len(pending_payments),
                **_change(completed_earnings, yesterday_earnings),
            },
            "customers": {
                "unique": len(today_customers),
                "new": len(new_customers),
                "returning": returning,
                **_change(len(today_customers), len(yesterday_customers)),
                "new_change_from_yesterday": display_round(percentage_change(len(new_customers), len(yesterday_new))),
                "returning_change_from_yesterday": display_round(percentage_change(returning, yesterday_returning)),
            },
            "reviews": {
                "count": len(rating_values),
                "average_rating": display_round(average_rating),
                "positive": sum(1 for v in rating_values if v >= POSITIVE_RATING),
                "negative": sum(1 for v in rating_values if v <= NEGATIVE_RATING),
                **_change(len(rating_values), len(yesterday_rating_values)),
                "rating_change_from_yesterday": display_round(percentage_change(average_rating, yesterday_average_rating)),
            },
            "comparison": {
                "yesterday": {
                    "total_requests": len(yesterday_orders),
                    "completed_requests": completed_yesterday,
                    "earnings": display_round(yesterday_earnings),
                    "formatted_earnings": f"{yesterday_earnings:.2f}",
                    "unique_customers": len(yesterday_customers),
                    "new_customers": len(yesterday_new),
                    "returning_customers": yesterday_returning,
                    "review_count": len(yesterday_rating_values),
                    "average_rating": display_round(yesterday_average_rating),
                },
                "requests_change": display_round(percentage_change(len(today_orders), len(yesterday_orders))),
                "completed_requests_change": display_round(percentage_change(completed_today, completed_yesterday)),
                "earnings_change": display_round(percentage_change(completed_earnings, yesterday_earnings)),
                "customers_change": display_round(percentage_change(len(today_customers), len(yesterday_customers))),
                "reviews_change": display_round(percentage_change(len(rating_values), len(yesterday_rating_values))),
                "rating_change": display_round(percentage_change(average_rating, yesterday_average_rating)),
            },
            "generated_at": now.isoformat(),
        }

        log_with_context(
            logger,
            "debug",
            "Today metrics computed",
            provider_id=provider_id,
            requests=len(today_orders),
        )
        return result

    async def get_queue_status(self, provider_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Open work orders ordered by priority (Urgent first, unknown last)
        and then by age, oldest first.
        """
        now = now or utc_now()
        today = start_of_day(now)

        open_orders, today_orders = await asyncio.gather(
            self.records.query_work_orders(provider_id, status_in=list(QUEUE_STATUSES)),
            self.records.query_work_orders(provider_id, status_in=list(RESPONDED_STATUSES), date_from=today),
        )

        ordered = sorted(
            open_orders,
            key=lambda wo: (PRIORITY_ORDER.get(wo.priority, UNRANKED_PRIORITY), wo.created_at),
        )

        items = []
        for wo in ordered:
            waiting = max((now - wo.created_at).total_seconds() / 60, 0.0)
            items.append({
                "work_order_id": wo.id,
                "status": wo.status,
                "priority": wo.priority,
                "category": wo.category,
                "customer_id": wo.customer_id,
                "created_at": wo.created_at.isoformat(),
                "waiting_minutes": display_round(waiting),
                "waiting_time": format_duration(waiting),
            })

        oldest = max((item["waiting_minutes"] for item in items), default=0)
        today_responses = response_times(today_orders, RESPONDED_STATUSES)

        return {
            "queue": {
                "total": len(items),
                "pending": sum(1 for i in items if i["status"] == WorkOrderStatus.PENDING),
                "accepted": sum(1 for i in items if i["status"] == WorkOrderStatus.ACCEPTED),
                "in_progress": sum(1 for i in items if i["status"] == WorkOrderStatus.IN_PROGRESS),
                "items": items,
                "health": queue_health(oldest),
                "oldest_waiting_minutes": oldest,
            },
            "response_time_today": {
                "average_minutes": display_round(mean(today_responses)),
                "formatted": format_duration(mean(today_responses)),
                "response_count": len(today_responses),
            },
            "summary": {
                "active_requests": len(items),
                "urgent_count": sum(1 for wo in ordered if wo.priority == PriorityLevel.URGENT),
                "high_priority_count": sum(1 for wo in ordered if wo.priority == PriorityLevel.HIGH),
            },
            "generated_at": now.isoformat(),
        }

    async def get_recent_activity(
        self,
        provider_id: int,
        limit: int = 20,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Reviews, status changes, provider messages and completed payments
        from the last 7 days, newest first.

        Raises:
            ValidationException: limit outside 1..100
        """
        validate_activity_limit(limit)

        now = now or utc_now()
        since = now - timedelta(days=ACTIVITY_WINDOW_DAYS)
        per_kind = math.ceil(limit / 2)

        ratings, status_changes, messages, payments = await asyncio.gather(
            self.records.query_ratings(provider_id, date_from=since),
            self.records.query_work_orders(
                provider_id,
                status_in=list(ACTIVITY_STATUSES),
                updated_since=since,
            ),
            self.records.query_messages(provider_id, date_from=since),
            self.records.query_payments(
                provider_id,
                status_in=[PaymentStatus.COMPLETED.value],
                date_from=since,
            ),
        )

        def newest(records, timestamp):
            return sorted(records, key=timestamp, reverse=True)[:per_kind]

        activities: List[Dict[str, Any]] = []
        for rating in newest(ratings, lambda r: r.created_at):
            activities.append({
                "type": "review",
                "id": rating.id,
                "customer_id": rating.customer_id,
                "timestamp": rating.created_at,
                "data": {
                    "rating": rating.value,
                    "comment": rating.comment,
                    "category": rating.category,
                    "work_order_id": rating.work_order_id,
                },
                "summary": f"Customer left a {rating.value}-star review",
            })
        for wo in newest(status_changes, lambda w: w.updated_at):
            activities.append({
                "type": "request",
                "id": wo.id,
                "customer_id": wo.customer_id,
                "timestamp": wo.updated_at,
                "data": {"status": wo.status, "category": wo.category},
                "summary": f"Work order {wo.status.lower()} ({wo.category})",
            })
        for message in newest(messages, lambda m: m.sent_at):
            activities.append({
                "type": "message",
                "id": message.id,
                "customer_id": message.customer_id,
                "timestamp": message.sent_at,
                "data": {"work_order_id": message.work_order_id},
                "summary": f"Message sent on work order {message.work_order_id}",
            })
        for payment in newest(payments, lambda p: p.payment_date):
            activities.append({
                "type": "payment",
                "id": payment.id,
                "customer_id": payment.customer_id,
                "timestamp": payment.payment_date,
                "data": {
                    "amount": display_round(payment.amount),
                    "formatted_amount": f"{payment.amount:.2f}",
                    "status": payment.status,
                    "category": payment.category,
                    "work_order_id": payment.work_order_id,
                },
                "summary": f"Payment of ${payment.amount:.2f} received",
            })

        activities.sort(key=lambda a: a["timestamp"], reverse=True)
        activities = activities[:limit]

        by_type = {kind: 0 for kind in ("review", "request", "message", "payment")}
        for activity in activities:
            by_type[activity["type"]] += 1
        recent_ratings = [a["data"]["rating"] for a in activities if a["type"] == "review"]

        for activity in activities:
            activity["timestamp"] = activity["timestamp"].isoformat()

        return {
            "activities": activities,
            "count": len(activities),
            "summary": {
                "by_type": by_type,
                "average_recent_rating": display_round(mean(recent_ratings)),
            },
            "generated_at": now.isoformat(),
        }


def get_realtime_analytics(records: RecordStore) -> RealTimeAnalytics:
    """Factory function to create RealTimeAnalytics."""
    return RealTimeAnalytics(records)
