"""
RevenueAnalytics - provider earnings over time.

Computes:
- Total completed earnings for a period, compared with the previous period
- Earnings split by service category
- Earnings trend series (daily buckets up to 30 days, monthly beyond)
- Payment status breakdown (pending/completed/failed/refunded)
- Rolling month-by-month comparison with a year-over-year estimate

All amounts come from payments in Completed status unless stated otherwise.
"""
import asyncio
from collections import defaultdict
from typing import Any, Dict, List, Optional
from datetime import datetime

from src.api.middleware.error_handler import ValidationException
from src.lib.logging import get_logger, log_with_context
from src.models.payments import PaymentStatus
from src.services.period_resolver import (
    MONTHLY,
    add_months,
    bucket_key,
    display_round,
    percentage_change,
    resolve_period,
    trend_for,
    utc_now,
)
from src.services.record_store import PaymentRecord, RecordStore


logger = get_logger(__name__)

PAYMENT_STATUSES = [s.value for s in PaymentStatus]


def _sum_amounts(payments: List[PaymentRecord]) -> float:
    return sum(p.amount for p in payments)


def build_trend_series(payments: List[PaymentRecord], granularity: str) -> List[Dict[str, Any]]:
    """
    Bucket completed payments and attach each bucket's change against the
    previous bucket (None when the previous bucket earned nothing).
    """
    buckets: Dict[str, Dict[str, Any]] = {}
    for payment in payments:
        key = bucket_key(payment.payment_date, granularity)
        bucket = buckets.setdefault(key, {"earnings": 0.0, "work_orders": set()})
        bucket["earnings"] += payment.amount
        bucket["work_orders"].add(payment.work_order_id)

    series = []
    previous_earnings = 0.0
    for index, label in enumerate(sorted(buckets)):
        earnings = buckets[label]["earnings"]
        change = None
        if index > 0 and previous_earnings > 0:
            change = display_round(percentage_change(earnings, previous_earnings))
        series.append({
            "period_label": label,
            "earnings": display_round(earnings),
            "transaction_count": len(buckets[label]["work_orders"]),
            "percentage_change": change,
        })
        previous_earnings = earnings
    return series


class RevenueAnalytics:
    """
    Service computing a provider's revenue metrics from payment records.
    """

    def __init__(self, records: RecordStore):
        """
        Initialize RevenueAnalytics.

        Args:
            records: Collaborator store for provider records
        """
        self.records = records
        logger.info("RevenueAnalytics initialized")

    async def _completed_payments(
        self,
        provider_id: int,
        date_from: Optional[datetime] = None,
        date_to: Optional[datetime] = None,
    ) -> List[PaymentRecord]:
        return await self.records.query_payments(
            provider_id,
            status_in=[PaymentStatus.COMPLETED.value],
            date_from=date_from,
            date_to=date_to,
        )

    async def get_total_earnings(
        self,
        provider_id: int,
        period: str = "30days",
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Completed earnings in the period and the change against the previous one.

        Returns:
            Dict with current_period, previous_period (None for 'all'),
            percentage_change (None for 'all') and trend
        """
        window = resolve_period(period, now)

        current = await self._completed_payments(provider_id, window.start)
        current_total = _sum_amounts(current)

        previous_period = None
        change = None
        if window.has_comparison:
            previous = await self._completed_payments(provider_id, window.previous_start, window.previous_end)
            previous_total = _sum_amounts(previous)
            change = percentage_change(current_total, previous_total)
            previous_period = {
                "total_earnings": display_round(previous_total),
                "transaction_count": len(previous),
                "formatted_earnings": f"{previous_total:.2f}",
            }

        return {
            "period": period,
            "current_period": {
                "total_earnings": display_round(current_total),
                "transaction_count": len(current),
                "formatted_earnings": f"{current_total:.2f}",
            },
            "previous_period": previous_period,
            "percentage_change": display_round(change),
            "trend": trend_for(change or 0),
        }

    async def get_earnings_by_category(
        self,
        provider_id: int,
        period: str = "30days",
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Completed earnings grouped by category, largest first."""
        window = resolve_period(period, now)
        payments = await self._completed_payments(provider_id, window.start)

        earnings: Dict[str, float] = defaultdict(float)
        work_orders: Dict[str, set] = defaultdict(set)
        for payment in payments:
            earnings[payment.category] += payment.amount
            work_orders[payment.category].add(payment.work_order_id)

        total = sum(earnings.values())
        categories = [
            {
                "category": category,
                "earnings": display_round(amount),
                "service_count": len(work_orders[category]),
                "percentage": display_round(amount / total * 100) if total > 0 else 0,
            }
            for category, amount in sorted(earnings.items(), key=lambda item: item[1], reverse=True)
        ]

        return {
            "period": period,
            "total_earnings": display_round(total),
            "categories": categories,
            "category_count": len(categories),
        }

    async def get_average_earnings_per_service(
        self,
        provider_id: int,
        period: str = "all",
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Average completed payment, with comparison when the period has one."""
        window = resolve_period(period, now)
        current = await self._completed_payments(provider_id, window.start)
        average = _sum_amounts(current) / len(current) if current else 0.0

        result = {
            "period": period,
            "average": display_round(average),
            "total_earnings": display_round(_sum_amounts(current)),
            "service_count": len(current),
            "percentage_change": None,
            "trend": "stable",
        }
        if window.has_comparison:
            previous = await self._completed_payments(provider_id, window.previous_start, window.previous_end)
            previous_average = _sum_amounts(previous) / len(previous) if previous else 0.0
            change = percentage_change(average, previous_average)
            result["previous_average"] = display_round(previous_average)
            result["percentage_change"] = display_round(change)
            result["trend"] = trend_for(change)
        return result

    async def get_revenue_trends(
        self,
        provider_id: int,
        period: str = "30days",
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Earnings series bucketed by day (<= 30 days) or month."""
        window = resolve_period(period, now)
        payments = await self._completed_payments(provider_id, window.start)

        series = build_trend_series(payments, window.granularity)
        total = sum(point["earnings"] for point in series)

        return {
            "period": period,
            "granularity": window.granularity,
            "data_points": series,
            "summary": {
                "total_earnings": display_round(total),
                "average_per_period": display_round(total / len(series)) if series else 0,
                "data_points": len(series),
            },
        }

    async def get_payment_status(self, provider_id: int) -> Dict[str, Any]:
        """All-time payment amounts and counts per status, with share of the grand total."""
        payments = await self.records.query_payments(provider_id)

        breakdown = {status.lower(): {"amount": 0.0, "count": 0} for status in PAYMENT_STATUSES}
        for payment in payments:
            entry = breakdown.get(payment.status.lower())
            if entry is None:
                continue
            entry["amount"] += payment.amount
            entry["count"] += 1

        grand_total = sum(entry["amount"] for entry in breakdown.values())
        statuses = {
            status: {
                "amount": display_round(entry["amount"]),
                "count": entry["count"],
                "percentage": display_round(entry["amount"] / grand_total * 100) if grand_total > 0 else 0,
            }
            for status, entry in breakdown.items()
        }

        return {
            "statuses": statuses,
            "grand_total": display_round(grand_total),
            "total_payments": sum(entry["count"] for entry in breakdown.values()),
        }

    async def get_monthly_comparison(
        self,
        provider_id: int,
        months: int = 12,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Month-by-month completed earnings over the last `months` months.

        Raises:
            ValidationException: months outside 1..24
        """
        if not isinstance(months, int) or months < 1 or months > 24:
            raise ValidationException(
                "Months must be between 1 and 24",
                errors={"months": months},
            )

        now = now or utc_now()
        payments = await self._completed_payments(provider_id, add_months(now, -months))

        buckets: Dict[str, Dict[str, Any]] = {}
        for payment in payments:
            key = bucket_key(payment.payment_date, MONTHLY)
            bucket = buckets.setdefault(key, {"earnings": 0.0, "work_orders": set(), "customers": set()})
            bucket["earnings"] += payment.amount
            bucket["work_orders"].add(payment.work_order_id)
            bucket["customers"].add(payment.customer_id)

        monthly_data = []
        previous_earnings = 0.0
        for index, month in enumerate(sorted(buckets)):
            earnings = buckets[month]["earnings"]
            change = None
            if index > 0 and (previous_earnings > 0 or earnings > 0):
                change = percentage_change(earnings, previous_earnings)
            monthly_data.append({
                "month": month,
                "earnings": display_round(earnings),
                "service_count": len(buckets[month]["work_orders"]),
                "unique_customers": len(buckets[month]["customers"]),
                "month_over_month_change": display_round(change),
                "trend": trend_for(change or 0),
            })
            previous_earnings = earnings

        total = sum(m["earnings"] for m in monthly_data)
        highest = max(monthly_data, key=lambda m: m["earnings"]) if monthly_data else None
        lowest = min(monthly_data, key=lambda m: m["earnings"]) if monthly_data else None

        year_over_year = None
        if months >= 12 and len(monthly_data) >= 12:
            recent = sum(m["earnings"] for m in monthly_data[-6:])
            earliest = sum(m["earnings"] for m in monthly_data[:6])
            if earliest > 0:
                year_over_year = display_round((recent - earliest) / earliest * 100)

        return {
            "months": months,
            "monthly_data": monthly_data,
            "summary": {
                "total_earnings": display_round(total),
                "average_monthly_earnings": display_round(total / len(monthly_data)) if monthly_data else 0,
                "month_count": len(monthly_data),
                "highest_month": {"month": highest["month"], "earnings": highest["earnings"]} if highest else None,
                "lowest_month": {"month": lowest["month"], "earnings": lowest["earnings"]} if lowest else None,
                "year_over_year_change": year_over_year,
            },
        }

    async def get_revenue_analytics(
        self,
        provider_id: int,
        period: str = "30days",
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """All revenue sections for one period, computed concurrently."""
        resolve_period(period, now)

        (
            total_earnings,
            earnings_by_category,
            average_earnings,
            revenue_trends,
            payment_status,
            monthly_comparison,
        ) = await asyncio.gather(
            self.get_total_earnings(provider_id, period, now),
            self.get_earnings_by_category(provider_id, period, now),
            self.get_average_earnings_per_service(provider_id, "all", now),
            self.get_revenue_trends(provider_id, period, now),
            self.get_payment_status(provider_id),
            self.get_monthly_comparison(provider_id, 12, now),
        )

        log_with_context(
            logger,
            "info",
            "Revenue analytics computed",
            provider_id=provider_id,
            period=period,
            total_earnings=total_earnings["current_period"]["total_earnings"],
        )

        return {
            "period": period,
            "total_earnings": total_earnings,
            "earnings_by_category": earnings_by_category,
            "average_earnings": average_earnings,
            "revenue_trends": revenue_trends,
            "payment_status": payment_status,
            "monthly_comparison": monthly_comparison,
            "generated_at": (now or utc_now()).isoformat(),
        }


def get_revenue_analytics(records: RecordStore) -> RevenueAnalytics:
    """
    Factory function to create RevenueAnalytics.

    Args:
        records: Collaborator record store

    Returns:
        RevenueAnalytics instance
    """
    return RevenueAnalytics(records)
