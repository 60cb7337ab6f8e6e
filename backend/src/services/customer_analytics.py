"""
CustomerAnalytics - who a provider serves and how they come back.

Computes:
- Unique customers in a period (with previous-period comparison)
- Retention: repeat customers among all customers ever served
- Geographic distribution by location key
- Peak service times (hour of day, weekday, day part)
- Acquisition trends (new vs returning customers per bucket)
- Customer lifetime value with value segments

Only completed work orders count as "served"; retention and lifetime
value are always computed over all-time data.
"""
import asyncio
from collections import defaultdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from src.lib.logging import get_logger, log_with_context
from src.models.payments import PaymentStatus
from src.models.work_orders import WorkOrderStatus
from src.services.period_resolver import (
    DAILY,
    bucket_key,
    display_round,
    percentage_change,
    resolve_period,
    safe_rate,
    trend_for,
    utc_now,
)
from src.services.record_store import RecordStore, WorkOrderRecord


logger = get_logger(__name__)

UNKNOWN_REGION = "Unknown"
TOP_REGIONS = 5
TOP_CUSTOMERS = 5
REVENUE_BUCKETS = 5

HIGH_VALUE_MULTIPLIER = 1.5
LOW_VALUE_MULTIPLIER = 0.5

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

# (name, label, first hour, end hour); night is whatever is left
DAY_PARTS = [
    ("morning", "6AM - 12PM", 6, 12),
    ("afternoon", "12PM - 6PM", 12, 18),
    ("evening", "6PM - 10PM", 18, 22),
]


def _weekday_index(moment: datetime) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (moment.weekday() + 1) % 7


def _share(count: int, total: int) -> float:
    return display_round(safe_rate(count, total))


class CustomerAnalytics:
    """
    Service computing customer behaviour metrics for one provider.
    """

    def __init__(self, records: RecordStore):
        self.records = records
        logger.info("CustomerAnalytics initialized")

    async def _completed(self, provider_id: int, date_from=None, date_to=None) -> List[WorkOrderRecord]:
        return await self.records.query_work_orders(
            provider_id,
            status_in=[WorkOrderStatus.COMPLETED.value],
            date_from=date_from,
            date_to=date_to,
        )

    async def get_unique_customer_count(
        self,
        provider_id: int,
        period: str = "30days",
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Distinct customers with completed work in the period."""
        window = resolve_period(period, now)
        current = await self._completed(provider_id, window.start)
        unique = len({wo.customer_id for wo in current})

        result = {
            "period": period,
            "unique_customers": unique,
            "total_requests": len(current),
            "average_requests_per_customer": display_round(len(current) / unique) if unique else 0,
            "previous_period": None,
            "percentage_change": None,
            "trend": "stable",
        }

        if window.has_comparison:
            previous = await self._completed(provider_id, window.previous_start, window.previous_end)
            previous_unique = len({wo.customer_id for wo in previous})
            change = percentage_change(unique, previous_unique)
            result.update({
                "previous_period": {"unique_customers": previous_unique},
                "percentage_change": display_round(change),
                "trend": trend_for(change),
            })
        return result

    async def get_retention_rate(self, provider_id: int) -> Dict[str, Any]:
        """
        Repeat customers (more than one completed work order) over all
        customers with at least one, across all time.
        """
        work_orders = await self._completed(provider_id)

        by_customer: Dict[int, List[datetime]] = defaultdict(list)
        for wo in work_orders:
            by_customer[wo.customer_id].append(wo.created_at)

        total = len(by_customer)
        repeat = {cid: dates for cid, dates in by_customer.items() if len(dates) > 1}
        rate = safe_rate(len(repeat), total)

        average_requests = (
            sum(len(dates) for dates in repeat.values()) / len(repeat) if repeat else 0.0
        )
        average_tenure = (
            sum((max(dates) - min(dates)).total_seconds() / 86400 for dates in repeat.values()) / len(repeat)
            if repeat else 0.0
        )

        return {
            "total_customers": total,
            "repeat_customers": len(repeat),
            "one_time_customers": total - len(repeat),
            "retention_rate": display_round(rate),
            "average_requests_per_repeat_customer": display_round(average_requests),
            "average_customer_tenure_days": display_round(average_tenure, 1),
            "breakdown": {
                "repeat": {"count": len(repeat), "percentage": display_round(rate)},
                "one_time": {"count": total - len(repeat), "percentage": display_round(100 - rate) if total else 0},
            },
        }

    async def get_geographic_distribution(self, provider_id: int) -> Dict[str, Any]:
        """Customers and requests per location key, largest regions first."""
        work_orders = await self._completed(provider_id)

        customers: Dict[str, set] = defaultdict(set)
        requests: Dict[str, int] = defaultdict(int)
        for wo in work_orders:
            region = wo.location_key or UNKNOWN_REGION
            customers[region].add(wo.customer_id)
            requests[region] += 1

        total_customers = sum(len(c) for c in customers.values())
        total_requests = sum(requests.values())

        regions = [
            {
                "location_key": region,
                "customer_count": len(customers[region]),
                "request_count": requests[region],
                "customer_percentage": _share(len(customers[region]), total_customers),
                "request_percentage": _share(requests[region], total_requests),
            }
            for region in customers
        ]
        regions.sort(key=lambda r: (r["customer_count"], r["request_count"]), reverse=True)
        top_regions = regions[:TOP_REGIONS]

        return {
            "total_customers": total_customers,
            "total_requests": total_requests,
            "region_count": len(regions),
            "regions": regions,
            "top_regions": top_regions,
            "summary": {
                "most_popular_region": top_regions[0] if top_regions else None,
                "concentration": display_round(sum(r["customer_percentage"] for r in top_regions)),
            },
        }

    async def get_peak_service_times(self, provider_id: int) -> Dict[str, Any]:
        """Completed work order counts by hour, weekday and day part (UTC)."""
        work_orders = await self._completed(provider_id)
        total = len(work_orders)

        hourly_counts = [0] * 24
        daily_counts = [0] * 7
        for wo in work_orders:
            hourly_counts[wo.created_at.hour] += 1
            daily_counts[_weekday_index(wo.created_at)] += 1

        hourly = [
            {"hour": hour, "label": f"{hour:02d}:00", "request_count": count, "percentage": _share(count, total)}
            for hour, count in enumerate(hourly_counts)
        ]
        daily = [
            {"day_of_week": index + 1, "day_name": DAY_NAMES[index], "request_count": count, "percentage": _share(count, total)}
            for index, count in enumerate(daily_counts)
        ]

        peak_hours = [h for h in sorted(hourly, key=lambda h: h["request_count"], reverse=True)[:3] if h["request_count"] > 0]
        peak_days = [d for d in sorted(daily, key=lambda d: d["request_count"], reverse=True)[:3] if d["request_count"] > 0]

        day_parts: Dict[str, Dict[str, Any]] = {}
        assigned = 0
        for name, label, start, end in DAY_PARTS:
            count = sum(hourly_counts[start:end])
            assigned += count
            day_parts[name] = {"label": label, "request_count": count, "percentage": _share(count, total)}
        night = total - assigned
        day_parts["night"] = {"label": "10PM - 6AM", "request_count": night, "percentage": _share(night, total)}

        busiest_part = None
        if total:
            busiest_part = max(day_parts.items(), key=lambda item: item[1]["request_count"])[0]

        return {
            "total_requests": total,
            "hourly_distribution": hourly,
            "daily_distribution": daily,
            "peak_hours": peak_hours,
            "peak_days": peak_days,
            "time_period_breakdown": day_parts,
            "summary": {
                "busiest_hour": peak_hours[0] if peak_hours else None,
                "busiest_day": peak_days[0] if peak_days else None,
                "busiest_time_period": busiest_part,
            },
        }

    async def get_acquisition_trends(
        self,
        provider_id: int,
        period: str = "30days",
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        New vs returning customers per bucket.

        A request counts as "new" when the customer's first completed work
        order with this provider falls on the same calendar day (7/30-day
        periods) or the same calendar month (longer periods).
        """
        window = resolve_period(period, now)
        all_completed = await self._completed(provider_id)

        first_request: Dict[int, datetime] = {}
        for wo in all_completed:
            seen = first_request.get(wo.customer_id)
            if seen is None or wo.created_at < seen:
                first_request[wo.customer_id] = wo.created_at

        granularity = window.granularity
        same_bucket_key = "%Y-%m-%d" if granularity == DAILY else "%Y-%m"

        buckets: Dict[str, Dict[str, Any]] = {}
        in_period = [wo for wo in all_completed if window.start is None or wo.created_at >= window.start]
        for wo in sorted(in_period, key=lambda w: w.created_at):
            label = bucket_key(wo.created_at, granularity)
            bucket = buckets.setdefault(label, {"new": set(), "returning": set(), "requests": 0})
            bucket["requests"] += 1
            first = first_request[wo.customer_id]
            if first.strftime(same_bucket_key) == wo.created_at.strftime(same_bucket_key):
                bucket["new"].add(wo.customer_id)
            else:
                bucket["returning"].add(wo.customer_id)

        data_points = []
        for label in sorted(buckets):
            new_count = len(buckets[label]["new"])
            returning_count = len(buckets[label]["returning"])
            customers = new_count + returning_count
            data_points.append({
                "period_label": label,
                "new_customers": new_count,
                "returning_customers": returning_count,
                "total": customers,
                "total_requests": buckets[label]["requests"],
                "new_customer_percentage": _share(new_count, customers),
                "returning_customer_percentage": _share(returning_count, customers),
            })

        total_new = sum(p["new_customers"] for p in data_points)
        total_returning = sum(p["returning_customers"] for p in data_points)
        total_customers = total_new + total_returning

        return {
            "period": period,
            "granularity": granularity,
            "data_points": data_points,
            "summary": {
                "total_new_customers": total_new,
                "total_returning_customers": total_returning,
                "total_requests": sum(p["total_requests"] for p in data_points),
                "new_customer_percentage": _share(total_new, total_customers),
                "returning_customer_percentage": _share(total_returning, total_customers),
                "average_new_customers_per_period": display_round(total_new / len(data_points)) if data_points else 0,
                "data_points": len(data_points),
            },
        }

    async def get_customer_lifetime_value(self, provider_id: int) -> Dict[str, Any]:
        """Completed-payment revenue per customer, segmented against the average."""
        work_orders, payments = await asyncio.gather(
            self._completed(provider_id),
            self.records.query_payments(provider_id, status_in=[PaymentStatus.COMPLETED.value]),
        )

        revenue_by_order = defaultdict(float)
        for payment in payments:
            revenue_by_order[payment.work_order_id] += payment.amount

        customers: Dict[int, Dict[str, Any]] = {}
        for wo in work_orders:
            entry = customers.setdefault(wo.customer_id, {"revenue": 0.0, "requests": 0, "dates": []})
            entry["revenue"] += revenue_by_order.get(wo.id, 0.0)
            entry["requests"] += 1
            entry["dates"].append(wo.created_at)

        if not customers:
            return {
                "total_customers": 0,
                "average_clv": 0,
                "total_revenue": 0,
                "average_requests_per_customer": 0,
                "average_tenure_days": 0,
                "average_revenue_per_request": 0,
                "segments": {
                    "high": {"count": 0, "percentage": 0, "threshold": 0},
                    "medium": {"count": 0, "percentage": 0},
                    "low": {"count": 0, "percentage": 0, "threshold": 0},
                },
                "top_customers": [],
                "revenue_ranges": [],
            }

        total_customers = len(customers)
        total_revenue = sum(c["revenue"] for c in customers.values())
        total_requests = sum(c["requests"] for c in customers.values())
        tenure = {
            cid: (max(c["dates"]) - min(c["dates"])).days for cid, c in customers.items()
        }
        average_value = total_revenue / total_customers

        high_threshold = average_value * HIGH_VALUE_MULTIPLIER
        low_threshold = average_value * LOW_VALUE_MULTIPLIER
        high = sum(1 for c in customers.values() if c["revenue"] >= high_threshold)
        low = sum(1 for c in customers.values() if c["revenue"] < low_threshold)
        medium = total_customers - high - low

        ranked = sorted(customers.items(), key=lambda item: item[1]["revenue"], reverse=True)
        top_customers = [
            {
                "customer_id": cid,
                "total_revenue": display_round(c["revenue"]),
                "total_requests": c["requests"],
                "tenure_days": tenure[cid],
            }
            for cid, c in ranked[:TOP_CUSTOMERS]
        ]

        max_revenue = max(c["revenue"] for c in customers.values())
        bucket_size = max_revenue / REVENUE_BUCKETS if max_revenue > 0 else 1
        bucket_counts = [0] * REVENUE_BUCKETS
        for c in customers.values():
            # The maximum itself belongs to the last bucket
            index = min(int(c["revenue"] // bucket_size), REVENUE_BUCKETS - 1)
            bucket_counts[index] += 1
        distribution = [
            {
                "range": f"${i * bucket_size:.0f} - ${(i + 1) * bucket_size:.0f}",
                "min": display_round(i * bucket_size),
                "max": display_round((i + 1) * bucket_size),
                "count": count,
                "percentage": _share(count, total_customers),
            }
            for i, count in enumerate(bucket_counts)
        ]

        return {
            "total_customers": total_customers,
            "average_clv": display_round(average_value),
            "total_revenue": display_round(total_revenue),
            "average_requests_per_customer": display_round(total_requests / total_customers),
            "average_tenure_days": display_round(sum(tenure.values()) / total_customers, 1),
            "average_revenue_per_request": display_round(total_revenue / total_requests) if total_requests else 0,
            "segments": {
                "high": {"count": high, "percentage": _share(high, total_customers), "threshold": display_round(high_threshold)},
                "medium": {"count": medium, "percentage": _share(medium, total_customers)},
                "low": {"count": low, "percentage": _share(low, total_customers), "threshold": display_round(low_threshold)},
            },
            "top_customers": top_customers,
            "revenue_ranges": distribution,
        }

    async def get_customer_analytics(
        self,
        provider_id: int,
        period: str = "30days",
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """All customer sections, computed concurrently."""
        resolve_period(period, now)

        (
            unique_customers,
            retention,
            geographic,
            peak_times,
            acquisition,
            lifetime_value,
        ) = await asyncio.gather(
            self.get_unique_customer_count(provider_id, period, now),
            self.get_retention_rate(provider_id),
            self.get_geographic_distribution(provider_id),
            self.get_peak_service_times(provider_id),
            self.get_acquisition_trends(provider_id, period, now),
            self.get_customer_lifetime_value(provider_id),
        )

        log_with_context(
            logger,
            "info",
            "Customer analytics computed",
            provider_id=provider_id,
            period=period,
            unique_customers=unique_customers["unique_customers"],
        )

        return {
            "period": period,
            "unique_customer_count": unique_customers,
            "retention_rate": retention,
            "geographic_distribution": geographic,
            "peak_service_times": peak_times,
            "acquisition_trends": acquisition,
            "customer_lifetime_value": lifetime_value,
            "generated_at": (now or utc_now()).isoformat(),
        }


def get_customer_analytics(records: RecordStore) -> CustomerAnalytics:
    """Factory function to create CustomerAnalytics."""
    return CustomerAnalytics(records)
