"""
BenchmarkingService - how a provider compares with the rest of the platform.

Computes:
- Platform averages over a qualifying population
- Percentile rankings per metric (direction-aware)
- Improvement suggestions and strengths against the averages
- Year-over-year comparison and seasonal demand patterns

Qualifying population: providers with at least `benchmark_min_work_orders`
work orders for completion, response time, revenue and cancellation, and at
least `benchmark_min_ratings` ratings for the rating metric. The same floors
apply to averages and to percentile rankings.
"""
import asyncio
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from src.lib.analytics_config import get_benchmark_config
from src.lib.logging import get_logger, log_with_context
from src.lib.settings import settings
from src.models.payments import PaymentStatus
from src.models.work_orders import WorkOrderStatus
from src.services.performance_analytics import completion_rate
from src.services.period_resolver import (
    display_round,
    format_duration,
    mean,
    percentage_change,
    safe_rate,
    trend_for,
    utc_now,
)
from src.services.record_store import ProviderAggregate, RecordStore


logger = get_logger(__name__)

MONTH_NAMES = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]
QUARTER_NAMES = ["Q1 (Jan-Mar)", "Q2 (Apr-Jun)", "Q3 (Jul-Sep)", "Q4 (Oct-Dec)"]
DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

PEAK_FACTOR = 1.2
LOW_FACTOR = 0.8
YEAR_END_FACTOR = 1.3

PRIORITY_ORDER = {"high": 0, "medium": 1, "low": 2}

ASSESSMENT_ALL_GOOD = "Excellent! You are performing above platform averages in all key metrics."
ASSESSMENT_URGENT = "There are high-priority areas that need attention to improve your performance."
ASSESSMENT_MINOR = "You are performing well with some opportunities for improvement."


@dataclass(frozen=True)
class MetricDefinition:
    key: str
    label: str
    unit: str
    lower_is_better: bool = False


COMPLETION = MetricDefinition("completion_rate", "Completion Rate", "percentage")
RESPONSE = MetricDefinition("response_time", "Average Response Time", "minutes", lower_is_better=True)
RATING = MetricDefinition("rating", "Customer Satisfaction", "rating")
REVENUE = MetricDefinition("average_revenue", "Average Revenue", "currency")
CANCELLATION = MetricDefinition("cancellation_rate", "Cancellation Rate", "percentage", lower_is_better=True)

RANKED_METRICS = [COMPLETION, RESPONSE, RATING, CANCELLATION]


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def percentile(values: List[float], value: float, lower_is_better: bool = False) -> int:
    """
    Share of the population whose value is no better than `value`, 0..100.

    For lower-is-better metrics a lower value ranks higher.
    """
    if not values:
        return 0
    if lower_is_better:
        no_better = sum(1 for v in values if v >= value)
    else:
        no_better = sum(1 for v in values if v <= value)
    return round_half_up(no_better / len(values) * 100)


def rank_label(value: int) -> str:
    config = get_benchmark_config()
    if value >= config.top_10_band:
        return "Top 10%"
    if value >= config.top_25_band:
        return "Top 25%"
    if value >= config.above_average_band:
        return "Above Average"
    if value >= config.below_average_band:
        return "Below Average"
    return "Bottom 25%"


def coefficient_of_variation(values: List[float]) -> float:
    """Population standard deviation over the mean, in percent."""
    average = mean(values)
    if average == 0:
        return 0.0
    variance = sum((v - average) ** 2 for v in values) / len(values)
    return math.sqrt(variance) / average * 100


def seasonal_patterns(monthly_counts: List[int]) -> List[Dict[str, str]]:
    """Classify a Jan..Dec request histogram into coarse seasonal patterns."""
    overall = mean(monthly_counts)
    summer = mean(monthly_counts[5:8])
    winter = mean([monthly_counts[11], monthly_counts[0], monthly_counts[1]])

    patterns = []
    if summer > overall * PEAK_FACTOR:
        patterns.append({"type": "summer_peak", "description": "Higher demand during summer months (Jun-Aug)"})
    if winter > overall * PEAK_FACTOR:
        patterns.append({"type": "winter_peak", "description": "Higher demand during winter months (Dec-Feb)"})
    if summer < overall * LOW_FACTOR:
        patterns.append({"type": "summer_low", "description": "Lower demand during summer months (Jun-Aug)"})
    if winter < overall * LOW_FACTOR:
        patterns.append({"type": "winter_low", "description": "Lower demand during winter months (Dec-Feb)"})
    if monthly_counts[11] > overall * YEAR_END_FACTOR:
        patterns.append({"type": "year_end_spike", "description": "Increased demand in December"})
    if not patterns:
        patterns.append({"type": "stable", "description": "Relatively stable demand throughout the year"})
    return patterns


class Population:
    """Qualifying providers and their per-metric values."""

    def __init__(self, aggregates: List[ProviderAggregate]):
        min_orders = settings.benchmark_min_work_orders
        min_ratings = settings.benchmark_min_ratings

        self.by_provider = {a.provider_id: a for a in aggregates}
        self.work_order_members = {a.provider_id: a for a in aggregates if a.total_work_orders >= min_orders}
        self.rating_members = {a.provider_id: a for a in aggregates if a.rating_count >= min_ratings}

    def values(self, metric: MetricDefinition) -> List[float]:
        if metric is RATING:
            return [a.average_rating for a in self.rating_members.values()]
        members = self.work_order_members.values()
        if metric is RESPONSE:
            return [a.average_response_minutes for a in members if a.average_response_minutes is not None]
        if metric is REVENUE:
            return [a.total_revenue for a in members]
        if metric is CANCELLATION:
            return [a.cancellation_rate for a in members]
        return [a.completion_rate for a in members]

    def provider_value(self, provider_id: int, metric: MetricDefinition) -> Optional[float]:
        """The provider's value when it qualifies for this metric, else None."""
        if metric is RATING:
            member = self.rating_members.get(provider_id)
            return member.average_rating if member else None
        member = self.work_order_members.get(provider_id)
        if member is None:
            return None
        if metric is RESPONSE:
            return member.average_response_minutes
        if metric is REVENUE:
            return member.total_revenue
        if metric is CANCELLATION:
            return member.cancellation_rate
        return member.completion_rate


class BenchmarkingService:
    """
    Service ranking a provider against the platform population.
    """

    def __init__(self, records: RecordStore):
        """
        Initialize BenchmarkingService.

        Args:
            records: Collaborator record store
        """
        self.records = records
        self.config = get_benchmark_config()
        logger.info("BenchmarkingService initialized")

    async def _population(self) -> Population:
        aggregates = await self.records.query_all_provider_aggregates()
        return Population(aggregates)

    def _averages(self, population: Population) -> Dict[str, Any]:
        metrics = {}
        counts = {}
        for metric in (COMPLETION, RESPONSE, RATING, REVENUE, CANCELLATION):
            values = population.values(metric)
            average = mean(values)
            entry = {"value": display_round(average), "unit": metric.unit, "label": metric.label}
            if metric is RESPONSE:
                entry["formatted"] = format_duration(average)
            if metric is REVENUE:
                entry["formatted"] = f"${average:.2f}"
            if metric is RATING:
                entry["max_value"] = 5
            metrics[metric.key] = entry
            counts[metric.key] = len(values)
        return {
            "metrics": metrics,
            "provider_counts": counts,
            "sample_size": len(population.work_order_members),
        }

    async def platform_averages(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Population averages per metric with the number of providers behind each."""
        population = await self._population()
        result = self._averages(population)
        result["calculated_at"] = (now or utc_now()).isoformat()
        logger.debug(f"Platform averages over {result['sample_size']} providers")
        return result

    async def percentile_rankings(self, provider_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Percentile and rank label per metric.

        A provider outside the qualifying population gets zeros and 'N/A'
        with insufficient_data set; this is not an error.
        """
        population = await self._population()
        total = len(population.work_order_members)

        if provider_id not in population.work_order_members:
            return {
                "provider_id": provider_id,
                "rankings": {
                    metric.key: {"value": 0, "percentile": 0, "rank": "N/A", "unit": metric.unit}
                    for metric in RANKED_METRICS
                },
                "total_providers": total,
                "insufficient_data": True,
                "message": "Insufficient data for ranking",
                "calculated_at": (now or utc_now()).isoformat(),
            }

        rankings = {}
        for metric in RANKED_METRICS:
            value = population.provider_value(provider_id, metric)
            if value is None:
                rankings[metric.key] = {
                    "value": 0,
                    "percentile": 0,
                    "rank": "N/A",
                    "unit": metric.unit,
                    "insufficient_data": True,
                }
                continue
            rank = percentile(population.values(metric), value, metric.lower_is_better)
            entry = {
                "value": display_round(value),
                "percentile": rank,
                "rank": rank_label(rank),
                "unit": metric.unit,
            }
            if metric is RESPONSE:
                entry["formatted"] = format_duration(value)
            if metric.lower_is_better:
                entry["note"] = "Lower is better"
            rankings[metric.key] = entry

        return {
            "provider_id": provider_id,
            "rankings": rankings,
            "total_providers": total,
            "insufficient_data": False,
            "calculated_at": (now or utc_now()).isoformat(),
        }

    def _suggestion(self, metric, priority, title, current, average, gap, description, actions, target=None):
        return {
            "metric": metric,
            "priority": priority,
            "title": title,
            "current_value": display_round(current),
            "platform_average": display_round(average) if average is not None else None,
            "gap": display_round(gap),
            "target": display_round(target if target is not None else average),
            "recommendation": description,
            "actions": actions,
        }

    async def improvement_suggestions(self, provider_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Diff the provider's all-time metrics against the platform averages."""
        population = await self._population()
        averages = self._averages(population)["metrics"]
        mine = population.by_provider.get(provider_id, ProviderAggregate(provider_id=provider_id))
        config = self.config

        completion = mine.completion_rate
        cancellation = mine.cancellation_rate
        response = mine.average_response_minutes
        rating = mine.average_rating

        suggestions: List[Dict[str, Any]] = []
        strengths: List[Dict[str, Any]] = []

        def strength(metric: str, title: str, value: float, average: float):
            strengths.append({
                "metric": metric,
                "title": title,
                "current_value": display_round(value),
                "platform_average": display_round(average),
            })

        avg_completion = mean(population.values(COMPLETION))
        if completion < avg_completion:
            gap = avg_completion - completion
            suggestions.append(self._suggestion(
                COMPLETION.key,
                "high" if gap > config.completion_rate_gap else "medium",
                "Improve Service Completion Rate",
                completion,
                avg_completion,
                gap,
                f"Your completion rate ({completion:.1f}%) is below the platform average ({avg_completion:.1f}%).",
                [
                    "Review and improve your service scheduling process",
                    "Communicate proactively with customers about any delays",
                    "Consider declining requests you cannot fulfill",
                ],
            ))
        else:
            strength(COMPLETION.key, "Your completion rate meets or exceeds the platform average", completion, avg_completion)

        avg_response = mean(population.values(RESPONSE))
        if avg_response > 0 and response is not None:
            if response > avg_response:
                gap = response - avg_response
                suggestions.append(self._suggestion(
                    RESPONSE.key,
                    "high" if gap > config.response_time_gap_minutes else "medium",
                    "Reduce Response Time",
                    response,
                    avg_response,
                    gap,
                    f"Your average response time ({format_duration(response)}) is slower than "
                    f"the platform average ({format_duration(avg_response)}).",
                    [
                        "Enable notifications for new work orders",
                        "Set aside dedicated time slots for responding to inquiries",
                        "Use quick response templates for common questions",
                    ],
                ))
            else:
                strength(RESPONSE.key, "Your response time is faster than the platform average", response, avg_response)

        avg_rating = mean(population.values(RATING))
        if mine.rating_count > 0:
            if rating < avg_rating:
                gap = avg_rating - rating
                suggestions.append(self._suggestion(
                    RATING.key,
                    "high" if gap > config.rating_gap else "medium",
                    "Improve Customer Satisfaction",
                    rating,
                    avg_rating,
                    gap,
                    f"Your average rating ({rating:.1f}) is below the platform average ({avg_rating:.1f}).",
                    [
                        "Follow up with customers after service completion",
                        "Address negative feedback promptly",
                        "Ask satisfied customers to leave reviews",
                    ],
                ))
            else:
                strength(RATING.key, "Your customer rating meets or exceeds the platform average", rating, avg_rating)

        avg_cancellation = mean(population.values(CANCELLATION))
        if cancellation > avg_cancellation:
            gap = cancellation - avg_cancellation
            suggestions.append(self._suggestion(
                CANCELLATION.key,
                "high" if gap > config.cancellation_rate_gap else "medium",
                "Reduce Cancellation Rate",
                cancellation,
                avg_cancellation,
                gap,
                f"Your cancellation rate ({cancellation:.1f}%) is higher than the platform average ({avg_cancellation:.1f}%).",
                [
                    "Confirm appointments 24 hours in advance",
                    "Analyze cancellation reasons and address root causes",
                    "Publish a cancellation policy with a notice period",
                ],
            ))
        else:
            strength(CANCELLATION.key, "Your cancellation rate is at or below the platform average", cancellation, avg_cancellation)

        if (
            mine.rating_count < config.review_count_minimum
            and mine.total_work_orders > config.review_count_request_floor
        ):
            suggestions.append(self._suggestion(
                "review_count",
                "medium",
                "Increase Review Count",
                mine.rating_count,
                None,
                config.review_count_target - mine.rating_count,
                f"You have only {mine.rating_count} reviews. More reviews help build trust with potential customers.",
                [
                    "Send a follow-up message after service completion",
                    "Respond to reviews to show engagement",
                ],
                target=config.review_count_target,
            ))

        suggestions.sort(key=lambda s: PRIORITY_ORDER[s["priority"]])
        high = sum(1 for s in suggestions if s["priority"] == "high")

        if not suggestions:
            assessment = ASSESSMENT_ALL_GOOD
        elif high:
            assessment = ASSESSMENT_URGENT
        else:
            assessment = ASSESSMENT_MINOR

        return {
            "provider_id": provider_id,
            "provider_metrics": {
                "completion_rate": display_round(completion),
                "response_time": display_round(response) if response is not None else None,
                "cancellation_rate": display_round(cancellation),
                "average_rating": display_round(rating),
                "total_requests": mine.total_work_orders,
                "review_count": mine.rating_count,
            },
            "platform_averages": {key: entry["value"] for key, entry in averages.items()},
            "suggestions": suggestions,
            "strengths": strengths,
            "summary": {
                "total_suggestions": len(suggestions),
                "high_priority": high,
                "medium_priority": len(suggestions) - high,
                "strength_count": len(strengths),
                "overall_assessment": assessment,
            },
            "calculated_at": (now or utc_now()).isoformat(),
        }

    async def year_over_year(self, provider_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        """This calendar year so far against the whole previous calendar year."""
        now = now or utc_now()
        this_year = now.replace(month=1, day=1, hour=0, minute=0, second=0, microsecond=0)
        last_year = this_year.replace(year=this_year.year - 1)

        work_orders, payments, ratings = await asyncio.gather(
            self.records.query_work_orders(provider_id, date_from=last_year),
            self.records.query_payments(provider_id, status_in=[PaymentStatus.COMPLETED.value]),
            self.records.query_ratings(provider_id, date_from=last_year),
        )

        revenue_by_order: Dict[int, float] = defaultdict(float)
        for payment in payments:
            revenue_by_order[payment.work_order_id] += payment.amount

        def year_metrics(year: int) -> Dict[str, Any]:
            orders = [wo for wo in work_orders if wo.created_at.year == year]
            year_ratings = [r.value for r in ratings if r.created_at.year == year]
            revenue = sum(revenue_by_order.get(wo.id, 0.0) for wo in orders)
            return {
                "year": year,
                "total_requests": len(orders),
                "completed_requests": sum(1 for wo in orders if wo.status == WorkOrderStatus.COMPLETED),
                "cancelled_requests": sum(1 for wo in orders if wo.status == WorkOrderStatus.CANCELLED),
                "unique_customers": len({wo.customer_id for wo in orders}),
                "revenue": revenue,
                "formatted_revenue": f"${revenue:.2f}",
                "average_rating": mean(year_ratings),
                "review_count": len(year_ratings),
                "completion_rate": completion_rate(orders),
            }

        current = year_metrics(this_year.year)
        previous = year_metrics(last_year.year)

        changes = {
            "total_requests": percentage_change(current["total_requests"], previous["total_requests"]),
            "completed_requests": percentage_change(current["completed_requests"], previous["completed_requests"]),
            "unique_customers": percentage_change(current["unique_customers"], previous["unique_customers"]),
            "revenue": percentage_change(current["revenue"], previous["revenue"]),
            "average_rating": current["average_rating"] - previous["average_rating"],
            "completion_rate": current["completion_rate"] - previous["completion_rate"],
        }

        for metrics in (current, previous):
            for key in ("revenue", "average_rating", "completion_rate"):
                metrics[key] = display_round(metrics[key])

        return {
            "provider_id": provider_id,
            "current_year": current,
            "previous_year": previous,
            "changes": {key: display_round(value) for key, value in changes.items()},
            "trends": {
                "requests": trend_for(changes["total_requests"]),
                "revenue": trend_for(changes["revenue"]),
                "customers": trend_for(changes["unique_customers"]),
                "rating": trend_for(changes["average_rating"]),
            },
            "calculated_at": now.isoformat(),
        }

    async def seasonal_trends(self, provider_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        """All-time demand by calendar month, quarter and weekday."""
        work_orders, payments = await asyncio.gather(
            self.records.query_work_orders(provider_id),
            self.records.query_payments(provider_id, status_in=[PaymentStatus.COMPLETED.value]),
        )

        revenue_by_order: Dict[int, float] = defaultdict(float)
        for payment in payments:
            revenue_by_order[payment.work_order_id] += payment.amount

        months = [{"requests": 0, "completed": 0, "revenue": 0.0} for _ in range(12)]
        weekdays = [0] * 7
        for wo in work_orders:
            bucket = months[wo.created_at.month - 1]
            bucket["requests"] += 1
            if wo.status == WorkOrderStatus.COMPLETED:
                bucket["completed"] += 1
            bucket["revenue"] += revenue_by_order.get(wo.id, 0.0)
            weekdays[(wo.created_at.weekday() + 1) % 7] += 1

        total = len(work_orders)
        monthly = [
            {
                "month": index + 1,
                "month_name": MONTH_NAMES[index],
                "request_count": bucket["requests"],
                "completed_count": bucket["completed"],
                "revenue": display_round(bucket["revenue"]),
                "percentage": display_round(safe_rate(bucket["requests"], total)),
            }
            for index, bucket in enumerate(months)
        ]

        quarterly = []
        for index, name in enumerate(QUARTER_NAMES):
            members = months[index * 3:index * 3 + 3]
            requests = sum(m["requests"] for m in members)
            quarterly.append({
                "quarter": index + 1,
                "quarter_name": name,
                "request_count": requests,
                "completed_count": sum(m["completed"] for m in members),
                "revenue": display_round(sum(m["revenue"] for m in members)),
                "percentage": display_round(safe_rate(requests, total)),
            })

        by_weekday = [
            {
                "day_of_week": index + 1,
                "day_name": DAY_NAMES[index],
                "request_count": count,
                "percentage": display_round(safe_rate(count, total)),
            }
            for index, count in enumerate(weekdays)
        ]

        ranked_months = sorted(monthly, key=lambda m: m["request_count"], reverse=True)
        ranked_quarters = sorted(quarterly, key=lambda q: q["request_count"], reverse=True)
        monthly_counts = [m["request_count"] for m in monthly]

        return {
            "provider_id": provider_id,
            "monthly_distribution": monthly,
            "quarterly_distribution": quarterly,
            "day_of_week_distribution": by_weekday,
            "peak_seasons": {
                "months": [
                    {"month_name": m["month_name"], "request_count": m["request_count"]}
                    for m in ranked_months[:3] if m["request_count"] > 0
                ],
                "quarter": {
                    "quarter_name": ranked_quarters[0]["quarter_name"],
                    "request_count": ranked_quarters[0]["request_count"],
                },
            },
            "low_seasons": {
                "months": [
                    {"month_name": m["month_name"], "request_count": m["request_count"]}
                    for m in reversed(ranked_months[-3:])
                ],
                "quarter": {
                    "quarter_name": ranked_quarters[-1]["quarter_name"],
                    "request_count": ranked_quarters[-1]["request_count"],
                },
            },
            "patterns": seasonal_patterns(monthly_counts),
            "summary": {
                "total_requests": total,
                "average_monthly_requests": display_round(total / 12),
                "seasonal_variation": display_round(coefficient_of_variation(monthly_counts)),
            },
            "calculated_at": (now or utc_now()).isoformat(),
        }

    async def compare_with_benchmarks(self, provider_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Per-metric standing against the platform average, honoring direction."""
        averages, rankings = await asyncio.gather(
            self.platform_averages(now),
            self.percentile_rankings(provider_id, now),
        )

        comparisons = []
        for metric in RANKED_METRICS:
            ranking = rankings["rankings"][metric.key]
            average = averages["metrics"][metric.key]["value"]
            # Unranked metrics carry a placeholder zero, never a real value.
            if rankings["insufficient_data"] or ranking.get("insufficient_data"):
                comparisons.append({
                    "metric": metric.key,
                    "label": metric.label,
                    "value": None,
                    "platform_average": average,
                    "difference": None,
                    "percentile": None,
                    "status": "insufficient_data",
                    "unit": metric.unit,
                })
                continue
            value = ranking["value"]
            if value == average:
                standing = "at"
            elif (value < average) == metric.lower_is_better:
                standing = "above"
            else:
                standing = "below"
            comparisons.append({
                "metric": metric.key,
                "label": metric.label,
                "value": value,
                "platform_average": average,
                "difference": display_round(value - average),
                "percentile": ranking["percentile"],
                "status": standing,
                "unit": metric.unit,
            })

        above = [c["label"] for c in comparisons if c["status"] in ("above", "at")]
        below = [c["label"] for c in comparisons if c["status"] == "below"]
        if not above and not below:
            overall = "insufficient_data"
        elif len(above) >= len(below):
            overall = "above_average"
        else:
            overall = "below_average"

        log_with_context(
            logger,
            "info",
            "Benchmark comparison computed",
            provider_id=provider_id,
            above=len(above),
            below=len(below),
        )

        return {
            "provider_id": provider_id,
            "comparisons": comparisons,
            "summary": {
                "above_benchmark": above,
                "below_benchmark": below,
                "above_count": len(above),
                "below_count": len(below),
                "overall_performance": overall,
            },
            "total_providers": rankings["total_providers"],
            "insufficient_data": rankings["insufficient_data"],
            "calculated_at": (now or utc_now()).isoformat(),
        }


def get_benchmarking_service(records: RecordStore) -> BenchmarkingService:
    """Factory function to create BenchmarkingService."""
    return BenchmarkingService(records)
