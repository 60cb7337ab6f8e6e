"""
Tests for BenchmarkingService.
"""
from datetime import datetime, timezone

import pytest

from src.models.work_orders import WorkOrderStatus
from src.services.benchmarking_service import (
    ASSESSMENT_ALL_GOOD,
    ASSESSMENT_URGENT,
    BenchmarkingService,
    percentile,
    rank_label,
    round_half_up,
    seasonal_patterns,
)
from src.services.record_store import ProviderAggregate

from tests.conftest import NOW, InMemoryRecordStore, make_payment, make_work_order


def _aggregate(provider_id, total, completed, cancelled, revenue, rating_count, rating, response):
    return ProviderAggregate(
        provider_id=provider_id,
        total_work_orders=total,
        accepted_count=total,
        completed_count=completed,
        cancelled_count=cancelled,
        total_revenue=revenue,
        rating_count=rating_count,
        average_rating=rating,
        average_response_minutes=response,
    )


@pytest.fixture
def population():
    return [
        _aggregate(1, 10, 9, 1, 1000.0, 5, 4.5, 30.0),
        _aggregate(2, 10, 7, 2, 500.0, 4, 4.0, 60.0),
        # Too few ratings to count toward the rating metric
        _aggregate(3, 10, 5, 3, 300.0, 2, 2.0, 120.0),
        # Too few work orders to count at all
        _aggregate(4, 2, 2, 0, 50.0, 0, 0.0, 5.0),
    ]


@pytest.fixture
def service(population):
    return BenchmarkingService(InMemoryRecordStore(aggregates=population))


@pytest.mark.unit
def test_percentile_rounds_half_up():
    assert round_half_up(12.5) == 13
    assert round_half_up(66.4) == 66
    assert percentile(list(range(1, 9)), 1) == 13


@pytest.mark.unit
def test_percentile_direction():
    values = [30.0, 60.0, 120.0]
    assert percentile(values, 30.0, lower_is_better=True) == 100
    assert percentile(values, 120.0, lower_is_better=True) == 33
    assert percentile(values, 120.0) == 100
    assert percentile([], 10.0) == 0


@pytest.mark.unit
@pytest.mark.parametrize("value,label", [(95, "Top 10%"), (80, "Top 25%"), (50, "Above Average"), (30, "Below Average"), (10, "Bottom 25%")])
def test_rank_labels(value, label):
    assert rank_label(value) == label


@pytest.mark.unit
@pytest.mark.asyncio
async def test_platform_averages_apply_population_floors(service):
    result = await service.platform_averages(NOW)

    metrics = result["metrics"]
    assert result["sample_size"] == 3
    assert metrics["completion_rate"]["value"] == 70
    assert metrics["rating"]["value"] == 4.25
    assert metrics["response_time"]["value"] == 70
    assert metrics["average_revenue"]["value"] == 600
    assert metrics["cancellation_rate"]["value"] == 20
    assert result["provider_counts"]["rating"] == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_percentile_rankings_are_monotonic(service):
    ranks = [
        (await service.percentile_rankings(provider_id, NOW))["rankings"]["completion_rate"]["percentile"]
        for provider_id in (3, 2, 1)
    ]

    assert ranks == [33, 67, 100]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_percentile_rankings_top_provider(service):
    result = await service.percentile_rankings(1, NOW)

    rankings = result["rankings"]
    assert result["insufficient_data"] is False
    assert result["total_providers"] == 3
    assert rankings["completion_rate"]["rank"] == "Top 10%"
    assert rankings["response_time"]["percentile"] == 100
    assert rankings["response_time"]["note"] == "Lower is better"
    assert rankings["cancellation_rate"]["percentile"] == 100


@pytest.mark.unit
@pytest.mark.asyncio
async def test_percentile_rankings_below_rating_floor(service):
    result = await service.percentile_rankings(3, NOW)

    assert result["insufficient_data"] is False
    assert result["rankings"]["rating"]["rank"] == "N/A"
    assert result["rankings"]["rating"]["insufficient_data"] is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_percentile_rankings_insufficient_data(service):
    result = await service.percentile_rankings(4, NOW)

    assert result["insufficient_data"] is True
    assert result["message"] == "Insufficient data for ranking"
    assert all(r["rank"] == "N/A" and r["percentile"] == 0 for r in result["rankings"].values())


@pytest.mark.unit
@pytest.mark.asyncio
async def test_improvement_suggestions_for_weak_provider(service):
    result = await service.improvement_suggestions(3, NOW)

    suggestions = result["suggestions"]
    assert [s["metric"] for s in suggestions] == ["completion_rate", "rating", "cancellation_rate", "response_time"]
    assert [s["priority"] for s in suggestions] == ["high", "high", "high", "medium"]
    assert suggestions[0]["gap"] == 20
    assert result["summary"]["high_priority"] == 3
    assert result["summary"]["overall_assessment"] == ASSESSMENT_URGENT


@pytest.mark.unit
@pytest.mark.asyncio
async def test_improvement_suggestions_for_strong_provider(service):
    result = await service.improvement_suggestions(1, NOW)

    assert result["suggestions"] == []
    assert result["summary"]["strength_count"] == 4
    assert result["summary"]["overall_assessment"] == ASSESSMENT_ALL_GOOD


@pytest.mark.unit
@pytest.mark.asyncio
async def test_review_count_suggestion():
    aggregates = [_aggregate(1, 20, 18, 0, 900.0, 1, 5.0, 10.0)]
    result = await BenchmarkingService(InMemoryRecordStore(aggregates=aggregates)).improvement_suggestions(1, NOW)

    review = [s for s in result["suggestions"] if s["metric"] == "review_count"]
    assert len(review) == 1
    assert review[0]["target"] == 10
    assert review[0]["gap"] == 9


@pytest.mark.unit
@pytest.mark.asyncio
async def test_year_over_year_compares_calendar_years():
    last_year = datetime(2024, 3, 10, tzinfo=timezone.utc)
    this_year = datetime(2025, 2, 10, tzinfo=timezone.utc)
    orders = [
        make_work_order(created_at=last_year, customer_id=1),
        make_work_order(created_at=last_year, customer_id=2, status=WorkOrderStatus.CANCELLED.value),
        make_work_order(created_at=this_year, customer_id=1),
        make_work_order(created_at=this_year, customer_id=2),
        make_work_order(created_at=this_year, customer_id=3),
    ]
    payments = [make_payment(100, work_order_id=orders[0].id, payment_date=last_year)]
    payments += [make_payment(50, work_order_id=wo.id, payment_date=this_year) for wo in orders[2:]]
    store = InMemoryRecordStore(work_orders=orders, payments=payments)

    result = await BenchmarkingService(store).year_over_year(1, NOW)

    assert result["current_year"]["year"] == 2025
    assert result["current_year"]["total_requests"] == 3
    assert result["previous_year"]["revenue"] == 100
    assert result["changes"]["total_requests"] == 50
    assert result["changes"]["revenue"] == 50
    assert result["changes"]["completion_rate"] == 50
    assert result["trends"]["revenue"] == "up"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_seasonal_trends_detect_summer_peak():
    orders = [make_work_order(created_at=datetime(2024, 7, day, tzinfo=timezone.utc)) for day in (1, 2, 3)]
    orders.append(make_work_order(created_at=datetime(2024, 1, 5, tzinfo=timezone.utc)))
    store = InMemoryRecordStore(work_orders=orders)

    result = await BenchmarkingService(store).seasonal_trends(1, NOW)

    assert result["peak_seasons"]["months"][0] == {"month_name": "July", "request_count": 3}
    assert result["peak_seasons"]["quarter"]["quarter_name"] == "Q3 (Jul-Sep)"
    assert result["quarterly_distribution"][0]["request_count"] == 1
    assert [p["type"] for p in result["patterns"]] == ["summer_peak"]
    assert result["summary"]["total_requests"] == 4


@pytest.mark.unit
def test_flat_demand_is_stable():
    assert seasonal_patterns([5] * 12) == [
        {"type": "stable", "description": "Relatively stable demand throughout the year"}
    ]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_compare_with_benchmarks_honours_direction(service):
    result = await service.compare_with_benchmarks(1, NOW)

    assert all(c["status"] == "above" for c in result["comparisons"])
    assert result["summary"]["overall_performance"] == "above_average"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_compare_with_benchmarks_for_unranked_provider(service):
    result = await service.compare_with_benchmarks(4, NOW)

    assert result["insufficient_data"] is True
    assert {c["status"] for c in result["comparisons"]} == {"insufficient_data"}
    assert all(c["value"] is None and c["difference"] is None for c in result["comparisons"])
    assert result["summary"]["above_benchmark"] == []
    assert result["summary"]["below_benchmark"] == []
    assert result["summary"]["overall_performance"] == "insufficient_data"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_compare_with_benchmarks_skips_metric_below_its_floor(service):
    result = await service.compare_with_benchmarks(3, NOW)

    statuses = {c["metric"]: c["status"] for c in result["comparisons"]}
    assert statuses == {
        "completion_rate": "below",
        "response_time": "below",
        "rating": "insufficient_data",
        "cancellation_rate": "below",
    }
    assert "Customer Satisfaction" not in result["summary"]["below_benchmark"]
    assert result["summary"]["below_count"] == 3
    assert result["summary"]["overall_performance"] == "below_average"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_suggestions_use_unrounded_average():
    # Rating average is 4.001666..., which displays as 4.0
    aggregates = [
        _aggregate(1, 10, 10, 0, 500.0, 5, 4.0, 30.0),
        _aggregate(2, 10, 10, 0, 500.0, 5, 4.0, 30.0),
        _aggregate(3, 10, 10, 0, 500.0, 5, 4.005, 30.0),
    ]
    result = await BenchmarkingService(InMemoryRecordStore(aggregates=aggregates)).improvement_suggestions(1, NOW)

    rating = [s for s in result["suggestions"] if s["metric"] == "rating"]
    assert len(rating) == 1
    assert rating[0]["priority"] == "medium"
    assert result["platform_averages"]["rating"] == 4.0
