"""
Tests for CustomerAnalytics.
"""
from datetime import timedelta

import pytest

from src.models.work_orders import WorkOrderStatus
from src.services.customer_analytics import CustomerAnalytics

from tests.conftest import NOW, InMemoryRecordStore, make_payment, make_work_order


COMPLETED = WorkOrderStatus.COMPLETED.value


def _completed(customer_id, created_at, **kwargs):
    return make_work_order(customer_id=customer_id, status=COMPLETED, created_at=created_at, **kwargs)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_unique_customer_count_with_comparison():
    store = InMemoryRecordStore(work_orders=[
        _completed(1, NOW - timedelta(days=1)),
        _completed(1, NOW - timedelta(days=2)),
        _completed(2, NOW - timedelta(days=3)),
        _completed(3, NOW - timedelta(days=40)),
        make_work_order(customer_id=4, status=WorkOrderStatus.PENDING.value, created_at=NOW - timedelta(days=1)),
    ])

    result = await CustomerAnalytics(store).get_unique_customer_count(1, "30days", NOW)

    assert result["unique_customers"] == 2
    assert result["total_requests"] == 3
    assert result["average_requests_per_customer"] == 1.5
    assert result["previous_period"]["unique_customers"] == 1
    assert result["percentage_change"] == 100
    assert result["trend"] == "up"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retention_rate_is_all_time():
    store = InMemoryRecordStore(work_orders=[
        _completed(1, NOW - timedelta(days=400)),
        _completed(1, NOW - timedelta(days=390)),
        _completed(2, NOW - timedelta(days=5)),
        _completed(3, NOW - timedelta(days=5)),
        _completed(4, NOW - timedelta(days=5)),
    ])

    result = await CustomerAnalytics(store).get_retention_rate(1)

    assert result["total_customers"] == 4
    assert result["repeat_customers"] == 1
    assert result["one_time_customers"] == 3
    assert result["retention_rate"] == 25
    assert result["average_requests_per_repeat_customer"] == 2
    assert result["average_customer_tenure_days"] == 10.0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_retention_rate_empty_provider():
    result = await CustomerAnalytics(InMemoryRecordStore()).get_retention_rate(1)

    assert result["retention_rate"] == 0
    assert result["breakdown"]["one_time"]["percentage"] == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_geographic_distribution_groups_missing_keys_as_unknown():
    store = InMemoryRecordStore(work_orders=[
        _completed(1, NOW, location_key="1212"),
        _completed(2, NOW, location_key="1212"),
        _completed(3, NOW, location_key="1207"),
        _completed(4, NOW),
    ])

    result = await CustomerAnalytics(store).get_geographic_distribution(1)

    assert result["region_count"] == 3
    assert result["top_regions"][0]["location_key"] == "1212"
    assert result["top_regions"][0]["customer_percentage"] == 50
    assert "Unknown" in [r["location_key"] for r in result["regions"]]
    assert result["summary"]["concentration"] == 100


@pytest.mark.unit
@pytest.mark.asyncio
async def test_peak_service_times_buckets():
    morning = NOW.replace(hour=9)
    store = InMemoryRecordStore(work_orders=[
        _completed(1, morning),
        _completed(2, morning),
        _completed(3, NOW.replace(hour=23)),
    ])

    result = await CustomerAnalytics(store).get_peak_service_times(1)

    assert len(result["hourly_distribution"]) == 24
    assert len(result["daily_distribution"]) == 7
    assert result["hourly_distribution"][9]["label"] == "09:00"
    assert result["peak_hours"][0]["hour"] == 9
    assert len(result["peak_hours"]) == 2
    assert result["time_period_breakdown"]["morning"]["request_count"] == 2
    assert result["time_period_breakdown"]["night"]["request_count"] == 1
    assert result["summary"]["busiest_time_period"] == "morning"
    # 2025-06-15 is a Sunday, the first day of the week
    assert result["daily_distribution"][0]["day_name"] == "Sunday"
    assert result["daily_distribution"][0]["request_count"] == 3


@pytest.mark.unit
@pytest.mark.asyncio
async def test_acquisition_trends_new_vs_returning_by_day():
    store = InMemoryRecordStore(work_orders=[
        _completed(1, NOW - timedelta(days=60)),
        _completed(1, NOW - timedelta(days=2)),
        _completed(2, NOW - timedelta(days=2)),
    ])

    result = await CustomerAnalytics(store).get_acquisition_trends(1, "30days", NOW)

    assert len(result["data_points"]) == 1
    point = result["data_points"][0]
    assert point["new_customers"] == 1
    assert point["returning_customers"] == 1
    assert point["total"] == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_acquisition_trends_same_month_counts_as_new_for_long_periods():
    first = NOW.replace(day=2)
    store = InMemoryRecordStore(work_orders=[
        _completed(1, first),
        _completed(1, first + timedelta(days=5)),
    ])

    result = await CustomerAnalytics(store).get_acquisition_trends(1, "6months", NOW)

    assert result["summary"]["total_new_customers"] == 1
    assert result["summary"]["total_returning_customers"] == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_customer_lifetime_value_segments_and_ranges():
    orders = [_completed(cid, NOW - timedelta(days=1)) for cid in (1, 2, 3, 4)]
    amounts = [400, 100, 100, 0]
    payments = [
        make_payment(amount, customer_id=wo.customer_id, work_order_id=wo.id)
        for wo, amount in zip(orders, amounts)
        if amount
    ]
    store = InMemoryRecordStore(work_orders=orders, payments=payments)

    result = await CustomerAnalytics(store).get_customer_lifetime_value(1)

    assert result["total_customers"] == 4
    assert result["average_clv"] == 150
    assert result["segments"]["high"]["count"] == 1
    assert result["segments"]["low"]["count"] == 1
    assert result["segments"]["medium"]["count"] == 2
    assert result["top_customers"][0]["customer_id"] == 1
    assert len(result["revenue_ranges"]) == 5
    # The maximum lands in the last bucket
    assert result["revenue_ranges"][-1]["count"] == 1
    assert sum(r["count"] for r in result["revenue_ranges"]) == 4


@pytest.mark.unit
@pytest.mark.asyncio
async def test_customer_lifetime_value_empty_provider():
    result = await CustomerAnalytics(InMemoryRecordStore()).get_customer_lifetime_value(1)

    assert result["total_customers"] == 0
    assert result["revenue_ranges"] == []
