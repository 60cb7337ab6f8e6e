"""
Tests for RevenueAnalytics.
"""
from datetime import timedelta

import pytest

from src.api.middleware.error_handler import InvalidPeriodException, ValidationException
from src.models.payments import PaymentStatus
from src.services.period_resolver import add_months
from src.services.revenue_analytics import RevenueAnalytics, build_trend_series

from tests.conftest import NOW, InMemoryRecordStore, make_payment


@pytest.mark.unit
@pytest.mark.asyncio
async def test_total_earnings_drop_to_zero_is_minus_100():
    """No earnings this window and $500 the window before."""
    store = InMemoryRecordStore(payments=[make_payment(500, payment_date=NOW - timedelta(days=45))])

    result = await RevenueAnalytics(store).get_total_earnings(1, "30days", NOW)

    assert result["current_period"]["total_earnings"] == 0
    assert result["previous_period"]["total_earnings"] == 500
    assert result["percentage_change"] == -100.00
    assert result["trend"] == "down"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_total_earnings_ignores_non_completed_payments():
    store = InMemoryRecordStore(payments=[
        make_payment(100, payment_date=NOW - timedelta(days=1)),
        make_payment(40, status=PaymentStatus.PENDING.value, payment_date=NOW - timedelta(days=1)),
    ])

    result = await RevenueAnalytics(store).get_total_earnings(1, "7days", NOW)

    assert result["current_period"]["total_earnings"] == 100
    assert result["current_period"]["formatted_earnings"] == "100.00"
    assert result["percentage_change"] == 100
    assert result["trend"] == "up"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_total_earnings_all_has_no_comparison():
    store = InMemoryRecordStore(payments=[make_payment(80, payment_date=NOW - timedelta(days=900))])

    result = await RevenueAnalytics(store).get_total_earnings(1, "all", NOW)

    assert result["current_period"]["total_earnings"] == 80
    assert result["previous_period"] is None
    assert result["percentage_change"] is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_total_earnings_invalid_period():
    with pytest.raises(InvalidPeriodException):
        await RevenueAnalytics(InMemoryRecordStore()).get_total_earnings(1, "2weeks", NOW)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_earnings_by_category_sorted_with_shares():
    day = NOW - timedelta(days=2)
    store = InMemoryRecordStore(payments=[
        make_payment(300, category="Electrical", payment_date=day),
        make_payment(100, category="Plumbing", payment_date=day),
        make_payment(100, category="Electrical", payment_date=day),
    ])

    result = await RevenueAnalytics(store).get_earnings_by_category(1, "30days", NOW)

    assert result["total_earnings"] == 500
    assert [c["category"] for c in result["categories"]] == ["Electrical", "Plumbing"]
    assert result["categories"][0]["percentage"] == 80
    assert result["categories"][0]["service_count"] == 2
    assert result["categories"][1]["percentage"] == 20


@pytest.mark.unit
def test_trend_series_change_against_previous_bucket():
    payments = [
        make_payment(100, payment_date=NOW - timedelta(days=2)),
        make_payment(150, payment_date=NOW - timedelta(days=1)),
    ]

    series = build_trend_series(payments, "daily")

    assert [p["earnings"] for p in series] == [100, 150]
    assert series[0]["percentage_change"] is None
    assert series[1]["percentage_change"] == 50


@pytest.mark.unit
@pytest.mark.asyncio
async def test_payment_status_breakdown():
    store = InMemoryRecordStore(payments=[
        make_payment(300),
        make_payment(100, status=PaymentStatus.PENDING.value),
        make_payment(100, status=PaymentStatus.REFUNDED.value),
    ])

    result = await RevenueAnalytics(store).get_payment_status(1)

    assert result["grand_total"] == 500
    assert result["statuses"]["completed"] == {"amount": 300, "count": 1, "percentage": 60}
    assert result["statuses"]["failed"]["count"] == 0
    assert result["total_payments"] == 3


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize("months", [0, 25])
async def test_monthly_comparison_rejects_month_count(months):
    with pytest.raises(ValidationException):
        await RevenueAnalytics(InMemoryRecordStore()).get_monthly_comparison(1, months, NOW)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_monthly_comparison_year_over_year():
    # 12 monthly buckets: first six earn 100 each, last six 150 each
    payments = [
        make_payment(100 if offset > 6 else 150, payment_date=add_months(NOW, -offset))
        for offset in range(1, 13)
    ]
    store = InMemoryRecordStore(payments=payments)

    result = await RevenueAnalytics(store).get_monthly_comparison(1, 12, NOW)

    assert result["summary"]["month_count"] == 12
    assert result["monthly_data"][0]["month_over_month_change"] is None
    assert result["summary"]["year_over_year_change"] == 50
    assert result["summary"]["highest_month"]["earnings"] == 150


@pytest.mark.unit
@pytest.mark.asyncio
async def test_monthly_comparison_short_history_has_no_year_over_year():
    store = InMemoryRecordStore(payments=[make_payment(100, payment_date=NOW - timedelta(days=3))])

    result = await RevenueAnalytics(store).get_monthly_comparison(1, 12, NOW)

    assert result["summary"]["year_over_year_change"] is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_revenue_bundle_for_empty_provider():
    result = await RevenueAnalytics(InMemoryRecordStore()).get_revenue_analytics(1, "30days", NOW)

    assert result["total_earnings"]["current_period"]["total_earnings"] == 0
    assert result["total_earnings"]["percentage_change"] == 0
    assert result["earnings_by_category"]["categories"] == []
    assert result["revenue_trends"]["data_points"] == []
    assert result["payment_status"]["grand_total"] == 0
