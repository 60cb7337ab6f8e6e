"""
Tests for ReviewAnalytics and the metric snapshot cache.
"""
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.exc import OperationalError

from src.api.middleware.error_handler import DataUnavailableException
from src.lib.metrics import get_metrics_collector
from src.models.metric_snapshots import MetricSnapshot
from src.services.review_analytics import (
    ReviewAnalytics,
    average_from_distribution,
    validate_distribution,
)

from tests.conftest import NOW, InMemoryRecordStore, execute_result, make_rating


def _snapshot(computed_at=NOW - timedelta(minutes=10), is_stale=False):
    return MetricSnapshot(
        provider_id=1,
        average_rating=Decimal("4.2"),
        total_reviews=12,
        rating_distribution={"1": 0, "2": 1, "3": 1, "4": 4, "5": 6},
        review_counts={"last_30_days": 3, "last_6_months": 8, "all_time": 12},
        is_stale=is_stale,
        computed_at=computed_at,
    )


def _cache_count(result):
    return get_metrics_collector().get_counter_value("analytics_cache_lookups_total", {"result": result})


def _db_error():
    return OperationalError("INSERT INTO metric_snapshots", {}, Exception("connection lost"))


@pytest.mark.unit
@pytest.mark.asyncio
async def test_satisfaction_not_reported_below_minimum(mock_db_session):
    """Four reviews, all five stars, is still not enough."""
    store = InMemoryRecordStore(ratings=[make_rating(5) for _ in range(4)])

    result = await ReviewAnalytics(store, mock_db_session).get_satisfaction_rate(1)

    assert result["eligible"] is False
    assert result["satisfaction_percentage"] is None
    assert result["total_reviews"] == 4
    assert "10" in result["message"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_satisfaction_percentage_rounded(mock_db_session):
    ratings = [make_rating(5)] * 7 + [make_rating(2)] * 5
    store = InMemoryRecordStore(ratings=ratings)

    result = await ReviewAnalytics(store, mock_db_session).get_satisfaction_rate(1)

    assert result["eligible"] is True
    assert result["satisfaction_percentage"] == 58


@pytest.mark.unit
@pytest.mark.asyncio
async def test_average_rating_formatting(mock_db_session):
    analytics = ReviewAnalytics(InMemoryRecordStore(), mock_db_session)
    assert await analytics.get_average_rating(1) == "0.0"

    analytics = ReviewAnalytics(InMemoryRecordStore(ratings=[make_rating(5), make_rating(4), make_rating(4)]), mock_db_session)
    assert await analytics.get_average_rating(1) == "4.3"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_rating_trends_are_monthly_oldest_first(mock_db_session):
    store = InMemoryRecordStore(ratings=[
        make_rating(4, created_at=NOW - timedelta(days=40)),
        make_rating(5, created_at=NOW - timedelta(days=1)),
        make_rating(3, created_at=NOW - timedelta(days=2)),
        make_rating(1, created_at=NOW - timedelta(days=500)),
    ])

    trends = await ReviewAnalytics(store, mock_db_session).get_rating_trends(1, 12, NOW)

    assert [t["month"] for t in trends] == ["2025-05", "2025-06"]
    assert trends[1] == {"month": "2025-06", "average_rating": "4.0", "review_count": 2}


@pytest.mark.unit
def test_distribution_helpers():
    distribution = {1: 0, 2: 0, 3: 0, 4: 2, 5: 1}
    assert validate_distribution(distribution, 3)
    assert not validate_distribution(distribution, 4)
    assert average_from_distribution(distribution) == "4.7"
    assert average_from_distribution({1: 0, 2: 0, 3: 0, 4: 0, 5: 0}) == "0.0"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cached_metrics_hit(mock_db_session):
    mock_db_session.execute = AsyncMock(return_value=execute_result(scalar=_snapshot()))

    result = await ReviewAnalytics(InMemoryRecordStore(), mock_db_session).get_cached_metrics(1, now=NOW)

    assert result["from_cache"] is True
    assert result["stale"] is False
    assert result["average_rating"] == "4.2"
    assert result["rating_distribution"][5] == 6
    assert mock_db_session.execute.await_count == 1
    assert _cache_count("hit") == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cached_metrics_miss_recomputes_and_upserts(mock_db_session):
    store = InMemoryRecordStore(ratings=[make_rating(5, created_at=NOW - timedelta(days=2)), make_rating(3, created_at=NOW - timedelta(days=200))])

    result = await ReviewAnalytics(store, mock_db_session).get_cached_metrics(1, now=NOW)

    assert result["from_cache"] is False
    assert result["average_rating"] == "4.0"
    assert result["review_counts"] == {"last_30_days": 1, "last_6_months": 1, "all_time": 2}
    assert result["rating_distribution"] == {1: 0, 2: 0, 3: 1, 4: 0, 5: 1}
    # load + upsert
    assert mock_db_session.execute.await_count == 2
    mock_db_session.commit.assert_awaited_once()
    assert _cache_count("miss") == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_expired_or_invalidated_snapshot_is_recomputed(mock_db_session):
    for snapshot in (_snapshot(computed_at=NOW - timedelta(hours=2)), _snapshot(is_stale=True)):
        mock_db_session.execute = AsyncMock(side_effect=[execute_result(scalar=snapshot), execute_result()])

        result = await ReviewAnalytics(InMemoryRecordStore(), mock_db_session).get_cached_metrics(1, now=NOW)

        assert result["from_cache"] is False
        assert result["total_reviews"] == 0


@pytest.mark.unit
@pytest.mark.asyncio
async def test_force_refresh_skips_fresh_snapshot(mock_db_session):
    mock_db_session.execute = AsyncMock(side_effect=[execute_result(scalar=_snapshot()), execute_result()])

    result = await ReviewAnalytics(InMemoryRecordStore(), mock_db_session).get_cached_metrics(1, force_refresh=True, now=NOW)

    assert result["from_cache"] is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_refresh_failure_serves_last_known_good(mock_db_session):
    stale = _snapshot(computed_at=NOW - timedelta(days=2))
    mock_db_session.execute = AsyncMock(side_effect=[execute_result(scalar=stale), _db_error()])

    result = await ReviewAnalytics(InMemoryRecordStore(), mock_db_session).get_cached_metrics(1, now=NOW)

    assert result["stale"] is True
    assert result["from_cache"] is True
    assert result["total_reviews"] == 12
    mock_db_session.rollback.assert_awaited_once()
    assert _cache_count("stale_fallback") == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_refresh_failure_without_snapshot_raises(mock_db_session):
    mock_db_session.execute = AsyncMock(side_effect=[execute_result(), _db_error()])

    with pytest.raises(DataUnavailableException) as exc_info:
        await ReviewAnalytics(InMemoryRecordStore(), mock_db_session).get_cached_metrics(1, now=NOW)

    assert exc_info.value.status_code == 503


@pytest.mark.unit
@pytest.mark.asyncio
async def test_invalidate_reports_whether_a_row_was_flagged(mock_db_session):
    analytics = ReviewAnalytics(InMemoryRecordStore(), mock_db_session)

    mock_db_session.execute = AsyncMock(return_value=execute_result(rowcount=1))
    assert await analytics.invalidate(1) is True

    mock_db_session.execute = AsyncMock(return_value=execute_result(rowcount=0))
    assert await analytics.invalidate(1) is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_dashboard_analytics_combines_cache_and_live_sections(mock_db_session):
    mock_db_session.execute = AsyncMock(return_value=execute_result(scalar=_snapshot()))
    store = InMemoryRecordStore(ratings=[make_rating(5, created_at=NOW - timedelta(days=3))])

    result = await ReviewAnalytics(store, mock_db_session).get_dashboard_analytics(1, now=NOW)

    assert result["from_cache"] is True
    assert result["total_reviews"] == 12
    assert result["satisfaction"]["eligible"] is False
    assert result["trends"][0]["month"] == "2025-06"
