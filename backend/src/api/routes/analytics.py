"""
Provider Analytics API - dashboard and calculator endpoints.

Routes (all under /providers/{provider_id}/analytics):
- GET  /dashboard            - revenue, performance, customers and today
- GET  /revenue              - revenue bundle
- GET  /performance          - performance bundle
- GET  /customers            - customer bundle
- GET  /reviews              - cached review metrics
- POST /reviews/invalidate   - mark cached review metrics stale
- GET  /benchmarks           - platform comparison
- GET  /realtime             - today, queue, alerts and recent activity
- GET  /alerts               - threshold alert check
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db, get_record_store, require_provider_access
from src.lib.logging import get_logger
from src.services.alerting_service import AlertingService, get_alerting_service
from src.services.customer_analytics import get_customer_analytics
from src.services.dashboard_service import AnalyticsDashboardService, get_dashboard_service
from src.services.performance_analytics import get_performance_analytics
from src.services.period_resolver import DEFAULT_PERIOD
from src.services.record_store import RecordStore
from src.services.revenue_analytics import get_revenue_analytics
from src.services.review_analytics import ReviewAnalytics, get_review_analytics


logger = get_logger(__name__)
router = APIRouter(prefix="/providers/{provider_id}/analytics", tags=["analytics"])


class InvalidateResponse(BaseModel):
    provider_id: int = Field(..., description="Provider id")
    invalidated: bool = Field(..., description="False when no snapshot existed")


# Service dependencies
def dashboard_service(
    records: RecordStore = Depends(get_record_store),
    db: AsyncSession = Depends(get_db),
) -> AnalyticsDashboardService:
    return get_dashboard_service(records, db)


def review_service(
    records: RecordStore = Depends(get_record_store),
    db: AsyncSession = Depends(get_db),
) -> ReviewAnalytics:
    return get_review_analytics(records, db)


def alerting_service(
    records: RecordStore = Depends(get_record_store),
    db: AsyncSession = Depends(get_db),
) -> AlertingService:
    return get_alerting_service(records, db)


# Routes
@router.get("/dashboard")
async def get_dashboard(
    period: str = Query(DEFAULT_PERIOD, description="7days, 30days, 6months, 1year or all"),
    provider_id: int = Depends(require_provider_access),
    service: AnalyticsDashboardService = Depends(dashboard_service),
) -> Dict[str, Any]:
    """
    Full dashboard for one period.

    Sections that fail come back as null with `partial: true` and an
    `errors` entry each.
    """
    logger.info(f"GET dashboard (provider={provider_id}, period={period})")
    return await service.get_dashboard(provider_id, period)


@router.get("/revenue")
async def get_revenue(
    period: str = Query(DEFAULT_PERIOD),
    provider_id: int = Depends(require_provider_access),
    records: RecordStore = Depends(get_record_store),
) -> Dict[str, Any]:
    return await get_revenue_analytics(records).get_revenue_analytics(provider_id, period)


@router.get("/performance")
async def get_performance(
    period: str = Query(DEFAULT_PERIOD),
    provider_id: int = Depends(require_provider_access),
    records: RecordStore = Depends(get_record_store),
) -> Dict[str, Any]:
    return await get_performance_analytics(records).get_performance_analytics(provider_id, period)


@router.get("/customers")
async def get_customers(
    period: str = Query(DEFAULT_PERIOD),
    provider_id: int = Depends(require_provider_access),
    records: RecordStore = Depends(get_record_store),
) -> Dict[str, Any]:
    return await get_customer_analytics(records).get_customer_analytics(provider_id, period)


@router.get("/reviews")
async def get_reviews(
    force_refresh: bool = Query(False, description="Recompute even when the snapshot is fresh"),
    provider_id: int = Depends(require_provider_access),
    service: ReviewAnalytics = Depends(review_service),
) -> Dict[str, Any]:
    """Review dashboard served from the metrics cache."""
    return await service.get_dashboard_analytics(provider_id, force_refresh)


@router.post("/reviews/invalidate", response_model=InvalidateResponse)
async def invalidate_reviews(
    provider_id: int = Depends(require_provider_access),
    service: ReviewAnalytics = Depends(review_service),
) -> InvalidateResponse:
    invalidated = await service.invalidate(provider_id)
    return InvalidateResponse(provider_id=provider_id, invalidated=invalidated)


@router.get("/benchmarks")
async def get_benchmarks(
    provider_id: int = Depends(require_provider_access),
    service: AnalyticsDashboardService = Depends(dashboard_service),
) -> Dict[str, Any]:
    return await service.get_benchmarks(provider_id)


@router.get("/realtime")
async def get_real_time(
    activity_limit: int = Query(20, ge=1, le=100, description="Recent activity items to return"),
    provider_id: int = Depends(require_provider_access),
    service: AnalyticsDashboardService = Depends(dashboard_service),
) -> Dict[str, Any]:
    return await service.get_real_time(provider_id, activity_limit)


@router.get("/alerts")
async def get_alerts(
    provider_id: int = Depends(require_provider_access),
    service: AlertingService = Depends(alerting_service),
) -> Dict[str, Any]:
    """Evaluate the provider's active alert thresholds."""
    result = await service.check_thresholds(provider_id)
    logger.info(f"Provider {provider_id}: {result['triggered_count']} alerts triggered")
    return result
