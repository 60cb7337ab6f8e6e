"""
AnalyticsDashboardService - fan-out entry points for the provider dashboard.

Each section is an independent calculator call run concurrently. A
failed section does not fail the request: it comes back as null, is
listed under `errors`, and the response carries `partial: true`. Only
when every section fails is the first failure raised.
"""
import asyncio
from datetime import datetime
from typing import Any, Awaitable, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from src.api.middleware.error_handler import AppException, ComputationDegradedException
from src.lib.logging import get_logger, log_with_context
from src.lib.metrics import get_metrics_collector
from src.services.alerting_service import AlertingService
from src.services.benchmarking_service import BenchmarkingService
from src.services.customer_analytics import CustomerAnalytics
from src.services.performance_analytics import PerformanceAnalytics
from src.services.period_resolver import DEFAULT_PERIOD, resolve_period, utc_now
from src.services.realtime_analytics import RealTimeAnalytics, validate_activity_limit
from src.services.record_store import RecordStore
from src.services.revenue_analytics import RevenueAnalytics


logger = get_logger(__name__)


class AnalyticsDashboardService:
    """Composes calculator bundles into dashboard responses."""

    def __init__(self, records: RecordStore, db: AsyncSession):
        self.records = records
        self.db = db
        self.metrics = get_metrics_collector()
        self.revenue = RevenueAnalytics(records)
        self.performance = PerformanceAnalytics(records)
        self.customers = CustomerAnalytics(records)
        self.realtime = RealTimeAnalytics(records)
        self.benchmarking = BenchmarkingService(records)
        self.alerting = AlertingService(records, db)
        logger.info("AnalyticsDashboardService initialized")

    async def _fan_out(
        self,
        provider_id: int,
        sections: List[Tuple[str, Awaitable[Dict[str, Any]]]],
        now: datetime,
    ) -> Dict[str, Any]:
        names = [name for name, _ in sections]
        results = await asyncio.gather(*(call for _, call in sections), return_exceptions=True)

        response: Dict[str, Any] = {}
        failures: List[Tuple[str, BaseException]] = []
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failures.append((name, result))
                response[name] = None
                self.metrics.increment_calculator_failures(name)
                logger.error(
                    f"Dashboard section {name} failed for provider {provider_id}",
                    exc_info=(type(result), result, result.__traceback__),
                )
            else:
                response[name] = result

        if failures and len(failures) == len(sections):
            raise failures[0][1]

        if failures:
            degraded = ComputationDegradedException([name for name, _ in failures])
            log_with_context(
                logger,
                "warning",
                degraded.message,
                provider_id=provider_id,
                failed_sections=degraded.details["failed_sections"],
            )
            response["partial"] = True
            response["errors"] = [
                {"section": name, "error": error.message if isinstance(error, AppException) else str(error)}
                for name, error in failures
            ]
        else:
            response["partial"] = False
            response["errors"] = []

        response["generated_at"] = now.isoformat()
        return response

    async def get_dashboard(
        self,
        provider_id: int,
        period: str = DEFAULT_PERIOD,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Revenue, performance, customer and today's bundles for one period.

        Raises:
            InvalidPeriodException: Unknown period (checked before fan-out)
        """
        now = now or utc_now()
        resolve_period(period, now)

        response = await self._fan_out(
            provider_id,
            [
                ("revenue", self.revenue.get_revenue_analytics(provider_id, period, now)),
                ("performance", self.performance.get_performance_analytics(provider_id, period, now)),
                ("customers", self.customers.get_customer_analytics(provider_id, period, now)),
                ("real_time", self.realtime.get_today_metrics(provider_id, now)),
            ],
            now,
        )
        response["period"] = period
        return response

    async def get_benchmarks(self, provider_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        now = now or utc_now()
        return await self._fan_out(
            provider_id,
            [
                ("platform_averages", self.benchmarking.platform_averages(now)),
                ("percentile_rankings", self.benchmarking.percentile_rankings(provider_id, now)),
                ("improvement_suggestions", self.benchmarking.improvement_suggestions(provider_id, now)),
                ("year_over_year", self.benchmarking.year_over_year(provider_id, now)),
                ("seasonal_trends", self.benchmarking.seasonal_trends(provider_id, now)),
            ],
            now,
        )

    async def get_real_time(
        self,
        provider_id: int,
        activity_limit: int = 20,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        now = now or utc_now()
        validate_activity_limit(activity_limit)
        return await self._fan_out(
            provider_id,
            [
                ("today_metrics", self.realtime.get_today_metrics(provider_id, now)),
                ("queue_status", self.realtime.get_queue_status(provider_id, now)),
                ("alerts", self.alerting.check_thresholds(provider_id, now)),
                ("recent_activity", self.realtime.get_recent_activity(provider_id, activity_limit, now)),
            ],
            now,
        )


def get_dashboard_service(records: RecordStore, db: AsyncSession) -> AnalyticsDashboardService:
    """Factory function to create AnalyticsDashboardService."""
    return AnalyticsDashboardService(records, db)
