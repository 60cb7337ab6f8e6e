"""
AlertingService - provider-configured performance threshold alerts.

Evaluates each active AlertThreshold against the provider's live value:
- completion_rate, cancellation_rate: last 30 days
- response_time: last 30 days, Accepted/InProgress/Completed work orders
- rating: all time
- earnings, request_count: today (UTC)

Triggered rules get last_triggered_at stamped in one batch update; rules
that do not trigger are never written.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from src.lib.analytics_config import get_alert_severity_config
from src.lib.logging import get_logger, log_with_context
from src.lib.metrics import get_metrics_collector
from src.models.alert_thresholds import AlertMetricType, AlertThreshold, ComparisonOperator
from src.models.payments import PaymentStatus
from src.models.work_orders import WorkOrderStatus
from src.services.performance_analytics import cancellation_rate, completion_rate, response_times
from src.services.period_resolver import display_round, mean, start_of_day, utc_now
from src.services.record_store import RecordStore


logger = get_logger(__name__)

RATE_WINDOW_DAYS = 30

RESPONSE_STATUSES = (
    WorkOrderStatus.ACCEPTED.value,
    WorkOrderStatus.IN_PROGRESS.value,
    WorkOrderStatus.COMPLETED.value,
)

NO_ALERTS_MESSAGE = "No performance alerts configured"


class AlertSeverity:
    """Alert severity levels."""
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


SEVERITY_ORDER = {AlertSeverity.CRITICAL: 0, AlertSeverity.WARNING: 1, AlertSeverity.INFO: 2}

METRIC_NAMES = {
    AlertMetricType.COMPLETION_RATE: "Completion rate",
    AlertMetricType.RESPONSE_TIME: "Response time",
    AlertMetricType.CANCELLATION_RATE: "Cancellation rate",
    AlertMetricType.RATING: "Average rating",
    AlertMetricType.EARNINGS: "Today's earnings",
    AlertMetricType.REQUEST_COUNT: "Today's requests",
}

OPERATOR_TEXT = {
    ComparisonOperator.ABOVE: "exceeded",
    ComparisonOperator.BELOW: "fallen below",
    ComparisonOperator.EQUALS: "reached",
}

# A drop is the bad direction for these...
LOWER_IS_WORSE = {
    AlertMetricType.COMPLETION_RATE,
    AlertMetricType.RATING,
    AlertMetricType.EARNINGS,
    AlertMetricType.REQUEST_COUNT,
}
# ...and a rise for these
HIGHER_IS_WORSE = {AlertMetricType.RESPONSE_TIME, AlertMetricType.CANCELLATION_RATE}


def format_metric_value(metric_type: AlertMetricType, value: float) -> str:
    if metric_type == AlertMetricType.RESPONSE_TIME:
        return f"{value:.0f} minutes"
    if metric_type == AlertMetricType.EARNINGS:
        return f"${value:.2f}"
    if metric_type in (AlertMetricType.COMPLETION_RATE, AlertMetricType.CANCELLATION_RATE):
        return f"{value:.1f}%"
    if metric_type == AlertMetricType.REQUEST_COUNT:
        return f"{round(value)}"
    return f"{value:.2f}"


def alert_message(
    metric_type: AlertMetricType,
    operator: ComparisonOperator,
    threshold: float,
    current: float,
) -> str:
    return (
        f"{METRIC_NAMES[metric_type]} has {OPERATOR_TEXT[operator]} "
        f"{format_metric_value(metric_type, threshold)} "
        f"(current: {format_metric_value(metric_type, current)})"
    )


def alert_severity(
    metric_type: AlertMetricType,
    operator: ComparisonOperator,
    threshold: float,
    current: float,
) -> str:
    """
    Severity from how far the current value sits from the threshold, in
    percent of the threshold (absolute units when the threshold is 0).
    Only a crossing in the metric's bad direction can be above info.
    """
    config = get_alert_severity_config()
    deviation = abs(current - threshold)
    percent = deviation / threshold * 100 if threshold > 0 else deviation

    if metric_type in LOWER_IS_WORSE and operator == ComparisonOperator.BELOW:
        if percent > config.lower_is_worse_critical:
            return AlertSeverity.CRITICAL
        if percent > config.lower_is_worse_warning:
            return AlertSeverity.WARNING
        return AlertSeverity.INFO

    if metric_type in HIGHER_IS_WORSE and operator == ComparisonOperator.ABOVE:
        if percent > config.higher_is_worse_critical:
            return AlertSeverity.CRITICAL
        if percent > config.higher_is_worse_warning:
            return AlertSeverity.WARNING
        return AlertSeverity.INFO

    return AlertSeverity.INFO


def is_triggered(operator: ComparisonOperator, threshold: float, current: float) -> bool:
    if operator == ComparisonOperator.ABOVE:
        return current > threshold
    if operator == ComparisonOperator.BELOW:
        return current < threshold
    return abs(current - threshold) < get_alert_severity_config().equals_tolerance


class AlertingService:
    """
    Service evaluating a provider's alert thresholds against live metrics.
    """

    def __init__(self, records: RecordStore, db: AsyncSession):
        """
        Initialize AlertingService.

        Args:
            records: Collaborator record store
            db: Session for the alert_thresholds table
        """
        self.records = records
        self.db = db
        self.metrics = get_metrics_collector()
        logger.info("AlertingService initialized")

    async def _active_thresholds(self, provider_id: int) -> List[AlertThreshold]:
        stmt = select(AlertThreshold).where(
            AlertThreshold.provider_id == provider_id,
            AlertThreshold.is_active == True,  # noqa: E712
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def current_metrics(self, provider_id: int, now: Optional[datetime] = None) -> Dict[AlertMetricType, float]:
        """Live value of every metric a threshold can watch."""
        now = now or utc_now()
        window_start = now - timedelta(days=RATE_WINDOW_DAYS)
        today = start_of_day(now)

        recent, ratings, today_payments, today_orders = await asyncio.gather(
            self.records.query_work_orders(provider_id, date_from=window_start),
            self.records.query_ratings(provider_id),
            self.records.query_payments(
                provider_id,
                status_in=[PaymentStatus.COMPLETED.value],
                date_from=today,
            ),
            self.records.query_work_orders(provider_id, date_from=today),
        )

        return {
            AlertMetricType.COMPLETION_RATE: completion_rate(recent),
            AlertMetricType.RESPONSE_TIME: mean(response_times(recent, RESPONSE_STATUSES)),
            AlertMetricType.CANCELLATION_RATE: cancellation_rate(recent),
            AlertMetricType.RATING: mean(r.value for r in ratings),
            AlertMetricType.EARNINGS: sum(p.amount for p in today_payments),
            AlertMetricType.REQUEST_COUNT: float(len(today_orders)),
        }

    async def check_thresholds(self, provider_id: int, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Evaluate all active thresholds for a provider.

        Returns:
            Dict with has_alerts, alerts (critical first), checked_count,
            triggered_count and the current metric values
        """
        now = now or utc_now()
        thresholds = await self._active_thresholds(provider_id)

        if not thresholds:
            return {
                "has_alerts": False,
                "alerts": [],
                "checked_count": 0,
                "triggered_count": 0,
                "metrics": {},
                "message": NO_ALERTS_MESSAGE,
                "generated_at": now.isoformat(),
            }

        current = await self.current_metrics(provider_id, now)

        alerts = []
        triggered_ids = []
        for rule in thresholds:
            metric_type = AlertMetricType(rule.metric_type)
            operator = ComparisonOperator(rule.comparison_operator)
            threshold = float(rule.threshold_value)
            value = current[metric_type]

            if not is_triggered(operator, threshold, value):
                continue

            severity = alert_severity(metric_type, operator, threshold, value)
            alerts.append({
                "threshold_id": rule.id,
                "metric_type": metric_type.value,
                "comparison_operator": operator.value,
                "threshold_value": threshold,
                "current_value": display_round(value),
                "message": alert_message(metric_type, operator, threshold, value),
                "severity": severity,
                "last_triggered_at": rule.last_triggered_at.isoformat() if rule.last_triggered_at else None,
            })
            triggered_ids.append(rule.id)
            self.metrics.increment_alerts_triggered(metric_type.value, severity)

        if triggered_ids:
            await self.db.execute(
                update(AlertThreshold)
                .where(AlertThreshold.id.in_(triggered_ids))
                .values(last_triggered_at=now)
            )
            await self.db.commit()

        alerts.sort(key=lambda a: SEVERITY_ORDER[a["severity"]])

        log_with_context(
            logger,
            "info",
            "Alert thresholds checked",
            provider_id=provider_id,
            checked=len(thresholds),
            triggered=len(alerts),
        )

        return {
            "has_alerts": bool(alerts),
            "alerts": alerts,
            "checked_count": len(thresholds),
            "triggered_count": len(alerts),
            "metrics": {
                "completion_rate": display_round(current[AlertMetricType.COMPLETION_RATE]),
                "response_time_minutes": display_round(current[AlertMetricType.RESPONSE_TIME]),
                "cancellation_rate": display_round(current[AlertMetricType.CANCELLATION_RATE]),
                "average_rating": display_round(current[AlertMetricType.RATING]),
                "today_earnings": display_round(current[AlertMetricType.EARNINGS]),
                "today_requests": int(current[AlertMetricType.REQUEST_COUNT]),
            },
            "generated_at": now.isoformat(),
        }


def get_alerting_service(records: RecordStore, db: AsyncSession) -> AlertingService:
    """Factory function to create AlertingService."""
    return AlertingService(records, db)
