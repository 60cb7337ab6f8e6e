"""
SQLAlchemy models package.
Import all models here to ensure they're registered with Base.metadata.
"""
from src.models.work_orders import WorkOrder, WorkOrderStatus, PriorityLevel
from src.models.payments import Payment, PaymentStatus
from src.models.ratings import Rating
from src.models.messages import Message
from src.models.metric_snapshots import MetricSnapshot
from src.models.alert_thresholds import AlertThreshold, AlertMetricType, ComparisonOperator
from src.models.reports import ReportArtifact, ScheduledReport, ReportType, ReportFormat, ReportFrequency

__all__ = [
    "WorkOrder",
    "WorkOrderStatus",
    "PriorityLevel",
    "Payment",
    "PaymentStatus",
    "Rating",
    "Message",
    "MetricSnapshot",
    "AlertThreshold",
    "AlertMetricType",
    "ComparisonOperator",
    "ReportArtifact",
    "ScheduledReport",
    "ReportType",
    "ReportFormat",
    "ReportFrequency",
]
