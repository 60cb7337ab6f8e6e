"""
Prometheus-compatible counters for the analytics engine.

Tracks:
- Metrics cache lookups (hit, miss, stale fallback)
- Calculator failures during dashboard fan-out
- Threshold alerts fired (by metric and severity)
- Report generation and export outcomes

Usage:
    from src.lib.metrics import get_metrics_collector

    metrics = get_metrics_collector()
    metrics.increment_cache_lookup("hit")
    metrics.increment_alerts_triggered("completion_rate", "critical")

    prometheus_output = metrics.export_prometheus()
"""

from typing import Dict, Tuple
from threading import Lock


HELP_TEXTS = {
    "analytics_cache_lookups_total": "Review metrics cache lookups by result",
    "analytics_calculator_failures_total": "Calculator sections that failed during fan-out",
    "analytics_alerts_triggered_total": "Threshold alerts triggered",
    "analytics_reports_total": "Report generation and export outcomes",
}


class MetricsCollector:
    """
    Prometheus-style counter registry.

    Thread-safe for concurrent increments; APScheduler jobs and request
    handlers share the same instance.
    """

    def __init__(self):
        self._lock = Lock()

        # key = (metric_name, sorted labels), value = count
        self._counters: Dict[Tuple[str, Tuple[Tuple[str, str], ...]], int] = {}

    def _get_counter_key(self, metric_name: str, labels: Dict[str, str]) -> Tuple[str, Tuple[Tuple[str, str], ...]]:
        return (metric_name, tuple(sorted(labels.items())))

    def _increment(self, metric_name: str, labels: Dict[str, str], amount: int = 1):
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            self._counters[key] = self._counters.get(key, 0) + amount

    # ===== Cache =====

    def increment_cache_lookup(self, result: str, amount: int = 1):
        """
        Count a cached-metrics read.

        Args:
            result: hit, miss or stale_fallback
        """
        self._increment("analytics_cache_lookups_total", {"result": result.lower()}, amount)

    # ===== Calculators =====

    def increment_calculator_failures(self, calculator: str, amount: int = 1):
        """Count a section that failed while others succeeded."""
        self._increment("analytics_calculator_failures_total", {"calculator": calculator.lower()}, amount)

    # ===== Alerts =====

    def increment_alerts_triggered(self, metric_type: str, severity: str, amount: int = 1):
        labels = {
            "metric_type": metric_type.lower(),
            "severity": severity.lower(),
        }
        self._increment("analytics_alerts_triggered_total", labels, amount)

    # ===== Reports =====

    def increment_reports(self, report_type: str, format: str, status: str, amount: int = 1):
        """
        Count a report outcome.

        Args:
            report_type: revenue, performance, customer, comprehensive, custom
            format: csv, xlsx, pdf
            status: generated, exported or failed
        """
        labels = {
            "report_type": report_type.lower(),
            "format": format.lower(),
            "status": status.lower(),
        }
        self._increment("analytics_reports_total", labels, amount)

    # ===== Export =====

    def export_prometheus(self) -> str:
        """Export all counters in Prometheus text format."""
        output_lines = []

        metrics_by_name: Dict[str, list] = {}
        with self._lock:
            for (metric_name, labels_tuple), value in self._counters.items():
                metrics_by_name.setdefault(metric_name, []).append((dict(labels_tuple), value))

        for metric_name in sorted(metrics_by_name.keys()):
            output_lines.append(f"# HELP {metric_name} {HELP_TEXTS.get(metric_name, 'Counter metric')}")
            output_lines.append(f"# TYPE {metric_name} counter")

            for labels_dict, value in sorted(metrics_by_name[metric_name], key=lambda x: str(x[0])):
                labels_str = ",".join([f'{k}="{v}"' for k, v in sorted(labels_dict.items())])
                output_lines.append(f"{metric_name}{{{labels_str}}} {value}")

            output_lines.append("")

        return "\n".join(output_lines)

    def get_counter_value(self, metric_name: str, labels: Dict[str, str]) -> int:
        """Current value of one counter (0 when never incremented)."""
        key = self._get_counter_key(metric_name, labels)
        with self._lock:
            return self._counters.get(key, 0)

    def reset_all(self):
        """Reset all counters (for testing)."""
        with self._lock:
            self._counters.clear()


# Global singleton instance
_metrics_collector: MetricsCollector | None = None
_metrics_lock = Lock()


def get_metrics_collector() -> MetricsCollector:
    """Get global metrics collector singleton."""
    global _metrics_collector
    if _metrics_collector is None:
        with _metrics_lock:
            if _metrics_collector is None:
                _metrics_collector = MetricsCollector()
    return _metrics_collector


def reset_metrics():
    """Reset global metrics collector (for testing)."""
    with _metrics_lock:
        if _metrics_collector is not None:
            _metrics_collector.reset_all()
