"""
Report rendering and file output.

Three renderings of the same analytics bundle:
- csv: header block, then one labeled section per metric group, each
  starting with its own column header row
- xlsx: the same rows tab-separated under a sheet title line
- pdf: section-labeled narrative text with underlined headings
"""
import csv
import io
import os
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from src.lib.logging import get_logger


logger = get_logger(__name__)

Section = Tuple[str, List[List[Any]]]


def report_filename(provider_id: int, fmt: str, moment: datetime) -> str:
    return f"report_{provider_id}_{moment.strftime('%Y%m%dT%H%M%S%f')}.{fmt}"


def _revenue_rows(revenue: Dict[str, Any]) -> List[List[Any]]:
    rows: List[List[Any]] = [["Metric", "Value", "Period"]]
    total = revenue.get("total_earnings")
    if total:
        rows.append(["Total Earnings", total["current_period"]["total_earnings"], total["period"]])
        rows.append(["Change From Previous Period (%)", total["percentage_change"], total["period"]])
    payments = revenue.get("payment_status")
    if payments:
        rows.append(["Payments Total", payments["grand_total"], "all"])

    categories = (revenue.get("earnings_by_category") or {}).get("categories") or []
    if categories:
        rows.append([])
        rows.append(["Earnings by Category"])
        rows.append(["Category", "Earnings", "Service Count", "Percentage"])
        for category in categories:
            rows.append([category["category"], category["earnings"], category["service_count"], f"{category['percentage']}%"])

    months = (revenue.get("monthly_comparison") or {}).get("monthly_data") or []
    if months:
        rows.append([])
        rows.append(["Monthly Earnings"])
        rows.append(["Month", "Earnings", "Services", "Change (%)"])
        for month in months:
            rows.append([month["month"], month["earnings"], month["service_count"], month["month_over_month_change"]])
    return rows


def _performance_rows(performance: Dict[str, Any]) -> List[List[Any]]:
    rows: List[List[Any]] = [["Metric", "Value", "Period"]]
    completion = performance.get("completion_rate")
    if completion:
        rows.append(["Completion Rate", f"{completion['completion_rate']}%", completion["period"]])
    response = performance.get("average_response_time")
    if response:
        rows.append(["Average Response Time", response["average_response_time"]["formatted"], response["period"]])
    cancellations = performance.get("cancellation_metrics")
    if cancellations:
        rows.append(["Cancellation Rate", f"{cancellations['cancellation_rate']}%", cancellations["period"]])
    summary = performance.get("performance_summary")
    if summary:
        rows.append(["Performance Score", summary["performance_score"], summary["period"]])

    reasons = (cancellations or {}).get("reasons") or []
    if reasons:
        rows.append([])
        rows.append(["Cancellation Reasons"])
        rows.append(["Reason", "Count", "Percentage"])
        for reason in reasons:
            rows.append([reason["reason"], reason["count"], f"{reason['percentage']}%"])
    return rows


def _customer_rows(customers: Dict[str, Any]) -> List[List[Any]]:
    rows: List[List[Any]] = [["Metric", "Value"]]
    unique = customers.get("unique_customer_count")
    if unique:
        rows.append(["Unique Customers", unique["unique_customers"]])
        rows.append(["Average Requests per Customer", unique["average_requests_per_customer"]])
    retention = customers.get("retention_rate")
    if retention:
        rows.append(["Retention Rate", f"{retention['retention_rate']}%"])
        rows.append(["Repeat Customers", retention["repeat_customers"]])
    clv = customers.get("customer_lifetime_value")
    if clv:
        rows.append(["Average Lifetime Value", clv["average_clv"]])

    regions = (customers.get("geographic_distribution") or {}).get("top_regions") or []
    if regions:
        rows.append([])
        rows.append(["Top Regions"])
        rows.append(["Region", "Customers", "Requests", "Customer Percentage"])
        for region in regions:
            rows.append([region["location_key"], region["customer_count"], region["request_count"], f"{region['customer_percentage']}%"])
    return rows


def _benchmark_rows(benchmarks: Dict[str, Any]) -> List[List[Any]]:
    rows: List[List[Any]] = [["Metric", "Value", "Percentile", "Rank"]]
    for metric, ranking in (benchmarks.get("rankings") or {}).items():
        rows.append([metric, ranking["value"], ranking["percentile"], ranking["rank"]])
    return rows


def tabular_sections(analytics: Dict[str, Any]) -> List[Section]:
    """Labeled row blocks for every metric group present in the bundle."""
    sections: List[Section] = []
    if analytics.get("revenue"):
        sections.append(("REVENUE ANALYTICS", _revenue_rows(analytics["revenue"])))
    if analytics.get("performance"):
        sections.append(("PERFORMANCE ANALYTICS", _performance_rows(analytics["performance"])))
    if analytics.get("customers"):
        sections.append(("CUSTOMER ANALYTICS", _customer_rows(analytics["customers"])))
    if analytics.get("benchmarks"):
        sections.append(("BENCHMARKS", _benchmark_rows(analytics["benchmarks"])))
    return sections


def render_csv(analytics: Dict[str, Any]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow([f"Provider Analytics Report - {analytics['report_type']}"])
    writer.writerow([f"Generated: {analytics['generated_at']}"])
    writer.writerow([f"Period: {analytics['period']}"])
    writer.writerow([])
    for title, rows in tabular_sections(analytics):
        writer.writerow([title])
        writer.writerows(rows)
        writer.writerow([])
    return buffer.getvalue()


def render_tabular(analytics: Dict[str, Any]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter="\t", lineterminator="\n")
    writer.writerow(["Provider Analytics Report", analytics["report_type"]])
    writer.writerow(["Generated", analytics["generated_at"]])
    writer.writerow(["Period", analytics["period"]])
    writer.writerow([])
    for title, rows in tabular_sections(analytics):
        writer.writerow([title])
        writer.writerows(rows)
        writer.writerow([])
    return buffer.getvalue()


def _heading(title: str) -> List[str]:
    return [title, "=" * len(title)]


def render_narrative(analytics: Dict[str, Any], template: Dict[str, Any]) -> str:
    lines = [
        "PROVIDER ANALYTICS REPORT",
        template["name"],
        f"Generated: {analytics['generated_at']}",
        f"Period: {analytics['period']}",
        "",
        template["description"],
        "",
    ]

    revenue = analytics.get("revenue")
    if revenue:
        total = revenue["total_earnings"]
        lines += _heading("REVENUE SUMMARY")
        lines.append(f"Total Earnings: ${total['current_period']['formatted_earnings']}")
        if total["percentage_change"] is not None:
            lines.append(f"Change from Previous Period: {total['percentage_change']}%")
        categories = revenue["earnings_by_category"]["categories"]
        if categories:
            top = categories[0]
            lines.append(f"Top Category: {top['category']} ({top['percentage']}% of earnings)")
        lines.append("")

    performance = analytics.get("performance")
    if performance:
        lines += _heading("PERFORMANCE SUMMARY")
        lines.append(f"Completion Rate: {performance['completion_rate']['completion_rate']}%")
        lines.append(f"Average Response Time: {performance['average_response_time']['average_response_time']['formatted']}")
        lines.append(f"Cancellation Rate: {performance['cancellation_metrics']['cancellation_rate']}%")
        lines.append(f"Performance Score: {performance['performance_summary']['performance_score']}")
        lines.append("")

    customers = analytics.get("customers")
    if customers:
        lines += _heading("CUSTOMER SUMMARY")
        lines.append(f"Unique Customers: {customers['unique_customer_count']['unique_customers']}")
        lines.append(f"Retention Rate: {customers['retention_rate']['retention_rate']}%")
        lines.append(f"Average Lifetime Value: ${customers['customer_lifetime_value']['average_clv']}")
        lines.append("")

    benchmarks = analytics.get("benchmarks")
    if benchmarks:
        lines += _heading("BENCHMARK SUMMARY")
        if benchmarks.get("insufficient_data"):
            lines.append("Not enough data to rank against other providers yet.")
        for metric, ranking in benchmarks["rankings"].items():
            lines.append(f"{metric}: {ranking['value']} ({ranking['rank']}, percentile {ranking['percentile']})")
        lines.append("")

    return "\n".join(lines)


def render_report(fmt: str, analytics: Dict[str, Any], template: Dict[str, Any]) -> str:
    if fmt == "csv":
        return render_csv(analytics)
    if fmt == "xlsx":
        return render_tabular(analytics)
    return render_narrative(analytics, template)


def write_report_file(
    content: str,
    provider_id: int,
    fmt: str,
    moment: datetime,
    directory: Optional[str] = None,
) -> Dict[str, Any]:
    """
    Write rendered content under the export directory.

    Returns:
        Dict with file_path, filename and size in bytes
    """
    from src.lib.settings import settings

    directory = directory or settings.report_export_dir
    os.makedirs(directory, exist_ok=True)

    filename = report_filename(provider_id, fmt, moment)
    file_path = os.path.join(directory, filename)
    with open(file_path, "w", encoding="utf-8") as handle:
        handle.write(content)

    size = os.path.getsize(file_path)
    logger.debug(f"Wrote report file {filename} ({size} bytes)")
    return {"file_path": file_path, "filename": filename, "size": size}
