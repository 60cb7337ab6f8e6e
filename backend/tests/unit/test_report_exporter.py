"""
Tests for report rendering and file output.
"""
import csv
import io
import os
from datetime import timedelta

import pytest
import pytest_asyncio

from src.models.reports import ReportType
from src.services.report_exporter import (
    render_csv,
    render_narrative,
    render_report,
    render_tabular,
    report_filename,
    tabular_sections,
    write_report_file,
)
from src.services.report_generator import ReportGenerator, ReportOptions

from tests.conftest import NOW, InMemoryRecordStore, make_payment, make_work_order


@pytest_asyncio.fixture
async def comprehensive(mock_db_session):
    store = InMemoryRecordStore(
        work_orders=[make_work_order(customer_id=5, created_at=NOW - timedelta(days=2))],
        payments=[
            make_payment(300, category="Electrical", payment_date=NOW - timedelta(days=2)),
            make_payment(100, category="Plumbing", payment_date=NOW - timedelta(days=2)),
        ],
    )
    result = await ReportGenerator(store, mock_db_session).generate(
        1, ReportOptions(report_type=ReportType.COMPREHENSIVE), NOW
    )
    return result


@pytest.mark.unit
def test_report_filename_is_timestamped():
    assert report_filename(12, "xlsx", NOW) == "report_12_20250615T120000000000.xlsx"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_sections_in_fixed_order(comprehensive):
    titles = [title for title, _ in tabular_sections(comprehensive["analytics_data"])]

    assert titles == ["REVENUE ANALYTICS", "PERFORMANCE ANALYTICS", "CUSTOMER ANALYTICS", "BENCHMARKS"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_csv_has_header_block_and_category_rows(comprehensive):
    content = render_csv(comprehensive["analytics_data"])
    rows = list(csv.reader(io.StringIO(content)))

    assert rows[0] == ["Provider Analytics Report - comprehensive"]
    assert rows[1] == [f"Generated: {NOW.isoformat()}"]
    assert rows[2] == ["Period: 30days"]
    assert ["REVENUE ANALYTICS"] in rows
    assert ["Category", "Earnings", "Service Count", "Percentage"] in rows
    assert ["Electrical", "300.0", "1", "75.0%"] in rows


@pytest.mark.unit
@pytest.mark.asyncio
async def test_tabular_rendering_is_tab_separated(comprehensive):
    content = render_tabular(comprehensive["analytics_data"])

    assert content.splitlines()[0] == "Provider Analytics Report\tcomprehensive"
    assert "Metric\tValue\tPeriod" in content


@pytest.mark.unit
@pytest.mark.asyncio
async def test_narrative_has_underlined_headings(comprehensive):
    content = render_narrative(comprehensive["analytics_data"], comprehensive["template"])
    lines = content.splitlines()

    assert lines[0] == "PROVIDER ANALYTICS REPORT"
    assert lines[1] == "Comprehensive Analytics Report"
    index = lines.index("REVENUE SUMMARY")
    assert lines[index + 1] == "=" * len("REVENUE SUMMARY")
    assert "Total Earnings: $400.00" in lines
    assert "Top Category: Electrical (75.0% of earnings)" in lines
    assert "BENCHMARK SUMMARY" in lines


@pytest.mark.unit
@pytest.mark.asyncio
async def test_render_report_dispatches_on_format(comprehensive):
    analytics, template = comprehensive["analytics_data"], comprehensive["template"]

    assert render_report("csv", analytics, template) == render_csv(analytics)
    assert render_report("xlsx", analytics, template) == render_tabular(analytics)
    assert render_report("pdf", analytics, template) == render_narrative(analytics, template)


@pytest.mark.unit
def test_write_report_file(tmp_path):
    written = write_report_file("hello,world\n", 3, "csv", NOW, directory=str(tmp_path / "nested"))

    assert written["filename"] == "report_3_20250615T120000000000.csv"
    assert written["size"] == 12
    with open(written["file_path"], encoding="utf-8") as handle:
        assert handle.read() == "hello,world\n"
    assert os.path.dirname(written["file_path"]) == str(tmp_path / "nested")
