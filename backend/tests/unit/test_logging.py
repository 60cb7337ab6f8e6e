"""
Tests for the JSON log formatter and correlation id context.
"""
import asyncio
import json
import logging

import pytest

from src.lib.logging import (
    JSONFormatter,
    bind_log_context,
    clear_log_context,
    get_correlation_id,
    log_with_context,
    set_correlation_id,
)


def _record(message: str = "Report generated", **extra) -> logging.LogRecord:
    record = logging.LogRecord("src.services.report_generator", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
def test_json_formatter_basic_fields():
    payload = json.loads(JSONFormatter().format(_record()))

    assert payload["level"] == "INFO"
    assert payload["logger"] == "src.services.report_generator"
    assert payload["message"] == "Report generated"
    assert "timestamp" in payload
    assert "correlation_id" not in payload


@pytest.mark.unit
def test_json_formatter_includes_correlation_id():
    set_correlation_id("abc-123")
    try:
        payload = json.loads(JSONFormatter().format(_record()))
    finally:
        set_correlation_id(None)

    assert payload["correlation_id"] == "abc-123"
    assert get_correlation_id() is None


@pytest.mark.unit
def test_json_formatter_merges_extra_fields():
    payload = json.loads(JSONFormatter().format(_record(extra_fields={"provider_id": 7, "period": "30days"})))

    assert payload["provider_id"] == 7
    assert payload["period"] == "30days"


@pytest.mark.unit
def test_log_with_context_passes_fields(caplog):
    logger = logging.getLogger("test.analytics")

    with caplog.at_level(logging.INFO, logger="test.analytics"):
        log_with_context(logger, "info", "Dashboard computed", provider_id=3, partial=False)

    record = caplog.records[-1]
    assert record.getMessage() == "Dashboard computed"
    assert record.extra_fields == {"provider_id": 3, "partial": False}


@pytest.mark.unit
def test_bound_context_is_added_to_every_line():
    bind_log_context(provider_id=5)
    bind_log_context(role="provider")
    try:
        payload = json.loads(JSONFormatter().format(_record()))
    finally:
        clear_log_context()

    assert payload["provider_id"] == 5
    assert payload["role"] == "provider"
    assert "provider_id" not in json.loads(JSONFormatter().format(_record()))


@pytest.mark.unit
@pytest.mark.asyncio
async def test_bound_context_follows_gathered_tasks():
    async def emit():
        return json.loads(JSONFormatter().format(_record()))["provider_id"]

    bind_log_context(provider_id=9)
    try:
        results = await asyncio.gather(emit(), emit())
    finally:
        clear_log_context()

    assert results == [9, 9]
