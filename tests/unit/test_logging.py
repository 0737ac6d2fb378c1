"""
Tests for structured log formatting and decision logging.
"""
import json
import logging

import pytest

from fieldops.lib.logging import (
    JSONFormatter,
    TextFormatter,
    get_logger,
    log_decision,
    set_correlation_id,
)


def make_record(message="Price quoted", **extra):
    record = logging.makeLogRecord({"name": "fieldops.test", "levelno": logging.INFO, "levelname": "INFO", "msg": message})
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def clear_correlation_id():
    set_correlation_id(None)
    yield
    set_correlation_id(None)


@pytest.mark.unit
def test_json_formatter_includes_extra_fields():
    record = make_record(tier="same_site", discount_percent=15.0)

    entry = json.loads(JSONFormatter().format(record))

    assert entry["message"] == "Price quoted"
    assert entry["level"] == "INFO"
    assert entry["logger"] == "fieldops.test"
    assert entry["tier"] == "same_site"
    assert entry["discount_percent"] == 15.0
    assert "correlation_id" not in entry


@pytest.mark.unit
def test_json_formatter_adds_correlation_id():
    set_correlation_id("req-123")

    entry = json.loads(JSONFormatter().format(make_record()))

    assert entry["correlation_id"] == "req-123"


@pytest.mark.unit
def test_text_formatter_appends_context():
    set_correlation_id("req-9")

    line = TextFormatter().format(make_record("Job claimed", booking_id="b1"))

    assert "INFO fieldops.test: Job claimed" in line
    assert line.endswith("correlation_id=req-9 booking_id=b1")


@pytest.mark.unit
def test_log_decision_tags_record(caplog):
    logger = get_logger("fieldops.decisions")

    with caplog.at_level(logging.INFO, logger="fieldops.decisions"):
        log_decision(logger, "claim", "Claim lost", level=logging.WARNING, booking_id="b1")

    record = caplog.records[-1]
    assert record.levelno == logging.WARNING
    assert record.decision == "claim"
    assert record.booking_id == "b1"
