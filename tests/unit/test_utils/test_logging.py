"""Tests for structured logging helpers."""

import logging
import pytest

from majitask.utils.logging import (
    correlation_context,
    get_correlation_id,
    get_structured_logger,
    log_timing,
    mask_sensitive_data,
    mask_token,
)


@pytest.mark.unit
def test_correlation_context_nests_and_restores():
    assert get_correlation_id() is None

    with correlation_context("outer") as outer:
        with correlation_context() as inner:
            assert get_correlation_id() == inner
            assert inner.startswith("req_")
        assert get_correlation_id() == outer == "outer"

    assert get_correlation_id() is None


@pytest.mark.unit
@pytest.mark.parametrize("token,expected", [
    (None, None),
    ("", None),
    ("short", "***"),
    ("eyJhbGciOiJIUzI1NiJ9.payload", "eyJh...ad"),
])
def test_mask_token(token, expected):
    assert mask_token(token) == expected


@pytest.mark.unit
def test_mask_sensitive_data():
    text = mask_sensitive_data("user ada@example.com sent Bearer abc.def-123")

    assert "ada@example.com" not in text
    assert "abc.def-123" not in text


@pytest.mark.unit
def test_structured_fields_reach_the_record(caplog):
    logger = get_structured_logger("majitask.test")

    with caplog.at_level(logging.INFO, logger="majitask.test"):
        with correlation_context("req_test"):
            logger.info("Task created", task_id="t1", error="owner ada@example.com")

    record = caplog.records[-1]
    assert record.task_id == "t1"
    assert record.correlation_id == "req_test"
    assert "ada@example.com" not in record.error


@pytest.mark.unit
def test_log_timing_reports_duration(caplog):
    logger = get_structured_logger("majitask.timing")

    with caplog.at_level(logging.DEBUG, logger="majitask.timing"):
        with log_timing("sync_pass", logger=logger, sent=3):
            pass

    completed = [r for r in caplog.records if r.getMessage() == "Completed sync_pass"]
    assert completed[0].sent == 3
    assert completed[0].processing_time_ms >= 0
