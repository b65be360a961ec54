"""
Unit Tests for logging formatters and run/request tracking
"""

import json
import logging

import pytest

from chainly.core.logging_config import (
    JSONFormatter,
    StandardFormatter,
    clear_request_id,
    clear_run_id,
    get_run_id,
    set_request_id,
    set_run_id,
)


def make_record(message="Node completed", **extra):
    record = logging.LogRecord("chainly.core.engine", logging.INFO, __file__, 10, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def reset_tracking():
    yield
    clear_run_id()
    clear_request_id()


@pytest.mark.unit
def test_json_formatter_includes_run_id():
    set_run_id("42")

    payload = json.loads(JSONFormatter().format(make_record()))

    assert payload["message"] == "Node completed"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "chainly.core.engine"
    assert payload["run_id"] == "42"
    assert "context" not in payload


@pytest.mark.unit
def test_json_formatter_collects_extra_fields():
    payload = json.loads(JSONFormatter().format(make_record(node_id="n1")))

    assert payload["context"] == {"node_id": "n1"}
    assert "run_id" not in payload


@pytest.mark.unit
def test_standard_formatter_appends_tracking_ids():
    set_run_id("7")
    set_request_id("req-1")

    line = StandardFormatter().format(make_record())

    assert "INFO" in line
    assert line.endswith("Node completed (run_id=7, request_id=req-1)")


@pytest.mark.unit
def test_clear_run_id():
    set_run_id("9")
    clear_run_id()

    assert get_run_id() is None
