"""Tests for JSON and console log formatters."""

import json
import logging
import sys

import pytest

from core.logging.context import clear_log_context, set_log_context
from core.logging.formatters import ConsoleFormatter, JSONFormatter


def _make_record(
    msg="test message",
    level=logging.INFO,
    name="test.logger",
    exc_info=None,
    **extras,
):
    record = logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    for key, value in extras.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    @pytest.fixture(autouse=True)
    def clear_context(self):
        clear_log_context()
        yield
        clear_log_context()

    def test_formats_basic_json_with_required_fields(self):
        formatter = JSONFormatter()
        output = json.loads(formatter.format(_make_record()))

        assert output["level"] == "INFO"
        assert output["logger"] == "test.logger"
        assert output["message"] == "test message"
        assert output["ts"].endswith("Z")

    def test_includes_cycle_context(self):
        set_log_context(cycle_id="c-20260101-000000-abcd", stage="cycle", worker_id="collector-a-b-c")
        output = json.loads(JSONFormatter().format(_make_record()))

        assert output["cycle_id"] == "c-20260101-000000-abcd"
        assert output["stage"] == "cycle"
        assert output["worker_id"] == "collector-a-b-c"

    def test_omits_empty_context(self):
        output = json.loads(JSONFormatter().format(_make_record()))
        assert "cycle_id" not in output
        assert "domain" not in output

    def test_extracts_known_extra_fields(self):
        record = _make_record(event_count=12, cycle_outcome="delivered", decision="deliver")
        output = json.loads(JSONFormatter().format(record))

        assert output["event_count"] == 12
        assert output["cycle_outcome"] == "delivered"
        assert output["decision"] == "deliver"

    def test_ignores_unknown_extras(self):
        output = json.loads(JSONFormatter().format(_make_record(not_a_field="x")))
        assert "not_a_field" not in output

    def test_coerces_numeric_fields(self):
        output = json.loads(JSONFormatter().format(_make_record(http_status="503", attempt="2")))
        assert output["http_status"] == 503
        assert output["attempt"] == 2

    def test_bad_numeric_value_becomes_null(self):
        output = json.loads(JSONFormatter().format(_make_record(event_count="many")))
        assert output["event_count"] is None

    def test_redacts_access_token_in_url(self):
        record = _make_record(url="wss://live.example.com/stream?access_token=secret123&room=1")
        output = json.loads(JSONFormatter().format(record))

        assert "secret123" not in output["url"]
        assert "access_token=[REDACTED]" in output["url"]
        assert "room=1" in output["url"]

    def test_file_location_on_error(self):
        output = json.loads(JSONFormatter().format(_make_record(level=logging.ERROR)))
        assert output["file"] == "test.py:42"

    def test_no_file_location_on_info(self):
        output = json.loads(JSONFormatter().format(_make_record()))
        assert "file" not in output

    def test_includes_exception(self):
        try:
            raise ValueError("kaput")
        except ValueError:
            record = _make_record(level=logging.ERROR, exc_info=sys.exc_info())

        output = json.loads(JSONFormatter().format(record))
        assert output["exception"]["type"] == "ValueError"
        assert output["exception"]["message"] == "kaput"
        assert "Traceback" in output["exception"]["stacktrace"]


class TestConsoleFormatter:

    @pytest.fixture(autouse=True)
    def clear_context(self):
        clear_log_context()
        yield
        clear_log_context()

    @pytest.fixture
    def formatter(self):
        formatter = ConsoleFormatter()
        formatter._use_colors = False
        return formatter

    def test_plain_message(self, formatter):
        output = formatter.format(_make_record(msg="Snapshot delivered"))
        assert output.endswith(" - INFO - Snapshot delivered")

    def test_prefixes_cycle_id(self, formatter):
        set_log_context(cycle_id="c-1")
        output = formatter.format(_make_record(msg="No new data to send"))
        assert "[c-1] No new data to send" in output

    def test_includes_domain_and_stage(self, formatter):
        set_log_context(domain="schedule", stage="cycle")
        output = formatter.format(_make_record())
        assert "[schedule]" in output
        assert "[cycle]" in output

    def test_colors_when_enabled(self):
        formatter = ConsoleFormatter()
        formatter._use_colors = True
        output = formatter.format(_make_record(level=logging.WARNING))
        assert "\033[33mWARNING\033[0m" in output
