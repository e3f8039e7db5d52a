"""Tests for the JSON log formatter."""

from __future__ import annotations

import json
import logging
import sys

import pytest
from school_api.middleware.json_formatter import JSONFormatter, configure_structured_logging


@pytest.fixture
def formatter() -> JSONFormatter:
    return JSONFormatter()


def _record(name: str = "test", level: int = logging.INFO, msg: str = "msg", exc_info=None) -> logging.LogRecord:
    return logging.LogRecord(
        name=name,
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


class TestJSONFormatter:
    def test_basic_format(self, formatter: JSONFormatter) -> None:
        data = json.loads(formatter.format(_record("school.logger", msg="hello")))

        assert data["level"] == "INFO"
        assert data["logger"] == "school.logger"
        assert data["message"] == "hello"
        assert "timestamp" in data

    def test_single_line_output(self, formatter: JSONFormatter) -> None:
        assert "\n" not in formatter.format(_record(level=logging.WARNING, msg="multi\nline"))

    def test_request_context_included(self, formatter: JSONFormatter) -> None:
        record = _record("school_api.access", msg="request completed")
        record.request = {  # type: ignore[attr-defined]
            "method": "GET",
            "path": "/api/v1/records/students",
            "status_code": 200,
            "tenant_id": "school-1",
            "role": "manager",
        }

        data = json.loads(formatter.format(record))

        assert data["request"]["tenant_id"] == "school-1"
        assert data["request"]["role"] == "manager"

    def test_context_fields_promoted(self, formatter: JSONFormatter) -> None:
        record = _record()
        record.tenant_id = "school-9"  # type: ignore[attr-defined]
        record.identity_id = "user-3"  # type: ignore[attr-defined]
        record.correlation_id = "corr-1"  # type: ignore[attr-defined]

        data = json.loads(formatter.format(record))

        assert data["tenant_id"] == "school-9"
        assert data["identity_id"] == "user-3"
        assert data["correlation_id"] == "corr-1"

    def test_no_request_context_omitted(self, formatter: JSONFormatter) -> None:
        data = json.loads(formatter.format(_record()))

        assert "request" not in data
        assert "tenant_id" not in data

    def test_exception_info_included(self, formatter: JSONFormatter) -> None:
        try:
            raise ValueError("boom")
        except ValueError:
            exc_info = sys.exc_info()

        data = json.loads(formatter.format(_record(level=logging.ERROR, exc_info=exc_info)))

        assert "ValueError: boom" in data["exc_info"]
        assert "Traceback" in data["exc_info"]

    def test_timestamp_is_utc(self, formatter: JSONFormatter) -> None:
        data = json.loads(formatter.format(_record()))

        assert data["timestamp"].endswith("+00:00")


class TestConfigureStructuredLogging:
    def test_installs_single_json_handler(self) -> None:
        root = logging.getLogger()
        saved_handlers, saved_level = root.handlers[:], root.level
        try:
            configure_structured_logging(logging.DEBUG)

            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JSONFormatter)
            assert root.level == logging.DEBUG
        finally:
            root.handlers = saved_handlers
            root.setLevel(saved_level)
