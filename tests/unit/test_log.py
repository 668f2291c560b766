"""
Unit tests for logging helpers.
"""

import json
import logging

from httpservice.log import JsonFormatter, RequestLog, request_logger


def make_log(**overrides) -> RequestLog:
    fields = dict(
        request_id="1234",
        method="GET",
        path="/items",
        query="page=2",
        client_ip="10.0.0.7",
        user_agent="curl/8.0",
        status_code=200,
        content_length=42,
        duration_ms=1.234,
        timestamp="07/Jan/2026:08:05:03 +0000",
    )
    fields.update(overrides)
    return RequestLog(**fields)


class TestRequestLog:
    """Tests for access log entries."""

    def test_text_line(self):
        line = make_log().to_text()

        assert line == (
            '10.0.0.7 - - [07/Jan/2026:08:05:03 +0000] '
            '"GET /items?page=2" 200 42 1.23ms'
        )

    def test_text_line_without_query(self):
        assert '"GET /items" 200' in make_log(query="").to_text()

    def test_dict(self):
        entry = make_log().to_dict()

        assert entry["request_id"] == "1234"
        assert entry["duration_ms"] == 1.23

    def test_emit_json_attaches_entry(self, caplog):
        logger = logging.getLogger("tests.access")

        with caplog.at_level(logging.INFO, logger="tests.access"):
            make_log().emit("json", logger=logger)

        record = caplog.records[-1]
        assert record.access["status_code"] == 200
        assert record.request_id == "1234"


class TestJsonFormatter:
    def test_includes_request_id(self):
        record = logging.LogRecord("httpservice", logging.INFO, __file__, 1, "hello", None, None)
        record.request_id = "abc"

        entry = json.loads(JsonFormatter().format(record))

        assert entry["message"] == "hello"
        assert entry["level"] == "INFO"
        assert entry["request_id"] == "abc"


class TestRequestLogger:
    def test_prefixes_request_id(self, make_request, caplog):
        request = make_request()
        logger = logging.getLogger("tests.request")

        with caplog.at_level(logging.INFO, logger="tests.request"):
            request_logger(logger, request).info("handled")

        record = caplog.records[-1]
        assert record.getMessage() == f"[{request.id}] handled"
        assert record.request_id == str(request.id)
