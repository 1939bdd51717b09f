"""Tests for client metrics and structured logging."""

import io
import json
import logging
import sys

from prometheus_client import REGISTRY, generate_latest

from s3odm import metrics
from s3odm.logging_config import JSONFormatter, TextFormatter, configure_logging


def _sample(name, labels=None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class TestMetrics:
    """Tests for the s3odm_ Prometheus collectors."""

    def test_init_is_idempotent(self):
        metrics.init_metrics()
        counter = metrics.requests_total
        metrics.init_metrics()
        assert metrics.requests_total is counter

    def test_names_registered(self):
        metrics.init_metrics()
        body = generate_latest().decode("utf-8")
        assert "s3odm_requests_total" in body
        assert "s3odm_request_duration_seconds" in body
        assert "s3odm_bytes_sent_total" in body
        assert "s3odm_bytes_received_total" in body

    async def test_requests_counted(self, client, fake_s3):
        metrics.init_metrics()
        put_before = _sample("s3odm_requests_total", {"operation": "put", "status": "200"})
        get_before = _sample("s3odm_requests_total", {"operation": "get", "status": "404"})
        sent_before = _sample("s3odm_bytes_sent_total")

        await client.put("users", {"_id": "1"})
        await client.get("users", "missing")

        assert _sample("s3odm_requests_total", {"operation": "put", "status": "200"}) == put_before + 1
        assert _sample("s3odm_requests_total", {"operation": "get", "status": "404"}) == get_before + 1
        assert _sample("s3odm_bytes_sent_total") == sent_before + len(b'{"_id":"1"}')

    async def test_duration_observed(self, client):
        metrics.init_metrics()
        before = _sample("s3odm_request_duration_seconds_count", {"operation": "list_ids"})
        await client.list_ids("users")
        assert _sample("s3odm_request_duration_seconds_count", {"operation": "list_ids"}) == before + 1


class TestJSONFormatter:
    """Tests for JSON log output."""

    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord("s3odm.client", logging.DEBUG, __file__, 1, "GET %s", ("/b/k",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_basic_fields(self):
        entry = json.loads(JSONFormatter().format(self._record()))
        assert entry["level"] == "DEBUG"
        assert entry["logger"] == "s3odm.client"
        assert entry["message"] == "GET /b/k"
        assert "timestamp" in entry

    def test_request_extras(self):
        record = self._record(operation="get", method="GET", key="users/1.json", status=200, duration_ms=1.5)
        entry = json.loads(JSONFormatter().format(record))
        assert entry["operation"] == "get"
        assert entry["key"] == "users/1.json"
        assert entry["status"] == 200
        assert entry["duration_ms"] == 1.5

    def test_unset_extras_omitted(self):
        entry = json.loads(JSONFormatter().format(self._record()))
        assert "operation" not in entry
        assert "status" not in entry

    def test_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord("s3odm", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
        entry = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in entry["exception"]


class TestTextFormatter:
    """Tests for human-readable log output."""

    def test_plain_record(self):
        record = logging.LogRecord("s3odm", logging.INFO, __file__, 1, "hello", (), None)
        assert TextFormatter().format(record).endswith("INFO s3odm: hello")

    def test_request_fields_appended(self):
        record = logging.LogRecord("s3odm.client", logging.DEBUG, __file__, 1, "GET", (), None)
        record.operation = "get"
        record.status = 404
        assert TextFormatter().format(record).endswith("GET [operation=get status=404]")


class TestConfigureLogging:
    """Tests for configure_logging()."""

    def setup_method(self):
        root = logging.getLogger()
        self._saved = (root.handlers[:], root.level, logging.getLogger("httpx").level)

    def teardown_method(self):
        handlers, level, httpx_level = self._saved
        root = logging.getLogger()
        root.handlers[:] = handlers
        root.setLevel(level)
        logging.getLogger("httpx").setLevel(httpx_level)
        logging.getLogger("httpcore").setLevel(logging.NOTSET)

    def test_json_handler(self):
        stream = io.StringIO()
        configure_logging(level="DEBUG", fmt="json", stream=stream)

        root = logging.getLogger()
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, JSONFormatter)

        logging.getLogger("s3odm.test").debug("hi", extra={"operation": "put"})
        entry = json.loads(stream.getvalue().splitlines()[-1])
        assert entry["message"] == "hi"
        assert entry["operation"] == "put"

    def test_text_handler(self):
        configure_logging(level="INFO", fmt="text", stream=io.StringIO())
        assert isinstance(logging.getLogger().handlers[0].formatter, TextFormatter)

    def test_unknown_level_defaults_to_info(self):
        configure_logging(level="LOUD", fmt="text", stream=io.StringIO())
        assert logging.getLogger().level == logging.INFO

    def test_transport_loggers_quiet(self):
        configure_logging(level="INFO", stream=io.StringIO())
        assert logging.getLogger("httpx").level == logging.WARNING
        assert logging.getLogger("httpcore").level == logging.WARNING

    def test_transport_loggers_verbose_at_debug(self):
        configure_logging(level="DEBUG", stream=io.StringIO())
        assert logging.getLogger("httpx").level == logging.DEBUG
