"""
Logging Setup Tests:
  - JSON lines carry lifecycle extras and the record's own timestamp
  - readable lines append project / event / request context
  - request id picked up inside a request context only
  - level and format resolved from app config
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import Flask, g

from designflow.middleware.logging_config import (
    JSONFormatter,
    ReadableFormatter,
    RequestContextFilter,
    _log_settings,
    build_handler,
)


def _record(msg="Project moved", level=logging.INFO, **extra):
    record = logging.LogRecord("designflow.services.workflow", level, __file__, 10, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def _bare_app(**config):
    app = Flask(__name__)
    app.config.update(config)
    return app


# ═══════════════════════════════════════════════════════════════════════════
# Formatters
# ═══════════════════════════════════════════════════════════════════════════


class TestFormatters:

    def test_json_includes_lifecycle_extras(self):
        record = _record(project_id="p1", event_type="workflow.transition",
                         from_status="in_progress", to_status="feedback_period", version_id=None)
        entry = json.loads(JSONFormatter().format(record))
        assert entry["message"] == "Project moved"
        assert entry["level"] == "INFO"
        assert entry["project_id"] == "p1"
        assert entry["event_type"] == "workflow.transition"
        assert entry["to_status"] == "feedback_period"
        assert "version_id" not in entry

    def test_json_timestamp_is_record_time(self):
        record = _record()
        record.created = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc).timestamp()
        entry = json.loads(JSONFormatter().format(record))
        assert entry["timestamp"] == "2026-03-01T12:00:00+00:00"

    def test_json_includes_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())
        entry = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in entry["exception"]

    def test_readable_appends_context(self):
        record = _record(project_id="p1", event_type="modification_request.complete",
                         request_id="abc123", duration_ms=12.4)
        line = ReadableFormatter(use_color=False).format(record)
        assert line.endswith("Project moved [project=p1 event=modification_request.complete req=abc123 12ms]")
        assert "\033[" not in line

    def test_readable_without_context(self):
        line = ReadableFormatter(use_color=False).format(_record())
        assert line.endswith("designflow.services.workflow: Project moved")


# ═══════════════════════════════════════════════════════════════════════════
# Request context
# ═══════════════════════════════════════════════════════════════════════════


class TestRequestContextFilter:

    def test_request_id_inside_request(self, app):
        with app.test_request_context("/api/v1/projects"):
            g.request_id = "req-42"
            record = _record()
            assert RequestContextFilter().filter(record) is True
        assert record.request_id == "req-42"

    def test_explicit_request_id_kept(self, app):
        with app.test_request_context("/api/v1/projects"):
            g.request_id = "req-42"
            record = _record(request_id="from-extra")
            RequestContextFilter().filter(record)
        assert record.request_id == "from-extra"

    def test_no_request_context(self):
        record = _record()
        assert RequestContextFilter().filter(record) is True
        assert getattr(record, "request_id", None) is None

    def test_handler_carries_filter(self):
        handler = build_handler("json", logging.INFO)
        assert isinstance(handler.formatter, JSONFormatter)
        assert any(isinstance(f, RequestContextFilter) for f in handler.filters)
        assert handler.level == logging.INFO


# ═══════════════════════════════════════════════════════════════════════════
# Settings
# ═══════════════════════════════════════════════════════════════════════════


class TestLogSettings:

    def test_production_defaults(self):
        assert _log_settings(_bare_app(DEBUG=False, TESTING=False)) == (logging.INFO, "json")

    def test_development_defaults(self):
        assert _log_settings(_bare_app(DEBUG=True)) == (logging.DEBUG, "readable")

    def test_config_overrides(self):
        app = _bare_app(DEBUG=True, LOG_LEVEL="warning", LOG_FORMAT="JSON")
        assert _log_settings(app) == (logging.WARNING, "json")

    def test_unknown_values_fall_back(self):
        app = _bare_app(DEBUG=False, LOG_LEVEL="chatty", LOG_FORMAT="xml")
        assert _log_settings(app) == (logging.INFO, "json")
