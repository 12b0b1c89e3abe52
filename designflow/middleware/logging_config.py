"""
Lifecycle-aware logging setup.

Services log with ``extra={"project_id": ..., "event_type": ...}``; this
module turns those extras into either one JSON object per line (production)
or a compact colored line with the project context appended (development).
Inside a request every record also carries the X-Request-ID assigned by
the timing middleware.

Level and format come from LOG_LEVEL / LOG_FORMAT in the app config.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Per-request attributes set by the timing middleware
REQUEST_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id")

# Lifecycle context passed by the engine services
LIFECYCLE_FIELDS = (
    "project_id",
    "version_id",
    "feedback_id",
    "request_number",
    "event_type",
    "from_status",
    "to_status",
    "acting_role",
)

FORMAT_JSON = "json"
FORMAT_READABLE = "readable"

QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "alembic")


class RequestContextFilter(logging.Filter):
    """Stamp records with the current request id, if any."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None and has_request_context():
            record.request_id = getattr(g, "request_id", None)
        return True


def _record_time(record: logging.LogRecord) -> datetime:
    return datetime.fromtimestamp(record.created, tz=timezone.utc)


class JSONFormatter(logging.Formatter):
    """One JSON object per record, lifecycle extras as top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": _record_time(record).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        for key in REQUEST_FIELDS + LIFECYCLE_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                entry[key] = value
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored single-line output for local development."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    @staticmethod
    def context(record: logging.LogRecord) -> str:
        """``project=p1 event=workflow.transition``-style suffix."""
        parts = []
        for key, label in (("project_id", "project"), ("event_type", "event"), ("request_id", "req")):
            value = getattr(record, key, None)
            if value:
                parts.append(f"{label}={value}")
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            parts.append(f"{duration:.0f}ms")
        return f" [{' '.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:<8}"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"
        line = (f"{_record_time(record).astimezone().strftime('%H:%M:%S')} {level} "
                f"{record.name}: {record.getMessage()}{self.context(record)}")
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _log_settings(app) -> tuple[int, str]:
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level_name = (app.config.get("LOG_LEVEL") or ("INFO" if production else "DEBUG")).upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.INFO

    fmt = (app.config.get("LOG_FORMAT") or (FORMAT_JSON if production else FORMAT_READABLE)).lower()
    if fmt not in (FORMAT_JSON, FORMAT_READABLE):
        fmt = FORMAT_JSON if production else FORMAT_READABLE
    return level, fmt


def build_handler(fmt: str, level: int) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    if fmt == FORMAT_JSON:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ReadableFormatter(use_color=sys.stderr.isatty()))
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)
    return handler


def configure_logging(app):
    """Install a single root handler for the app and return its level and format."""
    level, fmt = _log_settings(app)

    root = logging.getLogger()
    # create_app may run more than once per process (tests)
    root.handlers.clear()
    root.addHandler(build_handler(fmt, level))
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not app.config.get("TESTING", False):
        app.logger.info("Logging configured: level=%s format=%s", logging.getLevelName(level), fmt)
    return level, fmt
