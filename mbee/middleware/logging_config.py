"""
Logging setup for the MBEE service.

Every record emitted while a request is being served is tagged with the
element namespace it touches (org, project, branch), the caller and the
request id, so engine log lines such as "Created 3 element(s)" can be
traced back to one API call without threading those values through the
service signatures.

Output format is chosen by ``LOG_FORMAT`` ("json" for log aggregation,
"text" for terminals); the level by ``LOG_LEVEL``.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

# Attributes copied onto records by RequestContextFilter
CONTEXT_KEYS = ("request_id", "user", "org_id", "project_id", "branch_id")
# Attributes passed explicitly through ``extra=`` by the timing middleware
REQUEST_KEYS = ("method", "path", "status", "duration_ms")


class RequestContextFilter(logging.Filter):
    """Attach the current request's element namespace and caller to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        for key in CONTEXT_KEYS:
            if not hasattr(record, key):
                setattr(record, key, None)
        if not has_request_context():
            return True

        view_args = request.view_args or {}
        record.request_id = record.request_id or getattr(g, "request_id", None)
        record.user = record.user or getattr(getattr(g, "principal", None), "id", None)
        for key in ("org_id", "project_id", "branch_id"):
            if getattr(record, key) is None:
                setattr(record, key, view_args.get(key))
        return True


def _namespace(record: logging.LogRecord) -> str | None:
    parts = [getattr(record, k, None) for k in ("org_id", "project_id", "branch_id")]
    if not any(parts):
        return None
    return ":".join(p for p in parts if p)


class JSONFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key in CONTEXT_KEYS + REQUEST_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """``12:00:01 INFO  mbee.services.element_service [acme:rocket:master alice] message``"""

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        tags = " ".join(t for t in (_namespace(record), getattr(record, "user", None)) if t)
        line = f"{ts} {record.levelname:<8} {record.name}"
        if tags:
            line += f" [{tags}]"
        line += f" {record.getMessage()}"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" ({duration:.0f}ms)"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger.

    Production defaults to JSON at INFO; development and testing default
    to text at DEBUG.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = app.config.get("LOG_LEVEL") or ("INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)
    fmt = app.config.get("LOG_FORMAT") or ("json" if is_prod else "text")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else TextFormatter())
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine", "alembic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    app.logger.setLevel(level)
    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
