"""
Logging setup for ConstructHub.

Every record emitted inside a request carries who asked (user_id, role),
which request it belongs to (request_id) and, for project and task routes,
the project_id / task_id taken from the URL. Service code can also pass
these through ``extra=`` when it logs outside a request (CLI, event sink).

Production writes one JSON object per line; development and tests write a
short readable line with the same context appended as ``key=value`` tags.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

CONTEXT_FIELDS = ("request_id", "user_id", "role", "project_id", "task_id")

# timing middleware fields, only present on access log records
ACCESS_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr")

_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "alembic")


class RequestContextFilter(logging.Filter):
    """Stamps request context onto records unless the caller already set it."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        current = getattr(g, "current_user", None) or {}
        view_args = request.view_args or {}
        context = {
            "request_id": getattr(g, "request_id", None),
            "user_id": current.get("user_id"),
            "role": current.get("role"),
            "project_id": view_args.get("project_id"),
            "task_id": view_args.get("task_id"),
        }
        for key, value in context.items():
            if value is not None and getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


def _context_of(record: logging.LogRecord, fields) -> dict:
    return {key: getattr(record, key) for key in fields if getattr(record, key, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per line for the log aggregator."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(_context_of(record, ACCESS_FIELDS + CONTEXT_FIELDS))
        entry["event_type"] = getattr(record, "event_type", None) or "log"
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Compact single-line format for development; colors only on a TTY."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, use_color: bool = False):
        super().__init__()
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.use_color:
            level = f"{self.COLORS.get(record.levelname, '')}{level}{self.RESET}"
        line = f"{ts} {level} {record.name}: {record.getMessage()}"
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            line += f" [{duration:.0f}ms]"
        tags = " ".join(f"{k}={v}" for k, v in _context_of(record, CONTEXT_FIELDS).items())
        if tags:
            line += f" ({tags})"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """
    Install a single stderr handler on the root logger.

    LOG_LEVEL from the environment wins over app config; the fallback is
    INFO in production and DEBUG otherwise. Production (not DEBUG and not
    TESTING) gets JSON lines.
    """
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL") or app.config.get("LOG_LEVEL") or ("INFO" if is_prod else "DEBUG")
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    if is_prod:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(ReadableFormatter(use_color=sys.stderr.isatty()))
    handler.addFilter(RequestContextFilter())
    handler.setLevel(level)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, "json" if is_prod else "text")
