"""
RFP Platform
Logging setup — one root stream handler writing JSON or text lines.

Records emitted while a request is active are tagged with that request's
id, user, company and RFP by ``RequestContextFilter``; service code only
passes ``extra`` for what the request cannot know (a swept RFP, a
supplier contact).

    LOG_FORMAT   json | text   (default: text under DEBUG/TESTING, else json)
    LOG_LEVEL    any logging level name (default: DEBUG under DEBUG/TESTING, else INFO)
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context, request

HTTP_FIELDS = ("method", "path", "status", "duration_ms", "remote_addr")
CONTEXT_FIELDS = (
    "request_id",
    "user_id",
    "company_id",
    "rfp_id",
    "supplier_contact_id",
    "event_type",
)

QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine", "redis")


def _present(record, names):
    found = {}
    for name in names:
        value = getattr(record, name, None)
        if value is not None:
            found[name] = value
    return found


class RequestContextFilter(logging.Filter):
    """Fill context fields the caller did not pass from the active request."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            return True
        from_request = {
            "request_id": getattr(g, "request_id", None),
            "user_id": getattr(g, "jwt_user_id", None),
            "company_id": getattr(g, "jwt_company_id", None),
            "rfp_id": (request.view_args or {}).get("rfp_id"),
        }
        for key, value in from_request.items():
            if value is not None and getattr(record, key, None) is None:
                setattr(record, key, value)
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per line; request and RFP context nested under ``ctx``."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "at": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(_present(record, HTTP_FIELDS))
        ctx = _present(record, CONTEXT_FIELDS)
        if ctx:
            entry["ctx"] = ctx
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """``12:00:01 INFO     rfp_platform.x: message  rfp=3 req=ab12 [40ms]``"""

    LEVEL_COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"
    TAGS = (("rfp_id", "rfp"), ("company_id", "company"), ("request_id", "req"))

    def __init__(self, color=True):
        super().__init__()
        self.color = color

    def format(self, record: logging.LogRecord) -> str:
        level = f"{record.levelname:<8}"
        if self.color:
            level = f"{self.LEVEL_COLORS.get(record.levelname, '')}{level}{self.RESET}"
        ts = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        line = f"{ts} {level} {record.name}: {record.getMessage()}"

        tags = [
            f"{label}={getattr(record, key)}"
            for key, label in self.TAGS
            if getattr(record, key, None) is not None
        ]
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            tags.append(f"[{duration:.0f}ms]")
        if tags:
            line += "  " + " ".join(tags)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _level_from_env(default):
    name = os.getenv("LOG_LEVEL", default).upper()
    level = logging.getLevelName(name)
    if not isinstance(level, int):
        return "INFO", logging.INFO
    return name, level


def configure_logging(app):
    """
    Install the root handler for the Flask app and return it.

    Replaces any handler a previous ``create_app`` installed, so building
    several apps in one process (the test suite does) never doubles lines.
    """
    is_testing = app.config.get("TESTING", False)
    local = app.config.get("DEBUG", False) or is_testing

    level_name, level = _level_from_env("DEBUG" if local else "INFO")
    fmt = os.getenv("LOG_FORMAT", "text" if local else "json").lower()
    if fmt == "json":
        formatter = JSONFormatter()
    else:
        fmt = "text"
        formatter = TextFormatter(color=sys.stderr.isatty())

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.setLevel(level)
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
    return handler
