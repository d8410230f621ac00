"""
Structured logging for the query workflow.

Development writes one readable line per record, production one JSON
document per record.  Services tag records through ``extra`` and the
formatters lift those tags out:

    logger.info("Query approved", extra={"item_id": item.id, "team": "sales"})

LOG_LEVEL overrides the level; LOG_FORMAT ("json" | "readable") overrides
the format picked from the environment.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

# Request tags written by the timing middleware
REQUEST_KEYS = ("method", "path", "status", "duration_ms", "remote_addr", "request_id")

# Workflow tags written by the services
WORKFLOW_KEYS = ("group_id", "item_id", "team", "action", "seq")

EXTRA_KEYS = REQUEST_KEYS + WORKFLOW_KEYS

_QUIET_LOGGERS = ("urllib3", "werkzeug", "sqlalchemy.engine")


def _tags(record: logging.LogRecord) -> dict:
    return {key: getattr(record, key) for key in EXTRA_KEYS if getattr(record, key, None) is not None}


class JSONFormatter(logging.Formatter):
    """One JSON object per record for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        doc = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        doc.update(_tags(record))
        if record.exc_info and record.exc_info[0] is not None:
            doc["exception"] = self.formatException(record.exc_info)
        return json.dumps(doc, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Coloured single-line output for a terminal."""

    LEVEL_COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelname, "")
        parts = [
            f"{colour}{datetime.now():%H:%M:%S} {record.levelname:<8}{self.RESET}",
            f"{record.name}: {record.getMessage()}",
        ]
        item_id = getattr(record, "item_id", None)
        if item_id:
            parts.append(f"(query {item_id})")
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            parts.append(f"[{duration:.0f}ms]")
        line = " ".join(parts)
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install a single stderr handler on the root logger.

    Production (not DEBUG, not TESTING) defaults to JSON at INFO; anything
    else to readable output at DEBUG.
    """
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)
    fmt = os.getenv("LOG_FORMAT", "json" if production else "readable").lower()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if fmt == "json" else ReadableFormatter())
    handler.setLevel(level)

    # Replaces earlier handlers; the test session builds more than one app
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, fmt)
