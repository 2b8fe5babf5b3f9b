"""Logging setup: one ``eventsite`` logger tree, console always, file optional.

Child loggers (``eventsite.audit``, ``eventsite.http``) inherit its handlers.
"""

import json
import logging
import sys
from datetime import datetime, timezone

from .config import settings

CONSOLE_FORMAT = "%(asctime)s %(levelname)-8s [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Values passed with ``extra=`` that the JSON output keeps
CONTEXT_FIELDS = ("request_id", "user_id", "event_id")


class JSONFormatter(logging.Formatter):
    def format(self, record):
        payload = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                payload[name] = value
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def _formatter(kind: str) -> logging.Formatter:
    if kind == "json":
        return JSONFormatter()
    return logging.Formatter(fmt=CONSOLE_FORMAT, datefmt=DATE_FORMAT)


def setup_logger(name: str = "eventsite") -> logging.Logger:
    """Attach handlers once; later calls return the configured logger unchanged."""
    logger = logging.getLogger(name)
    logger.setLevel(settings.LOG_LEVEL.upper())
    if logger.handlers:
        return logger

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(_formatter("console"))
    logger.addHandler(console)

    if settings.LOG_FILE:
        try:
            file_handler = logging.FileHandler(settings.LOG_FILE, encoding="utf-8")
        except OSError as e:
            logger.error(f"Log file {settings.LOG_FILE} unavailable, console only: {e}")
        else:
            file_handler.setFormatter(_formatter(settings.LOG_FORMAT))
            logger.addHandler(file_handler)

    return logger


logger = setup_logger()
audit_logger = logger.getChild("audit")
http_logger = logger.getChild("http")
