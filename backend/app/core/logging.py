"""Logging setup: one root stream handler, text or JSON.

JSON records surface the structured fields the app attaches via `extra=`
(error codes, checkpoints, trace ids, access-log fields).
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

from app.core.errors import ErrorKind


TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

_EXTRA_KEYS = (
    "error_code",
    "checkpoints",
    "trace_id",
    "status_code",
    "latency_ms",
    "client_ip",
    "method",
    "path",
)


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "source": f"{record.pathname}:{record.lineno}",
        }
        for key in _EXTRA_KEYS:
            val = record.__dict__.get(key)
            if val is not None:
                log[key] = val
        if record.exc_info:
            log["exception"] = self.formatException(record.exc_info)
        return json.dumps(log, ensure_ascii=False, default=str)


def setup_logging(level: str = "info", fmt: str = "text") -> None:
    """Configure the root logger.

    Raises ErrorKind.VALIDATION for an unknown level or format.
    """

    level_no = LEVELS.get(level.lower())
    if level_no is None:
        raise ErrorKind.VALIDATION.new("invalid log level: %s", level)

    handler = logging.StreamHandler(sys.stderr)
    fmt = fmt.lower()
    if fmt == "json":
        handler.setFormatter(JSONFormatter())
    elif fmt == "text":
        handler.setFormatter(logging.Formatter(TEXT_FORMAT))
    else:
        raise ErrorKind.VALIDATION.new("invalid log format: %s", fmt)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level_no)

    # uvicorn's own access log duplicates the app access log.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
