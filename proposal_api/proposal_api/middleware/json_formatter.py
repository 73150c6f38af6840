"""JSON log formatter.

Emits each log record as a single-line JSON object so log aggregators can
index fields without regex parsing.  Enabled with
``PROPOSALHQ_STRUCTURED_LOGGING=true``.

Output schema per line::

    {
        "timestamp": "2026-05-15T12:34:56.789012+00:00",
        "level": "INFO",
        "logger": "proposal_api.access",
        "message": "request completed",
        "correlation_id": "...",    // lifted from "request" when present
        "user_id": "...",
        "request": { ... },          // from RequestLoggingMiddleware
        "exc_info": "Traceback ..."  // only on exceptions
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

# Request fields repeated at the top level so log queries can filter on them.
_LIFTED_REQUEST_FIELDS: tuple[str, ...] = ("correlation_id", "user_id")

# Third-party loggers that log every outbound call at INFO.
_CHATTY_LOGGERS: tuple[str, ...] = ("httpx", "httpcore")


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_data = getattr(record, "request", None)
        if isinstance(request_data, dict):
            for key in _LIFTED_REQUEST_FIELDS:
                if request_data.get(key) is not None:
                    payload[key] = request_data[key]
            payload["request"] = request_data

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)


def configure_structured_logging(level: int = logging.INFO) -> None:
    """Replace the root handlers with a single JSON ``StreamHandler``."""
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter())
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    for name in _CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
