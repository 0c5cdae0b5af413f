"""Custom logging formatters for structured logging output."""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict

# Set on records by core.middleware.RequestContextFilter
REQUEST_FIELDS = ("request_id", "user_id", "ip", "path", "http_method", "status_code")


def _request_fields(record: logging.LogRecord) -> Dict[str, Any]:
    fields = {}
    for name in REQUEST_FIELDS:
        value = getattr(record, name, None)
        if value not in (None, "", "-"):
            fields[name] = value
    return fields


class StructuredJSONFormatter(logging.Formatter):
    """
    One JSON object per record.

    Request fields sit at the top level; the ``context`` extra written by
    ``AppLogger`` is nested under ``context``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_request_fields(record))

        context = getattr(record, "context", None)
        if isinstance(context, dict) and context:
            entry["context"] = context

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class PlainContextFormatter(logging.Formatter):
    """Human readable formatter that tolerates records without request context."""

    default_format = "%(asctime)s | %(levelname)s | %(name)s | [%(request_id)s %(user_id)s %(ip)s] %(message)s"

    def __init__(self, fmt=None, datefmt=None, style='%', **kwargs):
        super().__init__(fmt or self.default_format, datefmt, style, **kwargs)

    def format(self, record: logging.LogRecord) -> str:
        for attr in ("request_id", "user_id", "ip"):
            if not hasattr(record, attr):
                setattr(record, attr, "-")
        return super().format(record)
