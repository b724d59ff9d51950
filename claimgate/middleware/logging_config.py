"""
Logging configuration.

A context filter stamps every record with the request id and session actor.
JSON mode then writes one object per line (timestamp, level, logger,
message, request_id, actor, plus duration_ms, audit_event or exception when
attached). Text mode is a single line per record for local runs.

Tokens, passwords and passcodes never reach a log call; mobile numbers go
through `mask_mobile` first.
"""

import json
import logging
from datetime import datetime, timezone

from claimgate.middleware.request_context import get_actor, get_request_id

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s [%(request_id)s %(actor)s]: %(message)s"

_EXTRA_FIELDS = ("duration_ms", "audit_event")


class ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id() or "-"
        record.actor = get_actor() or "-"
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", "-"),
            "actor": getattr(record, "actor", "-"),
        }
        for field in _EXTRA_FIELDS:
            if hasattr(record, field):
                entry[field] = getattr(record, field)
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(log_level: str = "INFO", log_format: str = "json") -> None:
    """Install one stream handler on the root logger."""
    handler = logging.StreamHandler()
    handler.addFilter(ContextFilter())
    handler.setFormatter(JSONFormatter() if log_format == "json" else logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))


def mask_mobile(mobile: str | None) -> str:
    """Keep only the last four digits of a mobile number."""
    if not mobile:
        return ""
    return "*" * max(0, len(mobile) - 4) + mobile[-4:]
