import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Union

_configured = False

# `extra=` keys the collection code attaches; copied onto the JSON line when present
STRUCTURED_FIELDS = (
    "request_id",
    "run_id",
    "company_name",
    "consumer_type",
    "source",
    "step",
    "deleted_runs",
)


class JsonFormatter(logging.Formatter):
    """
    One JSON object per line, stamped with the record's own creation time
    and carrying whichever collection fields the caller passed via `extra=`.
    """

    service = "salesintel"

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        payload: Dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service,
        }
        payload.update(
            {name: getattr(record, name) for name in STRUCTURED_FIELDS if hasattr(record, name)}
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def resolve_level(level: Union[int, str, None]) -> int:
    """Accept numeric levels or names such as "debug"; unknown names mean INFO."""
    if level is None:
        return logging.INFO
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def configure_logging(level: Union[int, str, None] = None) -> None:
    """
    Send root logging to stdout as JSON lines.

    Both the API process and the Celery worker call this at import time;
    only the first call installs the handler.
    """
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.setLevel(resolve_level(level))
    root.handlers.clear()
    root.addHandler(handler)

    _configured = True
