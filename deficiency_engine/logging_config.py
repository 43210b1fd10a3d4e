# deficiency_engine/logging_config.py
from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

from .invocation import get_invocation_id

# Copied from `extra={...}` onto the JSON line when present on the record
STRUCTURED_EXTRAS = (
    "task",
    "property_id",
    "inspection_id",
    "deficient_item_id",
    "state",
    "previous_state",
)


def _env_level(name: str, default: str) -> str:
    return (os.getenv(name) or default).upper()


class JsonFormatter(logging.Formatter):
    """One JSON object per line, tagged with the current invocation id."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        iid = get_invocation_id()
        if iid:
            payload["invocation_id"] = iid

        payload.update({k: getattr(record, k) for k in STRUCTURED_EXTRAS if hasattr(record, k)})

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_logging() -> None:
    """Route everything through one stdout JSON handler. Safe to call repeatedly."""
    level = _env_level("LOG_LEVEL", "INFO")

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)

    logging.getLogger("celery").setLevel(level)
    logging.getLogger("httpx").setLevel(_env_level("HTTP_LOG_LEVEL", "WARNING"))
    logging.getLogger("sqlalchemy.engine").setLevel(_env_level("SQL_LOG_LEVEL", "WARNING"))
