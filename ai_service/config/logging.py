"""Structured JSON logging configuration.

One JSON object per line on stderr, so CLI output on stdout stays clean:

    {"ts": "2026-01-01T12:00:00+00:00", "level": "INFO", "logger": "ai_service.core.service", "msg": "...", ...}
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone

# Attributes callers may attach via ``extra={}``
_EXTRA_FIELDS = ("user_id", "feature_type", "provider", "model", "fingerprint", "state")


class JSONFormatter(logging.Formatter):
    """Emit each log record as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                payload[name] = getattr(record, name)

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def setup_logging(level_name: str = "INFO") -> None:
    """Configure the root logger with JSON output to stderr."""
    level = getattr(logging, level_name.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()
    root.addHandler(handler)

    # Quiet noisy third-party loggers
    for noisy in ("httpcore", "httpx", "openai", "anthropic"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
