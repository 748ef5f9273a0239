from __future__ import annotations

import json
import logging
import sys
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sshauditor.config import settings


_RESERVED_LOG_KEYS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "message",
    "stacklevel",
    "taskName",
}


class JsonLogFormatter(logging.Formatter):
    """Minimal JSON formatter for structured logs."""

    def format(self, record: logging.LogRecord) -> str:
        base: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }
        event = getattr(record, "event", None)
        if event:
            base["event"] = event
        payload = getattr(record, "payload", None)
        if isinstance(payload, dict):
            base.update(payload)
        for key, value in record.__dict__.items():
            if key in _RESERVED_LOG_KEYS or key in base or key in ("event", "payload"):
                continue
            base[key] = value
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        return json.dumps(base, default=str)


_logging_configured = False


def configure_logging(level: Optional[str] = None, force: bool = False) -> None:
    """Configure root logging with JSON output on stderr once."""
    global _logging_configured
    if _logging_configured and not force:
        return
    log_level = (level or settings.log_level).upper()
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonLogFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    # paramiko logs every failed negotiation at ERROR; keep it quiet unless debugging
    logging.getLogger("paramiko").setLevel(logging.DEBUG if log_level == "DEBUG" else logging.CRITICAL)

    _logging_configured = True


def log_event(logger: logging.Logger, event: str, level: int = logging.INFO, **payload: Any) -> None:
    """Helper to emit structured events consistently."""
    logger.log(level, event, extra={"event": event, "payload": payload})


class Timer:
    """Lightweight context manager for timing blocks."""

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.duration = time.perf_counter() - self._start

    @property
    def duration_ms(self) -> float:
        return round(self.duration * 1000, 2)
