"""
Structured JSON logging.

Every log line is a single JSON object so it can be queried by field:

    {"ts": "...", "level": "info", "component": "orchestrator",
     "event": "analysis.completed", "job_id": "...", "exit_code": 0}

Usage:
    log = get_logger("orchestrator", service="api", job_id=job_id)
    log.info("analysis.started", repo_url=repo_url)
    log.error("analysis.error", exc=e)
"""

import json
import logging
import os
import sys
from datetime import UTC, datetime
from typing import Any

_LOGGER_NAME = "analysis_infra"
_configured = False


class JsonFormatter(logging.Formatter):
    """Render records produced by StructuredLogger as JSON lines."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname.lower(),
            "component": getattr(record, "component", record.name),
            "event": record.getMessage(),
        }
        payload.update(getattr(record, "fields", {}))
        return json.dumps(payload, default=str)


def configure_logging(level: str | None = None) -> None:
    """Install the JSON handler once per process."""
    global _configured
    if _configured:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger(_LOGGER_NAME)
    root.handlers = [handler]
    root.setLevel((level or os.environ.get("LOG_LEVEL", "INFO")).upper())
    root.propagate = False
    _configured = True


class StructuredLogger:
    """Thin wrapper that attaches bound context to every event."""

    def __init__(self, component: str, context: dict[str, Any]):
        self.component = component
        self.context = {k: v for k, v in context.items() if v is not None}
        self._logger = logging.getLogger(f"{_LOGGER_NAME}.{component}")

    def bind(self, **context: Any) -> "StructuredLogger":
        return StructuredLogger(self.component, {**self.context, **context})

    def _emit(self, level: int, event: str, exc: BaseException | None, fields: dict) -> None:
        if not self._logger.isEnabledFor(level):
            return
        merged = {**self.context, **{k: v for k, v in fields.items() if v is not None}}
        if exc is not None:
            merged["error_type"] = type(exc).__name__
            merged["error_message"] = str(exc)
        self._logger.log(level, event, extra={"component": self.component, "fields": merged})

    def debug(self, event: str, exc: BaseException | None = None, **fields: Any) -> None:
        self._emit(logging.DEBUG, event, exc, fields)

    def info(self, event: str, exc: BaseException | None = None, **fields: Any) -> None:
        self._emit(logging.INFO, event, exc, fields)

    def warn(self, event: str, exc: BaseException | None = None, **fields: Any) -> None:
        self._emit(logging.WARNING, event, exc, fields)

    warning = warn

    def error(self, event: str, exc: BaseException | None = None, **fields: Any) -> None:
        self._emit(logging.ERROR, event, exc, fields)


def get_logger(component: str, **context: Any) -> StructuredLogger:
    """Return a structured logger for a component with bound context fields."""
    return StructuredLogger(component, context)
