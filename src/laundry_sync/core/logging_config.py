"""Shared logging configuration for the service and its background workers."""

from __future__ import annotations

import logging
from collections import deque
from datetime import UTC, datetime

from pythonjsonlogger import jsonlogger

from laundry_sync.core.settings import settings

_CONFIGURED = False
_LOG_BUFFER: deque[dict[str, str]] = deque(maxlen=200)


class _ServiceNameFilter(logging.Filter):
    def __init__(self, service_name: str) -> None:
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - trivial
        record.service = self.service_name
        return True


class _BufferHandler(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:  # pragma: no cover - trivial
        try:
            timestamp = datetime.fromtimestamp(record.created, UTC).isoformat()
            entry = {
                "time": timestamp,
                "level": record.levelname,
                "name": record.name,
                "message": record.getMessage(),
            }
        except (TypeError, ValueError):
            self.handleError(record)
            return
        _LOG_BUFFER.appendleft(entry)


def setup_logging(service_name: str | None = None, level: str | None = None) -> None:
    """Configure root logging with a JSON formatter and the service name."""

    global _CONFIGURED
    if _CONFIGURED:
        return

    handler = logging.StreamHandler()
    handler.setFormatter(
        jsonlogger.JsonFormatter("%(asctime)s %(levelname)s %(name)s %(message)s %(service)s")
    )
    handler.addFilter(_ServiceNameFilter(service_name or settings.service_name))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.addHandler(_BufferHandler())
    root.setLevel((level or settings.log_level).upper())
    logging.captureWarnings(True)
    _CONFIGURED = True


def get_log_buffer(limit: int = 100) -> list[dict[str, str]]:
    """Return the most recent log entries, newest first."""
    return list(_LOG_BUFFER)[:limit]


__all__ = ["setup_logging", "get_log_buffer"]
