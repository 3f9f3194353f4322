"""Structured logging: a readable console stream plus JSON lines on disk."""

from __future__ import annotations

import json
import logging
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import TimedRotatingFileHandler
from typing import Any

from .config import AppConfig

REQUEST_ID: ContextVar[str] = ContextVar("notionally_request_id", default="-")

CONSOLE_FORMAT = "%(asctime)s %(levelname)-7s [%(request_id)s] %(name)s: %(message)s"
QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "apscheduler.executors.default")


def log_event(logger: logging.Logger, level: int, event: str, **fields: Any) -> None:
    """Emit ``{"event": event, **fields}`` as one compact JSON message."""
    logger.log(level, json.dumps({"event": event, **fields}, default=str, separators=(",", ":")))


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``extra_fields`` passed through ``extra=`` are merged in."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "source": record.name,
            "request_id": getattr(record, "request_id", "-"),
            "environment": getattr(record, "environment", "unknown"),
            "event": getattr(record, "event", record.funcName),
            "message": record.getMessage(),
        }
        extra = getattr(record, "extra_fields", None)
        if extra:
            entry.update(extra)
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class ContextFilter(logging.Filter):
    """Stamps the environment and the active request id on each record."""

    def __init__(self, environment: str) -> None:
        super().__init__()
        self.environment = environment

    def filter(self, record: logging.LogRecord) -> bool:
        record.environment = self.environment
        record.request_id = REQUEST_ID.get()
        if not hasattr(record, "event"):
            record.event = record.funcName
        return True


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
    return handler


def _file_handler(config: AppConfig) -> logging.Handler:
    config.log_path.parent.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        config.log_path,
        when="midnight",
        backupCount=14,
        utc=True,
        encoding="utf-8",
    )
    handler.setFormatter(JsonFormatter())
    return handler


def configure_logging(config: AppConfig) -> None:
    """Replace the root handlers with console output and a rotating JSON file."""
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(logging.DEBUG if config.environment == "development" else logging.INFO)

    context = ContextFilter(config.environment)
    for handler in (_console_handler(), _file_handler(config)):
        handler.addFilter(context)
        root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
