# src/vidflow/core/logging.py
"""Logging helpers for VidFlow."""

import json
import logging
import sys

from rich.logging import RichHandler

from vidflow import __version__
from vidflow.config import config

_LOGGING_INITIALIZED = False

_RESERVED_ATTRS = frozenset(
    {
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        data = {
            "time": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S%z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        # Attach extras if present
        for key, value in record.__dict__.items():
            if key in _RESERVED_ATTRS:
                continue
            try:
                json.dumps(value)
                data[key] = value
            except (TypeError, ValueError):
                data[key] = str(value)
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(data, ensure_ascii=False)


def init_logging(
    level: str | None = None,
    format: str | None = None,
    include_trace: bool = False,
) -> None:
    """
    Initialize global logging configuration for VidFlow.

    Environment variables (read through ``config.system``):
      - VIDFLOW_LOG_LEVEL: DEBUG|INFO|WARNING|ERROR|CRITICAL (default INFO)
      - VIDFLOW_LOG_FORMAT: plain|rich|json (default rich)
    """
    global _LOGGING_INITIALIZED
    if _LOGGING_INITIALIZED:
        return

    resolved_level = (level or config.system.log_level or "INFO").upper()
    resolved_format = (format or config.system.log_format or "rich").lower()
    log_level = logging.getLevelNamesMapping().get(resolved_level, logging.INFO)

    root = logging.getLogger()
    root.setLevel(log_level)
    for h in list(root.handlers):
        root.removeHandler(h)

    handler: logging.Handler
    if resolved_format == "json":
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
    elif resolved_format == "rich":
        handler = RichHandler(
            level=log_level,
            rich_tracebacks=include_trace,
            show_time=True,
            show_level=True,
            show_path=False,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    handler.setLevel(log_level)
    root.addHandler(handler)

    # Reduce noisy libraries
    for noisy in ("uvicorn", "asyncio", "httpx", "LiteLLM", "aiosqlite"):
        logging.getLogger(noisy).setLevel(max(log_level, logging.WARNING))

    logging.getLogger("vidflow.start").info(
        "Initializing logging | version=%s level=%s format=%s include_trace=%s",
        __version__,
        resolved_level,
        resolved_format,
        include_trace,
    )

    _LOGGING_INITIALIZED = True


def get_logger(name: str | None = None) -> logging.Logger:
    """
    Get a logger with the provided name, or the package logger if None.
    """
    return logging.getLogger(name or "vidflow")
