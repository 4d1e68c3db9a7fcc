"""
Structured Logging Infrastructure

Production writes one JSON object per line; DEBUG mode writes readable
lines. Two context values are stamped on every record:

- ``correlation_id``: one per webhook request, scheduler run or queued
  chat message
- ``chat``: the masked chat id of the message being processed, if any

Usage::

    logger = get_logger(__name__)
    logger.info("Survey recorded", extra_data={"rating": 4})
"""
import json
import logging
import sys
import time
import uuid
from contextvars import ContextVar
from datetime import datetime, timezone
from functools import wraps
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")
chat_context_var: ContextVar[str] = ContextVar("chat_context", default="")

_LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
_LOG_FILE_BACKUPS = 5

_TEXT_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | [%(correlation_id)s %(chat)s] | %(message)s"

_QUIET_LOGGERS = {
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "groq": logging.WARNING,
    "pypdf": logging.ERROR,
}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, tz=timezone.utc)
        entry: dict[str, Any] = {
            "timestamp": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}.{record.funcName}:{record.lineno}",
        }

        correlation_id = correlation_id_var.get()
        if correlation_id:
            entry["correlation_id"] = correlation_id
        chat = chat_context_var.get()
        if chat:
            entry["chat"] = chat

        extra_data = getattr(record, "extra_data", None)
        if extra_data:
            entry["extra"] = extra_data
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        # Indonesian names and messages stay readable
        return json.dumps(entry, ensure_ascii=False, default=str)


def _level_method(level: int):
    def method(self, msg: str, *args, extra_data: Optional[dict[str, Any]] = None, **kwargs) -> None:
        if not self.isEnabledFor(level):
            return
        if extra_data:
            kwargs["extra"] = {**kwargs.get("extra", {}), "extra_data": extra_data}
        self._log(level, msg, args, **kwargs)

    method.__name__ = logging.getLevelName(level).lower()
    return method


class StructuredLogger(logging.Logger):
    """``logging.Logger`` whose level methods take an ``extra_data`` dict."""

    debug = _level_method(logging.DEBUG)
    info = _level_method(logging.INFO)
    warning = _level_method(logging.WARNING)
    error = _level_method(logging.ERROR)
    critical = _level_method(logging.CRITICAL)


logging.setLoggerClass(StructuredLogger)


class ContextFilter(logging.Filter):
    """Copies the context values onto the record for the text format."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = correlation_id_var.get() or "-"
        record.chat = chat_context_var.get() or "-"
        return True


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    app_name: str = "ppid-bot",
    log_file: Optional[str] = None,
) -> None:
    """
    Configure the root logger.

    Args:
        level: DEBUG, INFO, WARNING, ERROR or CRITICAL
        json_format: JSON lines (production) instead of readable text
        app_name: logged once so restarts are easy to find
        log_file: optional rotating file next to stdout
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric_level)
    root.handlers.clear()

    formatter: logging.Formatter
    if json_format:
        formatter = JSONFormatter()
    else:
        formatter = logging.Formatter(_TEXT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            RotatingFileHandler(path, maxBytes=_LOG_FILE_MAX_BYTES, backupCount=_LOG_FILE_BACKUPS, encoding="utf-8")
        )

    for handler in handlers:
        handler.setLevel(numeric_level)
        handler.setFormatter(formatter)
        handler.addFilter(ContextFilter())
        root.addHandler(handler)

    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    get_logger(__name__).info(
        "Logging configured",
        extra_data={"app_name": app_name, "level": level.upper(), "log_file": log_file or None},
    )


def generate_correlation_id() -> str:
    return uuid.uuid4().hex[:8]


def set_correlation_id(correlation_id: Optional[str] = None) -> str:
    """Set (or generate) the id for the current request or message."""
    cid = correlation_id or generate_correlation_id()
    correlation_id_var.set(cid)
    return cid


def get_correlation_id() -> str:
    cid = correlation_id_var.get()
    if not cid:
        cid = set_correlation_id()
    return cid


def bind_chat_context(masked_chat_id: str) -> None:
    """Tag every following record in this task with the (already masked) chat id."""
    chat_context_var.set(masked_chat_id)


def get_logger(name: str) -> StructuredLogger:
    return logging.getLogger(name)  # type: ignore[return-value]


def log_async_operation(operation_name: str):
    """Log start, duration and outcome of the decorated coroutine."""

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            logger = get_logger(func.__module__)
            started = time.perf_counter()
            logger.debug(f"Starting {operation_name}", extra_data={"operation": operation_name})

            try:
                result = await func(*args, **kwargs)
            except Exception as exc:
                logger.error(
                    f"Failed {operation_name}: {exc}",
                    extra_data={
                        "operation": operation_name,
                        "status": "failed",
                        "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                    },
                    exc_info=True,
                )
                raise

            logger.info(
                f"Completed {operation_name}",
                extra_data={
                    "operation": operation_name,
                    "status": "completed",
                    "duration_ms": round((time.perf_counter() - started) * 1000, 1),
                },
            )
            return result

        return wrapper

    return decorator
