"""Structured logging with per-request correlation ids and bound context fields.

Every record passing the root handler is stamped with the active correlation
id and the fields bound by :func:`log_context` (command, pool, farm, ...). JSON
output carries them as ``correlation_id`` and ``context``; plain output appends
the context as ``key=value`` pairs.
"""

from __future__ import annotations

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, Mapping, Optional

from ..config.settings import MonitoringConfig, get_app_config

_CORRELATION_ID: ContextVar[str] = ContextVar("correlation_id", default="-")
_CONTEXT: ContextVar[Mapping[str, Any]] = ContextVar("log_context", default={})
_configured = False

_RESERVED = frozenset(logging.LogRecord("", 0, "", 0, "", (), None).__dict__) | {"correlation_id", "context"}


class _ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = _CORRELATION_ID.get()
        record.context = dict(_CONTEXT.get())
        return True


class StructuredFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "-"),
        }
        context = getattr(record, "context", None)
        if context:
            payload["context"] = context
        extra = {key: value for key, value in record.__dict__.items() if key not in _RESERVED and not key.startswith("_")}
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PlainFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)s %(name)s [%(correlation_id)s] %(message)s")

    def format(self, record: logging.LogRecord) -> str:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        line = super().format(record)
        context = getattr(record, "context", None)
        if context:
            line += " " + " ".join(f"{key}={value}" for key, value in context.items())
        return line


def configure_logging(config: Optional[MonitoringConfig] = None, *, force: bool = False) -> None:
    global _configured
    if _configured and not force:
        return
    cfg = config or get_app_config().monitoring
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(_ContextFilter())
    handler.setFormatter(StructuredFormatter() if cfg.json_logs else PlainFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, cfg.log_level.upper(), logging.INFO))
    logging.captureWarnings(True)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    if not _configured:
        configure_logging()
    return logging.getLogger(name)


def current_correlation_id() -> str:
    return _CORRELATION_ID.get()


def current_context() -> Dict[str, Any]:
    return dict(_CONTEXT.get())


@contextmanager
def correlation_scope(correlation_id: Optional[str]) -> Iterator[None]:
    token = _CORRELATION_ID.set(correlation_id or "-")
    try:
        yield
    finally:
        _CORRELATION_ID.reset(token)


@contextmanager
def log_context(**fields: Any) -> Iterator[None]:
    """Bind ``fields`` to every record logged inside the block; nested scopes merge."""

    token = _CONTEXT.set({**_CONTEXT.get(), **fields})
    try:
        yield
    finally:
        _CONTEXT.reset(token)


__all__ = [
    "PlainFormatter",
    "StructuredFormatter",
    "configure_logging",
    "correlation_scope",
    "current_context",
    "current_correlation_id",
    "get_logger",
    "log_context",
]
