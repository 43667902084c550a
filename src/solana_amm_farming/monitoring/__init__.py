"""Logging and metrics for the builders, RPC access and analytics."""

from __future__ import annotations

from typing import Optional

from ..config.settings import AppConfig, get_app_config
from .logger import configure_logging, correlation_scope, get_logger, log_context
from .metrics import METRICS


def bootstrap_observability(*, config: Optional[AppConfig] = None) -> None:
    """Install the log handler for ``config`` and start from empty metrics."""

    app_config = config or get_app_config()
    configure_logging(app_config.monitoring, force=True)
    METRICS.reset()


__all__ = ["METRICS", "bootstrap_observability", "configure_logging", "correlation_scope", "get_logger", "log_context"]
