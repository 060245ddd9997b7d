"""Observability - logging and metrics."""

from .logger import LogContext, clear_all_context, configure_logging, current_context
from .metrics import LoggerBackend, MetricsCollector, get_global_collector

__all__ = [
    "MetricsCollector",
    "LoggerBackend",
    "get_global_collector",
    "configure_logging",
    "current_context",
    "clear_all_context",
    "LogContext",
]
