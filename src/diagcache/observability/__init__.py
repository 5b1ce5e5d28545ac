"""Logging and metrics for diagcache."""

from diagcache.observability.logging import (
    ConsoleFormatter,
    JsonFormatter,
    LogContext,
    configure_logging,
)
from diagcache.observability.metrics import MetricsRegistry, get_metrics

__all__ = [
    "ConsoleFormatter",
    "JsonFormatter",
    "LogContext",
    "MetricsRegistry",
    "configure_logging",
    "get_metrics",
]
