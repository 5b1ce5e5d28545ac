"""Prometheus metrics for the cache subsystem.

Metrics are a sink only: recording never raises into cache or invalidation
code paths, and every helper is a no-op when metrics are disabled.

Usage:
    from diagcache.observability.metrics import record_cache_hit

    record_cache_hit("user:purchase")
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from prometheus_client import REGISTRY, Counter, Histogram, generate_latest

from diagcache.config import settings

logger = logging.getLogger(__name__)


@dataclass
class MetricsRegistry:
    """Registry for Prometheus metrics."""

    # Cache metrics
    cache_hits_total: Any = None
    cache_misses_total: Any = None
    cache_errors_total: Any = None
    cache_operation_duration_seconds: Any = None

    # Invalidation metrics
    invalidation_items_total: Any = None
    invalidation_batch_duration_seconds: Any = None

    # Internal state
    _initialized: bool = field(default=False, repr=False)
    _registry: Any = field(default=None, repr=False)

    def initialize(self) -> None:
        """Initialize Prometheus metrics."""
        if self._initialized:
            return

        if not settings.enable_metrics:
            logger.info("Metrics are disabled")
            self._initialized = True
            return

        try:
            self._register()
        except Exception as e:
            logger.warning(f"Prometheus metrics unavailable: {e}")
            self._registry = None
        self._initialized = True

    def _register(self) -> None:
        self.cache_hits_total = Counter(
            "diagcache_cache_hits_total",
            "Cache hits",
            ["key_space"],
        )

        self.cache_misses_total = Counter(
            "diagcache_cache_misses_total",
            "Cache misses",
            ["key_space"],
        )

        self.cache_errors_total = Counter(
            "diagcache_cache_errors_total",
            "Cache operations that failed and degraded to an empty result",
            ["operation"],
        )

        self.cache_operation_duration_seconds = Histogram(
            "diagcache_cache_operation_duration_seconds",
            "Cache operation latency in seconds",
            ["operation"],
            buckets=(0.0005, 0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0),
        )

        self.invalidation_items_total = Counter(
            "diagcache_invalidation_items_total",
            "Invalidation queue items handled, by outcome",
            ["cache_type", "outcome"],
        )

        self.invalidation_batch_duration_seconds = Histogram(
            "diagcache_invalidation_batch_duration_seconds",
            "Invalidation batch processing time in seconds",
            buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
        )

        self._registry = REGISTRY
        logger.info("Prometheus metrics initialized")

    def generate_latest(self) -> bytes:
        """Generate Prometheus metrics in exposition format."""
        if self._registry is None:
            return b"# Metrics disabled\n"
        return generate_latest(self._registry)


# Global metrics registry
metrics_registry = MetricsRegistry()


def get_metrics() -> MetricsRegistry:
    """Get the global metrics registry.

    Initializes metrics on first access.
    """
    if not metrics_registry._initialized:
        metrics_registry.initialize()
    return metrics_registry


def key_space(key: str) -> str:
    """Reduce a cache key to its first two segments for low-cardinality labels.

    Example:
        user:purchase:u-123:page-2 -> user:purchase
    """
    return ":".join(key.split(":")[:2]) or "unknown"


def record_cache_hit(space: str) -> None:
    try:
        metrics = get_metrics()
        if metrics.cache_hits_total:
            metrics.cache_hits_total.labels(key_space=space).inc()
    except Exception as e:
        logger.debug(f"Failed to record cache hit metric: {e}")


def record_cache_miss(space: str) -> None:
    try:
        metrics = get_metrics()
        if metrics.cache_misses_total:
            metrics.cache_misses_total.labels(key_space=space).inc()
    except Exception as e:
        logger.debug(f"Failed to record cache miss metric: {e}")


def record_cache_error(operation: str) -> None:
    try:
        metrics = get_metrics()
        if metrics.cache_errors_total:
            metrics.cache_errors_total.labels(operation=operation).inc()
    except Exception as e:
        logger.debug(f"Failed to record cache error metric: {e}")


def record_cache_operation(operation: str, duration: float) -> None:
    """Record cache operation duration.

    Args:
        operation: Cache operation (get, set, delete, ...)
        duration: Operation duration in seconds
    """
    try:
        metrics = get_metrics()
        if metrics.cache_operation_duration_seconds:
            metrics.cache_operation_duration_seconds.labels(operation=operation).observe(
                duration
            )
    except Exception as e:
        logger.debug(f"Failed to record cache operation metric: {e}")


def record_invalidation_item(cache_type: str, outcome: str) -> None:
    """Record one invalidation item outcome (processed, failed, skipped)."""
    try:
        metrics = get_metrics()
        if metrics.invalidation_items_total:
            metrics.invalidation_items_total.labels(cache_type=cache_type, outcome=outcome).inc()
    except Exception as e:
        logger.debug(f"Failed to record invalidation item metric: {e}")


def record_invalidation_batch(duration: float) -> None:
    try:
        metrics = get_metrics()
        if metrics.invalidation_batch_duration_seconds:
            metrics.invalidation_batch_duration_seconds.observe(duration)
    except Exception as e:
        logger.debug(f"Failed to record invalidation batch metric: {e}")
