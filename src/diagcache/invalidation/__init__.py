"""Asynchronous cache invalidation.

Producers append to a durable queue; a single background processor applies
type-specific cascades to the cache with bounded retries.
"""

from diagcache.invalidation.handlers import cascade_for, run_cascade
from diagcache.invalidation.processor import BatchResult, InvalidationProcessor
from diagcache.invalidation.queue import InvalidationItem, InvalidationQueue, QueueStats

__all__ = [
    "BatchResult",
    "InvalidationItem",
    "InvalidationProcessor",
    "InvalidationQueue",
    "QueueStats",
    "cascade_for",
    "run_cascade",
]
