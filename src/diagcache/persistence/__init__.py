"""Durable store for the invalidation queue and cache audit logs."""

from diagcache.persistence.db import Database
from diagcache.persistence.tables import (
    Base,
    CacheErrorLogTable,
    CacheOperationLogTable,
    InvalidationQueueTable,
)

__all__ = [
    "Base",
    "CacheErrorLogTable",
    "CacheOperationLogTable",
    "Database",
    "InvalidationQueueTable",
]
