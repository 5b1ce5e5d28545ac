"""Cache layer for diagcache.

Provides a Redis-backed read-through cache:
- Versioned envelopes with optional compression for large payloads
- A store client that degrades to no-ops when Redis is not configured
- A manager whose operations never raise across the public API
- A static type registry mapping semantic types to key prefixes and TTLs
"""

from diagcache.cache.audit import CacheAuditLog
from diagcache.cache.codec import CacheEnvelope, decode, encode
from diagcache.cache.manager import (
    CacheHealth,
    CacheManager,
    CacheStats,
    CacheWrite,
    HealthStatus,
)
from diagcache.cache.read_through import cache_user_data
from diagcache.cache.store import CacheStore
from diagcache.cache.types import (
    CACHE_CONFIG,
    CacheTTL,
    CacheType,
    CacheTypeConfig,
    entity_pattern,
    generate_cache_key,
)

__all__ = [
    # Codec
    "CacheEnvelope",
    "decode",
    "encode",
    # Store and manager
    "CacheStore",
    "CacheManager",
    "CacheAuditLog",
    "CacheHealth",
    "CacheStats",
    "CacheWrite",
    "HealthStatus",
    # Registry and read path
    "CACHE_CONFIG",
    "CacheTTL",
    "CacheType",
    "CacheTypeConfig",
    "entity_pattern",
    "generate_cache_key",
    "cache_user_data",
]
