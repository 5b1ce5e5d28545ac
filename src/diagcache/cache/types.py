"""Cache type registry for diagcache.

Key format: {prefix}{identifier}[:{suffix}]

Where:
- prefix: per-type namespace, e.g. "user:purchase:" or "order:details:"
- identifier: user id, order id or external customer id
- suffix: optional variant (page, filter hash, ...)

Every key in the system comes from generate_cache_key(); cascade invalidation
relies on the prefix to delete all entries of one entity with a glob.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum, IntEnum
from types import MappingProxyType
from typing import Mapping


class CacheTTL(IntEnum):
    """TTL tiers in seconds."""

    SHORT = 300  # 5 minutes
    MEDIUM = 1800  # 30 minutes
    LONG = 3600  # 1 hour
    EXTENDED = 86400  # 24 hours
    PERMANENT = 604800  # 7 days


@dataclass(frozen=True)
class CacheTypeConfig:
    """Static configuration for one semantic cache type."""

    prefix: str
    ttl_seconds: int


class CacheType(str, Enum):
    """Semantic cache types."""

    PURCHASE_HISTORY = "purchase_history"
    APPOINTMENTS = "appointments"
    ANALYTICS = "analytics"
    ORDER_DETAILS = "order_details"
    USER_PROFILE = "user_profile"
    SWELL_CUSTOMER = "swell_customer"
    SYSTEM_STATS = "system_stats"
    SECURITY_EVENTS = "security_events"

    @property
    def config(self) -> CacheTypeConfig:
        return CACHE_CONFIG[self]

    @property
    def prefix(self) -> str:
        return CACHE_CONFIG[self].prefix

    @property
    def ttl(self) -> int:
        return CACHE_CONFIG[self].ttl_seconds

    @classmethod
    def parse(cls, value: str) -> CacheType | None:
        """Look up a type by its stored string value, None if unknown."""
        try:
            return cls(value)
        except ValueError:
            return None


CACHE_CONFIG: Mapping[CacheType, CacheTypeConfig] = MappingProxyType(
    {
        CacheType.PURCHASE_HISTORY: CacheTypeConfig("user:purchase:", CacheTTL.MEDIUM),
        CacheType.APPOINTMENTS: CacheTypeConfig("user:appointments:", CacheTTL.SHORT),
        CacheType.ANALYTICS: CacheTypeConfig("user:analytics:", CacheTTL.LONG),
        CacheType.ORDER_DETAILS: CacheTypeConfig("order:details:", CacheTTL.MEDIUM),
        CacheType.USER_PROFILE: CacheTypeConfig("user:profile:", CacheTTL.EXTENDED),
        CacheType.SWELL_CUSTOMER: CacheTypeConfig("swell:customer:", CacheTTL.LONG),
        CacheType.SYSTEM_STATS: CacheTypeConfig("system:stats:", CacheTTL.SHORT),
        CacheType.SECURITY_EVENTS: CacheTypeConfig("security:events:", CacheTTL.EXTENDED),
    }
)

# Types keyed by user id; used for full-user flushes
USER_SCOPED_TYPES: tuple[CacheType, ...] = (
    CacheType.PURCHASE_HISTORY,
    CacheType.APPOINTMENTS,
    CacheType.ANALYTICS,
    CacheType.USER_PROFILE,
)


def generate_cache_key(cache_type: CacheType, identifier: str, suffix: str | None = None) -> str:
    """Build the cache key for an entity of the given type."""
    base_key = f"{cache_type.prefix}{identifier}"
    return f"{base_key}:{suffix}" if suffix else base_key


def entity_pattern(cache_type: CacheType, identifier: str) -> str:
    """Glob matching every key of one entity (all suffixes).

    Use with SCAN + DEL for cascade invalidation.
    """
    return f"{generate_cache_key(cache_type, identifier)}*"


def parse_identifier(cache_type: CacheType, key: str) -> str | None:
    """Extract the entity identifier from a key of the given type.

    Returns None if the key does not carry the type's prefix or has an empty
    identifier. Any suffix after the first ':' is dropped.
    """
    prefix = cache_type.prefix
    if not key.startswith(prefix):
        return None
    identifier = key[len(prefix) :].split(":", 1)[0]
    return identifier or None
