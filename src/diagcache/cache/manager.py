"""Cache manager: the public cache API.

Every operation is a safe no-op when the store is disabled or failing: reads
return None/empty, writes return False/0. Callers never distinguish "miss"
from "cache down" and always recompute from the source of truth.

Mutating operations (and GET hit/miss) are recorded in the audit log on a
fire-and-forget basis; audit failures never reach the caller.

Example:
    manager = CacheManager(CacheStore.from_config(url, token), audit)
    await manager.set("user:profile:u-1", {"name": "Ada"}, ttl=300)
    profile = await manager.get("user:profile:u-1")
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Sequence
from uuid import uuid4

from diagcache.cache.codec import DEFAULT_COMPRESSION_THRESHOLD, decode, encode_entry
from diagcache.cache.types import USER_SCOPED_TYPES, entity_pattern
from diagcache.exceptions import CacheStoreError
from diagcache.observability.metrics import (
    key_space,
    record_cache_error,
    record_cache_hit,
    record_cache_miss,
    record_cache_operation,
)

if TYPE_CHECKING:
    from diagcache.cache.audit import CacheAuditLog
    from diagcache.cache.store import CacheStore

logger = logging.getLogger(__name__)

HEALTH_CHECK_PREFIX = "health:check:"
HEALTH_CHECK_TTL = 30


class HealthStatus(str, Enum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass(frozen=True)
class CacheHealth:
    """Result of a cache round-trip health check."""

    status: HealthStatus
    latency_ms: float
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status.value, "latency_ms": self.latency_ms}
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass(frozen=True)
class CacheWrite:
    """One entry of a bulk write."""

    key: str
    value: Any
    ttl: int | None = None


@dataclass
class CacheStats:
    total_keys: int = 0
    memory_usage: str = "unknown"
    hit_rate: float = 0.0
    error_rate: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_keys": self.total_keys,
            "memory_usage": self.memory_usage,
            "hit_rate": self.hit_rate,
            "error_rate": self.error_rate,
        }


class CacheManager:
    """Envelope-aware cache operations over a CacheStore."""

    def __init__(
        self,
        store: CacheStore,
        audit: CacheAuditLog | None = None,
        *,
        compression_threshold: int = DEFAULT_COMPRESSION_THRESHOLD,
        healthy_latency_ms: float = 100.0,
    ) -> None:
        self.store = store
        self.audit = audit
        self.compression_threshold = compression_threshold
        self.healthy_latency_ms = healthy_latency_ms

    @property
    def available(self) -> bool:
        return self.store.enabled

    # -------------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------------

    def _log_operation(self, operation: str, key: str, metadata: dict[str, Any]) -> None:
        if self.audit is not None:
            self.audit.record_operation(operation, key, metadata)

    def _log_error(self, operation: str, key: str, error: BaseException) -> None:
        logger.error(f"Cache {operation} error for {key!r}: {error}")
        record_cache_error(operation)
        if self.audit is not None:
            self.audit.record_error(operation, key, error)

    # -------------------------------------------------------------------------
    # Single-key operations
    # -------------------------------------------------------------------------

    async def set(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Store a value, with a TTL in seconds when given.

        Returns True only on a confirmed write.
        """
        if not self.store.enabled:
            return False

        start = time.perf_counter()
        try:
            entry = encode_entry(value, compression_threshold=self.compression_threshold)
            written = await self.store.set(key, entry.payload, ttl)
        except Exception as e:
            self._log_error("SET", key, e)
            return False
        record_cache_operation("set", time.perf_counter() - start)

        self._log_operation(
            "SET", key, {"size": entry.size, "compressed": entry.compressed, "ttl": ttl}
        )
        return written

    async def get(self, key: str) -> Any | None:
        """Read a value, or None on miss, corruption, or any store failure.

        Corrupt entries are deleted so the next read repopulates them.
        """
        if not self.store.enabled:
            return None

        start = time.perf_counter()
        try:
            raw = await self.store.get(key)
        except Exception as e:
            self._log_error("GET", key, e)
            return None
        record_cache_operation("get", time.perf_counter() - start)

        if raw is None:
            record_cache_miss(key_space(key))
            self._log_operation("GET", key, {"hit": False})
            return None

        envelope = decode(raw)
        if envelope is None:
            logger.warning(f"Invalid cache structure, deleting key: {key}")
            record_cache_miss(key_space(key))
            await self.delete(key)
            return None

        record_cache_hit(key_space(key))
        self._log_operation("GET", key, {"hit": True, "cached_at": envelope.cached_at})
        return envelope.data

    async def delete(self, key: str, *, raise_on_error: bool = False) -> bool:
        """Delete one key. Returns True if a key was removed.

        Raises:
            CacheStoreError: store failure, only with raise_on_error=True
        """
        if not self.store.enabled:
            return False

        try:
            deleted = await self.store.delete(key)
        except Exception as e:
            self._log_error("DELETE", key, e)
            if raise_on_error:
                raise CacheStoreError("DELETE", key, e) from e
            return False

        self._log_operation("DELETE", key, {"deleted": deleted > 0})
        return deleted > 0

    async def delete_pattern(self, pattern: str, *, raise_on_error: bool = False) -> int:
        """Delete every key matching a glob. Returns the number removed.

        Zero is a valid result, not an error.

        Raises:
            CacheStoreError: store failure, only with raise_on_error=True
        """
        if not self.store.enabled:
            return 0

        try:
            keys = await self.store.keys(pattern)
            if not keys:
                logger.debug(f"No cache keys found for pattern: {pattern}")
                return 0
            deleted = await self.store.delete(*keys)
        except Exception as e:
            self._log_error("DELETE_PATTERN", pattern, e)
            if raise_on_error:
                raise CacheStoreError("DELETE_PATTERN", pattern, e) from e
            return 0

        self._log_operation(
            "DELETE_PATTERN", pattern, {"keys_found": len(keys), "keys_deleted": deleted}
        )
        return deleted

    async def exists(self, key: str) -> bool:
        try:
            return await self.store.exists(key)
        except Exception as e:
            self._log_error("EXISTS", key, e)
            return False

    async def get_ttl(self, key: str) -> int:
        """Remaining TTL in seconds, -1 if unknown or the store is unavailable."""
        try:
            return await self.store.ttl(key)
        except Exception as e:
            self._log_error("TTL", key, e)
            return -1

    async def expire(self, key: str, ttl: int) -> bool:
        if not self.store.enabled:
            return False
        try:
            updated = await self.store.expire(key, ttl)
        except Exception as e:
            self._log_error("EXPIRE", key, e)
            return False
        self._log_operation("EXPIRE", key, {"ttl": ttl, "updated": updated})
        return updated

    # -------------------------------------------------------------------------
    # Bulk operations
    # -------------------------------------------------------------------------

    async def mget(self, keys: Sequence[str]) -> dict[str, Any]:
        """Read several keys at once. Missing and corrupt keys are omitted.

        Corrupt entries are deleted, as in get().
        """
        if not self.store.enabled or not keys:
            return {}

        try:
            values = await self.store.mget(keys)
        except Exception as e:
            self._log_error("MGET", ",".join(keys), e)
            return {}

        result: dict[str, Any] = {}
        corrupt: list[str] = []
        for key, raw in zip(keys, values):
            if raw is None:
                continue
            envelope = decode(raw)
            if envelope is None:
                logger.warning(f"Invalid cache structure, deleting key: {key}")
                corrupt.append(key)
                continue
            result[key] = envelope.data

        if corrupt:
            try:
                await self.store.delete(*corrupt)
            except Exception as e:
                self._log_error("DELETE", ",".join(corrupt), e)
        return result

    async def mset(self, entries: Sequence[CacheWrite]) -> bool:
        """Write several entries in one pipeline.

        Fails as a group: returns False if any individual write failed.
        """
        if not self.store.enabled or not entries:
            return False

        try:
            encoded = [
                (
                    entry.key,
                    encode_entry(
                        entry.value, compression_threshold=self.compression_threshold
                    ).payload,
                    entry.ttl,
                )
                for entry in entries
            ]
            results = await self.store.mset(encoded)
        except Exception as e:
            self._log_error("MSET", f"{len(entries)} entries", e)
            return False

        ok = len(results) == len(entries) and all(bool(result) for result in results)
        self._log_operation("MSET", entries[0].key, {"entries": len(entries), "ok": ok})
        return ok

    # -------------------------------------------------------------------------
    # Admin / monitoring
    # -------------------------------------------------------------------------

    async def flush_user_cache(self, user_id: str) -> int:
        """Delete every user-scoped cache entry for one user.

        Admin-only: application writes must go through the invalidation queue.
        """
        total = 0
        for cache_type in USER_SCOPED_TYPES:
            total += await self.delete_pattern(entity_pattern(cache_type, user_id))
        return total

    async def health_check(self) -> CacheHealth:
        """Round-trip a throwaway key and classify the latency."""
        start = time.perf_counter()

        def elapsed_ms() -> float:
            return round((time.perf_counter() - start) * 1000, 2)

        if not self.store.enabled:
            return CacheHealth(
                status=HealthStatus.UNHEALTHY,
                latency_ms=elapsed_ms(),
                error="Cache store not available",
            )

        test_key = f"{HEALTH_CHECK_PREFIX}{uuid4().hex}"
        test_value = {"timestamp": datetime.now(UTC).isoformat()}

        try:
            await self.set(test_key, test_value, HEALTH_CHECK_TTL)
            retrieved = await self.get(test_key)
            await self.delete(test_key)
        except Exception as e:
            return CacheHealth(
                status=HealthStatus.UNHEALTHY, latency_ms=elapsed_ms(), error=str(e)
            )

        latency = elapsed_ms()
        if retrieved != test_value:
            return CacheHealth(
                status=HealthStatus.UNHEALTHY,
                latency_ms=latency,
                error="Data integrity check failed",
            )

        status = (
            HealthStatus.HEALTHY if latency < self.healthy_latency_ms else HealthStatus.DEGRADED
        )
        return CacheHealth(status=status, latency_ms=latency)

    async def get_stats(self) -> CacheStats:
        """Key count, memory usage and server-side hit rate."""
        if not self.store.enabled:
            return CacheStats(memory_usage="unavailable", error_rate=1.0)

        try:
            total_keys = await self.store.dbsize()
            memory = await self.store.info("memory")
            stats = await self.store.info("stats")
        except Exception as e:
            logger.error(f"Cache STATS error: {e}")
            return CacheStats(memory_usage="unknown", error_rate=1.0)

        hits = int(stats.get("keyspace_hits", 0))
        misses = int(stats.get("keyspace_misses", 0))
        lookups = hits + misses

        return CacheStats(
            total_keys=total_keys,
            memory_usage=str(memory.get("used_memory_human", "unknown")),
            hit_rate=round(hits / lookups, 4) if lookups else 0.0,
            error_rate=0.0,
        )
