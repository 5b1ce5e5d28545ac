"""Redis store client for diagcache.

Thin adapter over the redis-py async client. The store is configured from two
values, the endpoint URL and the access token. If either is missing, or the
client cannot be built, the store is disabled for the lifetime of the process:
every operation returns an empty result without touching the network.

Errors from an enabled store propagate as redis/OS errors; the CacheManager
decides how to degrade them.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Sequence
from typing import TYPE_CHECKING, Any, TypeVar, cast

import redis.asyncio as redis
from redis.exceptions import RedisError

if TYPE_CHECKING:
    from redis.asyncio import Redis

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Keys per SCAN round trip during pattern matching
SCAN_COUNT = 500


def _await_redis(result: Awaitable[T] | T) -> Awaitable[T]:
    """Cast redis-py async results to an awaitable for mypy."""
    return cast(Awaitable[T], result)


def _as_str(value: bytes | str) -> str:
    return value.decode() if isinstance(value, bytes) else value


class CacheStore:
    """Remote key-value store with a permanent disabled mode."""

    def __init__(self, client: Redis | None) -> None:
        self._client = client

    @classmethod
    def from_config(cls, url: str | None, token: str | None) -> CacheStore:
        """Build a store from connection settings.

        Returns a disabled store when either value is missing or the client
        cannot be constructed.
        """
        if not url or not token:
            logger.warning("Redis cache disabled: missing REDIS_URL or REDIS_TOKEN")
            return cls(None)

        try:
            client = redis.from_url(  # type: ignore[no-untyped-call]
                url,
                password=token,
                decode_responses=False,  # payloads are bytes
            )
        except (ValueError, RedisError) as e:
            logger.warning(f"Redis cache disabled: connection error: {e}")
            return cls(None)

        return cls(client)

    @classmethod
    def disabled(cls) -> CacheStore:
        return cls(None)

    @property
    def enabled(self) -> bool:
        return self._client is not None

    async def close(self) -> None:
        """Close Redis connections."""
        if self._client is not None:
            await self._client.aclose()

    # -------------------------------------------------------------------------
    # Primitive operations
    # -------------------------------------------------------------------------

    async def get(self, key: str) -> bytes | None:
        if self._client is None:
            return None
        return cast(bytes | None, await self._client.get(key))

    async def set(self, key: str, value: bytes, ttl: int | None = None) -> bool:
        """SETEX when a TTL is given, plain SET otherwise.

        Returns True only when the server acknowledged the write.
        """
        if self._client is None:
            return False
        if ttl is not None:
            result = await self._client.setex(key, ttl, value)
        else:
            result = await self._client.set(key, value)
        return bool(result)

    async def delete(self, *keys: str) -> int:
        if self._client is None or not keys:
            return 0
        return cast(int, await self._client.delete(*keys))

    async def keys(self, pattern: str) -> list[str]:
        """Find keys matching a glob.

        Uses SCAN to avoid blocking on large keyspaces.
        """
        if self._client is None:
            return []
        found: list[str] = []
        async for key in self._client.scan_iter(match=pattern, count=SCAN_COUNT):
            found.append(_as_str(key))
        return found

    async def exists(self, key: str) -> bool:
        if self._client is None:
            return False
        return cast(int, await self._client.exists(key)) == 1

    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds (-1 no expiry, -2 missing key)."""
        if self._client is None:
            return -1
        return cast(int, await self._client.ttl(key))

    async def expire(self, key: str, ttl: int) -> bool:
        if self._client is None:
            return False
        return bool(await self._client.expire(key, ttl))

    # -------------------------------------------------------------------------
    # Bulk operations
    # -------------------------------------------------------------------------

    async def mget(self, keys: Sequence[str]) -> list[bytes | None]:
        if self._client is None or not keys:
            return []
        return cast(list[bytes | None], await self._client.mget(list(keys)))

    async def mset(self, entries: Sequence[tuple[str, bytes, int | None]]) -> list[Any]:
        """Write (key, payload, ttl) triples in a single pipeline.

        Returns the per-command replies in order.
        """
        if self._client is None or not entries:
            return []
        async with self._client.pipeline(transaction=False) as pipe:
            for key, payload, ttl in entries:
                if ttl is not None:
                    pipe.setex(key, ttl, payload)
                else:
                    pipe.set(key, payload)
            return cast(list[Any], await pipe.execute())

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    async def dbsize(self) -> int:
        if self._client is None:
            return 0
        return cast(int, await _await_redis(self._client.dbsize()))

    async def info(self, section: str) -> dict[str, Any]:
        if self._client is None:
            return {}
        return cast(dict[str, Any], await _await_redis(self._client.info(section)))
