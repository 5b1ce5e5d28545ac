"""Read-through helper.

cache_user_data() is the sanctioned read path for cached data: it checks the
cache, and on a miss calls the fetcher (the source of truth), stores the result
with the type's TTL and returns it.

Example:
    history = await cache_user_data(
        manager,
        user_id,
        CacheType.PURCHASE_HISTORY,
        lambda: orders_repo.purchase_history(user_id),
        suffix="page-1",
    )
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, TypeVar

from diagcache.cache.types import CacheType, generate_cache_key

if TYPE_CHECKING:
    from diagcache.cache.manager import CacheManager

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def cache_user_data(
    cache: CacheManager,
    identifier: str,
    cache_type: CacheType,
    fetcher: Callable[[], Awaitable[T]],
    suffix: str | None = None,
) -> T:
    """Return the cached value for an entity, computing and caching it on a miss.

    Only None counts as a miss; falsy values such as [] or 0 are served from
    the cache. Errors raised by the fetcher propagate to the caller.
    """
    key = generate_cache_key(cache_type, identifier, suffix)

    cached = await cache.get(key)
    if cached is not None:
        return cached  # type: ignore[no-any-return]

    fresh = await fetcher()

    if fresh is not None:
        stored = await cache.set(key, fresh, cache_type.ttl)
        if not stored and cache.available:
            logger.debug(f"Read-through value not cached: {key}")

    return fresh
