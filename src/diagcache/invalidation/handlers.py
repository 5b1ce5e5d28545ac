"""Cascade handlers for queued invalidations.

Each cache type maps to a handler that deletes the entry itself plus every
dependent entry: a changed appointment also invalidates purchase history,
a changed order also affects its owner's purchase history, and so on.

Handlers only delete, so running one twice has the same effect as running it
once. Items a handler cannot act on (missing user or unparseable key) raise
InvalidationError; store failures surface as CacheStoreError. Either way the
processor records the message on the queue row and retries the item.

Cascade map:
    purchase_history -> purchase_history, analytics
    appointments     -> appointments, purchase_history
    analytics        -> analytics
    order_details    -> order_details, purchase_history (when user_id is set)
    user_profile     -> user_profile
    swell_customer   -> swell_customer
    anything else    -> the literal cache key
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Awaitable, Callable, assert_never

from diagcache.cache.types import CacheType, entity_pattern, parse_identifier
from diagcache.exceptions import InvalidationError

if TYPE_CHECKING:
    from diagcache.cache.manager import CacheManager
    from diagcache.invalidation.queue import InvalidationItem

logger = logging.getLogger(__name__)

CascadeHandler = Callable[["CacheManager", "InvalidationItem"], Awaitable[bool]]


async def _delete_entities(
    cache: CacheManager, identifier: str, cache_types: tuple[CacheType, ...]
) -> bool:
    for cache_type in cache_types:
        await cache.delete_pattern(entity_pattern(cache_type, identifier), raise_on_error=True)
    return True


def _require_user(item: InvalidationItem) -> str:
    if not item.user_id:
        raise InvalidationError(f"{item.cache_type} invalidation requires a user_id")
    return item.user_id


async def invalidate_purchase_history(cache: CacheManager, item: InvalidationItem) -> bool:
    user_id = _require_user(item)
    return await _delete_entities(
        cache, user_id, (CacheType.PURCHASE_HISTORY, CacheType.ANALYTICS)
    )


async def invalidate_appointments(cache: CacheManager, item: InvalidationItem) -> bool:
    user_id = _require_user(item)
    return await _delete_entities(
        cache, user_id, (CacheType.APPOINTMENTS, CacheType.PURCHASE_HISTORY)
    )


async def invalidate_analytics(cache: CacheManager, item: InvalidationItem) -> bool:
    user_id = _require_user(item)
    return await _delete_entities(cache, user_id, (CacheType.ANALYTICS,))


async def invalidate_user_profile(cache: CacheManager, item: InvalidationItem) -> bool:
    user_id = _require_user(item)
    return await _delete_entities(cache, user_id, (CacheType.USER_PROFILE,))


async def invalidate_order_details(cache: CacheManager, item: InvalidationItem) -> bool:
    order_id = parse_identifier(CacheType.ORDER_DETAILS, item.cache_key)
    if order_id is None:
        raise InvalidationError(f"Cannot parse order id from cache key: {item.cache_key}")

    await _delete_entities(cache, order_id, (CacheType.ORDER_DETAILS,))
    if item.user_id:
        await _delete_entities(cache, item.user_id, (CacheType.PURCHASE_HISTORY,))
    return True


async def invalidate_swell_customer(cache: CacheManager, item: InvalidationItem) -> bool:
    customer_id = parse_identifier(CacheType.SWELL_CUSTOMER, item.cache_key)
    if customer_id is None:
        raise InvalidationError(f"Cannot parse customer id from cache key: {item.cache_key}")
    return await _delete_entities(cache, customer_id, (CacheType.SWELL_CUSTOMER,))


async def invalidate_single_key(cache: CacheManager, item: InvalidationItem) -> bool:
    """Delete the literal key. An already-absent key counts as success."""
    await cache.delete(item.cache_key, raise_on_error=True)
    return True


def cascade_for(cache_type: CacheType) -> CascadeHandler:
    """Handler for a cache type."""
    if cache_type is CacheType.PURCHASE_HISTORY:
        return invalidate_purchase_history
    elif cache_type is CacheType.APPOINTMENTS:
        return invalidate_appointments
    elif cache_type is CacheType.ANALYTICS:
        return invalidate_analytics
    elif cache_type is CacheType.ORDER_DETAILS:
        return invalidate_order_details
    elif cache_type is CacheType.USER_PROFILE:
        return invalidate_user_profile
    elif cache_type is CacheType.SWELL_CUSTOMER:
        return invalidate_swell_customer
    elif cache_type is CacheType.SYSTEM_STATS:
        return invalidate_single_key
    elif cache_type is CacheType.SECURITY_EVENTS:
        return invalidate_single_key
    else:
        assert_never(cache_type)


async def run_cascade(cache: CacheManager, item: InvalidationItem) -> bool:
    """Apply the cascade for a queue item.

    Unknown cache types fall back to deleting the literal key.

    Raises:
        InvalidationError: the item lacks what its cascade needs
        CacheStoreError: a delete failed in the store
    """
    cache_type = CacheType.parse(item.cache_type)
    if cache_type is None:
        logger.warning(f"Unknown cache type {item.cache_type!r}, deleting key {item.cache_key}")
        return await invalidate_single_key(cache, item)
    return await cascade_for(cache_type)(cache, item)
