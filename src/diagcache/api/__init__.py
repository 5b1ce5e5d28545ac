"""HTTP surface for diagcache.

Usage:
    app = FastAPI(lifespan=cache_system_lifespan)
    app.include_router(create_cache_admin_router(dependencies=[Depends(require_admin)]))
"""

from diagcache.api.cache_admin import (
    CacheAction,
    CacheActionRequest,
    CacheActionResponse,
    create_cache_admin_router,
    get_cache_system,
    router,
)

__all__ = [
    "CacheAction",
    "CacheActionRequest",
    "CacheActionResponse",
    "create_cache_admin_router",
    "get_cache_system",
    "router",
]
