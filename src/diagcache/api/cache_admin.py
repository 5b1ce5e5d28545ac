"""Admin cache endpoints - health reporting and maintenance actions.

Provides:
- Full health report (cache round-trip, stats, queue, audit summaries)
- Manual queue processing and retention cleanup
- Per-user cache flush

Authentication belongs to the host application: pass its guard through
create_cache_admin_router(dependencies=[...]).
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any, Sequence

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.params import Depends as DependsParam
from pydantic import BaseModel

from diagcache.runtime import CacheSystem


class CacheAction(str, Enum):
    PROCESS_QUEUE = "process_queue"
    CLEAR_EXPIRED = "clear_expired"
    FLUSH_USER_CACHE = "flush_user_cache"
    HEALTH_CHECK = "health_check"


class CacheActionRequest(BaseModel):
    """Body of POST /admin/cache/actions."""

    action: str
    user_id: str | None = None


class CacheActionResponse(BaseModel):
    """Result of an admin cache action."""

    success: bool
    action: CacheAction
    result: dict[str, Any]
    timestamp: datetime


def get_cache_system(request: Request) -> CacheSystem:
    """Resolve the CacheSystem installed by cache_system_lifespan."""
    system: CacheSystem | None = getattr(request.app.state, "cache_system", None)
    if system is None:
        raise HTTPException(status_code=503, detail="Cache system not initialized")
    return system


def create_cache_admin_router(
    dependencies: Sequence[DependsParam] | None = None,
) -> APIRouter:
    """Build the admin router, guarded by the given dependencies."""
    router = APIRouter(
        prefix="/admin/cache",
        tags=["Admin - Cache"],
        dependencies=list(dependencies or []),
    )

    @router.get("/health")
    async def get_cache_health(
        system: CacheSystem = Depends(get_cache_system),
    ) -> dict[str, Any]:
        """Cache health, stats, invalidation queue state and recent activity."""
        return await system.health_report()

    @router.post("/actions", response_model=CacheActionResponse)
    async def run_cache_action(
        body: CacheActionRequest,
        system: CacheSystem = Depends(get_cache_system),
    ) -> CacheActionResponse:
        """Run a maintenance action.

        Actions:
        - process_queue: process one invalidation batch now
        - clear_expired: delete processed queue rows past retention
        - flush_user_cache: delete every cache entry of one user (needs user_id)
        - health_check: cache round-trip check
        """
        try:
            action = CacheAction(body.action)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid action: {body.action}")

        result: dict[str, Any]
        if action is CacheAction.PROCESS_QUEUE:
            result = (await system.processor.process_queue()).to_dict()
        elif action is CacheAction.CLEAR_EXPIRED:
            result = {"removed": await system.processor.clear_expired()}
        elif action is CacheAction.FLUSH_USER_CACHE:
            if not body.user_id:
                raise HTTPException(
                    status_code=400, detail="user_id is required for flush_user_cache"
                )
            deleted = await system.cache.flush_user_cache(body.user_id)
            result = {"user_id": body.user_id, "deleted": deleted}
        else:
            result = (await system.cache.health_check()).to_dict()

        return CacheActionResponse(
            success=True,
            action=action,
            result=result,
            timestamp=datetime.now(UTC),
        )

    return router


router = create_cache_admin_router()
