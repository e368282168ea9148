"""
Flag distribution endpoints.

``sdk_router`` is the unauthenticated read path used by client SDKs; it is
served entirely from the in-process cache. ``admin_router`` exposes cache
statistics and a manual sweep to administrators.
"""

from datetime import UTC, datetime
from typing import Annotated, Any

import structlog
from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse

from ..auth.core import UserInfo
from ..dependencies import get_cache_refresher, get_distribution_cache, require_admin
from ..exceptions import NotFoundError
from .cache import DistributedFlag, DistributionCache
from .scheduler import CacheRefreshScheduler

logger = structlog.get_logger(__name__)

NO_CACHE_HEADERS = {"Cache-Control": "no-store, no-cache"}

sdk_router = APIRouter(tags=["SDK"])
admin_router = APIRouter(prefix="/distribution", tags=["Distribution"])

Cache = Annotated[DistributionCache, Depends(get_distribution_cache)]


@sdk_router.get(
    "/{access_key}/flags",
    response_model=list[DistributedFlag],
    response_model_by_alias=True,
)
async def get_sdk_flags(access_key: str, response: Response, cache: Cache) -> Any:
    """
    Enabled flags of the application identified by ``access_key``.

    Returns a JSON array in flag creation order. Intermediaries must not
    cache the response; the in-process cache is the caching layer.
    """
    try:
        flags = await cache.get(access_key)
    except NotFoundError as e:
        return JSONResponse(
            status_code=e.status_code,
            content={"message": e.message},
            headers=NO_CACHE_HEADERS,
        )
    response.headers.update(NO_CACHE_HEADERS)
    return flags


@admin_router.get("/stats")
async def get_distribution_stats(
    _: Annotated[UserInfo, Depends(require_admin)],
    cache: Cache,
    refresher: Annotated[CacheRefreshScheduler | None, Depends(get_cache_refresher)],
) -> dict[str, Any]:
    """Cache and refresh-scheduler counters."""
    return {
        "cache": cache.stats(),
        "refresher": refresher.stats() if refresher is not None else None,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@admin_router.post("/refresh")
async def refresh_distribution_cache(
    current_user: Annotated[UserInfo, Depends(require_admin)],
    cache: Cache,
) -> dict[str, Any]:
    """Run a refresh sweep now instead of waiting for the next interval."""
    loaded = await cache.scheduled_refresh()
    logger.info("distribution.refresh.manual", user_id=current_user.user_id, loaded=loaded)
    return {"loaded": loaded, "entries": len(cache)}


__all__ = ["sdk_router", "admin_router", "NO_CACHE_HEADERS"]
