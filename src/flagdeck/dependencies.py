"""
Shared FastAPI dependencies.

The distribution cache and its refresh scheduler live on ``app.state``; they
are created by the application lifespan, or injected directly by tests.
"""

from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .auth.core import UserInfo, get_current_user
from .db import get_async_session
from .distribution.cache import DistributionCache
from .distribution.scheduler import CacheRefreshScheduler
from .exceptions import AuthorizationError
from .flags.bulk import BulkTagMutationEngine
from .flags.service import FlagRepository


def get_distribution_cache(request: Request) -> DistributionCache:
    """Dependency to get the process-wide distribution cache."""
    cache = getattr(request.app.state, "distribution_cache", None)
    if cache is None:
        raise RuntimeError("Distribution cache is not initialised")
    return cache


def get_cache_refresher(request: Request) -> CacheRefreshScheduler | None:
    return getattr(request.app.state, "cache_refresher", None)


def get_flag_repository(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    cache: Annotated[DistributionCache, Depends(get_distribution_cache)],
) -> FlagRepository:
    """Dependency to get a FlagRepository bound to the request session."""
    return FlagRepository(session, cache)


def get_bulk_engine(
    session: Annotated[AsyncSession, Depends(get_async_session)],
    cache: Annotated[DistributionCache, Depends(get_distribution_cache)],
) -> BulkTagMutationEngine:
    return BulkTagMutationEngine(session, cache)


async def require_admin(
    current_user: Annotated[UserInfo, Depends(get_current_user)],
) -> UserInfo:
    """Allow only callers holding the configured admin role."""
    if not current_user.is_admin:
        raise AuthorizationError("Administrator role required")
    return current_user


__all__ = [
    "get_distribution_cache",
    "get_cache_refresher",
    "get_flag_repository",
    "get_bulk_engine",
    "require_admin",
]
