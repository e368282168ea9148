"""
In-process flag distribution cache.

Maps an application access key to the client-ready projection of that
application's enabled flags. Entries are derived data: an entry is either
absent or equal to the projection of the store as of its last population.
Entries are replaced wholesale, never patched.

Lifecycle per key::

    ABSENT --get (miss)--> WARM --invalidate--> ABSENT
    WARM --scheduled_refresh / warm_up--> WARM (replaced)

Concurrent misses for the same key share one population. An invalidation
that lands while a population or a sweep is in flight prevents that load
from storing its (possibly pre-write) snapshot.
"""

import asyncio
from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import UTC, datetime
from functools import partial
from typing import Any
from uuid import UUID

import structlog
from cachetools import Cache, LRUCache, TTLCache
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..exceptions import NotFoundError
from ..flags.models import Application, Flag, FlagType
from ..settings import settings

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncSession]


class DistributedFlag(BaseModel):
    """Client-visible projection of an enabled flag."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    key: str
    enabled: bool
    display_name: str = Field(alias="displayName")
    description: str | None = None
    value: str
    type: FlagType


Entry = tuple[DistributedFlag, ...]

_PROJECTION_COLUMNS = (
    Flag.application_id,
    Flag.key,
    Flag.enabled,
    Flag.display_name,
    Flag.description,
    Flag.value,
    Flag.type,
)


class DistributionCache:
    """Read-through cache of enabled-flag projections keyed by access key.

    Construct one per process and inject it; tests build isolated instances
    around their own session factory.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        max_entries: int = 10_000,
        entry_ttl_seconds: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._entries: Cache = (
            TTLCache(maxsize=max_entries, ttl=entry_ttl_seconds)
            if entry_ttl_seconds
            else LRUCache(maxsize=max_entries)
        )
        self._inflight: dict[str, asyncio.Task[Entry]] = {}
        self._sweep_lock = asyncio.Lock()
        self._invalidated_during_sweep: set[str] | None = None
        self._stats = {
            "hits": 0,
            "misses": 0,
            "populations": 0,
            "invalidations": 0,
            "refreshes": 0,
        }
        self.last_refreshed_at: datetime | None = None

    @classmethod
    def from_settings(cls, session_factory: SessionFactory) -> "DistributionCache":
        return cls(
            session_factory,
            max_entries=settings.distribution.max_entries,
            entry_ttl_seconds=settings.distribution.entry_ttl_seconds,
        )

    # ------------------------------------------------------------------
    # Read path
    # ------------------------------------------------------------------

    async def get(self, access_key: str) -> list[DistributedFlag]:
        """Return the enabled flags for ``access_key``.

        A hit never touches the store. A miss loads synchronously from the
        store; unknown keys raise NotFoundError and are not cached.
        """
        entry = self._entries.get(access_key)
        if entry is not None:
            self._stats["hits"] += 1
            logger.debug("distribution.cache.hit", access_key=access_key)
            return list(entry)

        self._stats["misses"] += 1
        task = self._inflight.get(access_key)
        if task is None:
            task = asyncio.create_task(self._populate(access_key))
            self._inflight[access_key] = task
            task.add_done_callback(partial(self._population_done, access_key))

        # Shielded so an abandoned request does not cancel a population other
        # callers are waiting on.
        return list(await asyncio.shield(task))

    async def _populate(self, access_key: str) -> Entry:
        async with self._session_factory() as session:
            application_id = await session.scalar(
                select(Application.id).where(Application.access_key == access_key)
            )
            if application_id is None:
                logger.info("distribution.cache.unknown_key", access_key=access_key)
                raise NotFoundError(
                    "Application not found or invalid key",
                    context={"access_key": access_key},
                )
            projections = await self._load_projections(session, [application_id])

        entry = tuple(projections.get(application_id, ()))
        if self._inflight.get(access_key) is asyncio.current_task():
            self._store(access_key, entry)
            logger.info(
                "distribution.cache.populated", access_key=access_key, flag_count=len(entry)
            )
        else:
            logger.debug("distribution.cache.population_discarded", access_key=access_key)
        return entry

    def _population_done(self, access_key: str, task: asyncio.Task[Entry]) -> None:
        if self._inflight.get(access_key) is task:
            del self._inflight[access_key]
        if not task.cancelled():
            # Marks the exception retrieved when every waiter has gone away.
            task.exception()

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def invalidate(self, access_key: str) -> bool:
        """Evict the entry for ``access_key``. Idempotent and O(1)."""
        removed = self._entries.pop(access_key, None) is not None
        # A population started before the write must not store its result,
        # and later readers must not join it.
        self._inflight.pop(access_key, None)
        if self._invalidated_during_sweep is not None:
            self._invalidated_during_sweep.add(access_key)
        self._stats["invalidations"] += 1
        logger.info("distribution.cache.invalidated", access_key=access_key, evicted=removed)
        return removed

    def clear(self) -> None:
        self._entries.clear()
        self._inflight.clear()

    # ------------------------------------------------------------------
    # Bulk loads
    # ------------------------------------------------------------------

    async def warm_up(self) -> int:
        """Preload every application. Runs once at process start."""
        return await self._reload_all("warm_up")

    async def scheduled_refresh(self) -> int:
        """Reload every application from the store, replacing entries per key.

        Bounds staleness when an invalidation was missed. Keys whose
        application no longer exists are evicted.
        """
        return await self._reload_all("scheduled_refresh")

    async def _reload_all(self, reason: str) -> int:
        async with self._sweep_lock:
            self._invalidated_during_sweep = set()
            try:
                async with self._session_factory() as session:
                    applications = (
                        await session.execute(select(Application.id, Application.access_key))
                    ).all()
                    projections = await self._load_projections(session)

                live_keys: set[str] = set()
                skipped = 0
                for application_id, access_key in applications:
                    live_keys.add(access_key)
                    if access_key in self._invalidated_during_sweep:
                        skipped += 1
                        continue
                    self._store(access_key, tuple(projections.get(application_id, ())))

                stale_keys = [key for key in list(self._entries.keys()) if key not in live_keys]
                for key in stale_keys:
                    self._entries.pop(key, None)
            finally:
                self._invalidated_during_sweep = None

        loaded = len(applications) - skipped
        self._stats["refreshes"] += 1
        self.last_refreshed_at = datetime.now(UTC)
        logger.info(
            f"distribution.cache.{reason}",
            applications=len(applications),
            loaded=loaded,
            skipped_invalidated=skipped,
            evicted_stale=len(stale_keys),
        )
        return loaded

    async def _load_projections(
        self, session: AsyncSession, application_ids: Iterable[UUID] | None = None
    ) -> dict[UUID, list[DistributedFlag]]:
        query = (
            select(*_PROJECTION_COLUMNS)
            .where(Flag.enabled.is_(True))
            .order_by(Flag.created_at, Flag.key)
        )
        if application_ids is not None:
            query = query.where(Flag.application_id.in_(list(application_ids)))

        grouped: dict[UUID, list[DistributedFlag]] = defaultdict(list)
        for row in (await session.execute(query)).all():
            grouped[row.application_id].append(
                DistributedFlag(
                    key=row.key,
                    enabled=row.enabled,
                    display_name=row.display_name,
                    description=row.description,
                    value=row.value,
                    type=FlagType(row.type),
                )
            )
        return grouped

    def _store(self, access_key: str, entry: Entry) -> None:
        self._entries[access_key] = entry
        self._stats["populations"] += 1

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def __contains__(self, access_key: object) -> bool:
        return access_key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def stats(self) -> dict[str, Any]:
        """Counters for monitoring."""
        return {
            "entries": len(self._entries),
            "inflight_populations": len(self._inflight),
            **self._stats,
            "last_refreshed_at": self.last_refreshed_at,
        }
