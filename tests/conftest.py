"""
Global pytest configuration and fixtures for Flagdeck tests.

Every test gets its own SQLite database file; sessions are opened per use
through ``NullPool`` so the distribution cache and the repository never share
a connection.
"""

import os

# Keep the module-level settings away from a developer's .env database.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DISTRIBUTION__REFRESH_ENABLED", "false")
os.environ.setdefault("DISTRIBUTION__WARM_UP_ON_STARTUP", "false")

import pytest  # noqa: E402
from fastapi import FastAPI, Request  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool  # noqa: E402

from flagdeck.auth.core import UserInfo, get_current_user  # noqa: E402
from flagdeck.db import (  # noqa: E402
    create_all_tables_async,
    enable_sqlite_foreign_keys,
    get_async_session,
)
from flagdeck.distribution.cache import DistributionCache  # noqa: E402
from flagdeck.flags.models import FlagCreate, TagCreate  # noqa: E402
from flagdeck.flags.service import FlagRepository  # noqa: E402

OWNER_ID = "owner-1"
OTHER_ID = "intruder-2"
ADMIN_ID = "admin-9"


class RecordingCache:
    """Cache stand-in that records invalidated access keys."""

    def __init__(self) -> None:
        self.invalidated: list[str] = []

    def invalidate(self, access_key: str) -> bool:
        self.invalidated.append(access_key)
        return True


# ============================================
# Database
# ============================================


@pytest.fixture
async def async_db_engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'flagdeck-test.db'}",
        poolclass=NullPool,
    )
    enable_sqlite_foreign_keys(engine)
    await create_all_tables_async(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(async_db_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_db_engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def async_db_session(session_maker):
    async with session_maker() as session:
        yield session


# ============================================
# Callers
# ============================================


@pytest.fixture
def owner() -> UserInfo:
    return UserInfo(user_id=OWNER_ID, email="owner@example.com", roles=["user"])


@pytest.fixture
def other_user() -> UserInfo:
    return UserInfo(user_id=OTHER_ID, email="other@example.com", roles=["user"])


@pytest.fixture
def admin_user() -> UserInfo:
    return UserInfo(user_id=ADMIN_ID, email="admin@example.com", roles=["admin"])


# ============================================
# Domain objects
# ============================================


@pytest.fixture
def distribution_cache(session_maker) -> DistributionCache:
    return DistributionCache(session_maker)


@pytest.fixture
def recording_cache() -> RecordingCache:
    return RecordingCache()


@pytest.fixture
def repository(async_db_session, distribution_cache) -> FlagRepository:
    return FlagRepository(async_db_session, distribution_cache)


@pytest.fixture
async def application(repository, owner):
    return await repository.create_application(owner, "Checkout")


@pytest.fixture
async def tags(repository, owner, application):
    """Three tags of ``application``: backend, frontend, risky."""
    created = {}
    for name in ("backend", "frontend", "risky"):
        created[name] = await repository.create_tag(owner, application.id, TagCreate(name=name))
    return created


@pytest.fixture
async def flags(repository, owner, application):
    """Three boolean flags: beta (enabled), dark_mode (enabled), maint (disabled)."""
    created = {}
    for key, enabled in (("beta", True), ("dark_mode", True), ("maint", False)):
        created[key] = await repository.create_flag(
            owner,
            application.id,
            FlagCreate(key=key, enabled=enabled, value="on" if enabled else "off"),
        )
    return created


# ============================================
# HTTP
# ============================================


@pytest.fixture
def test_app(session_maker, distribution_cache) -> FastAPI:
    """The real application with its DB session and caller overridden.

    The caller is chosen per request with ``X-Test-User`` and ``X-Test-Roles``
    headers and defaults to the owner.
    """
    from flagdeck.main import create_application

    app = create_application()

    async def override_async_session():
        async with session_maker() as session:
            yield session

    def override_current_user(request: Request) -> UserInfo:
        roles = request.headers.get("X-Test-Roles", "user")
        return UserInfo(
            user_id=request.headers.get("X-Test-User", OWNER_ID),
            roles=[role for role in roles.split(",") if role],
        )

    app.dependency_overrides[get_async_session] = override_async_session
    app.dependency_overrides[get_current_user] = override_current_user
    app.state.distribution_cache = distribution_cache
    app.state.cache_refresher = None
    return app


@pytest.fixture
async def client(test_app):
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        yield async_client


@pytest.fixture
def other_headers() -> dict[str, str]:
    return {"X-Test-User": OTHER_ID}


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Test-User": ADMIN_ID, "X-Test-Roles": "admin"}
