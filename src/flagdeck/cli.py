#!/usr/bin/env python
"""
CLI management commands for Flagdeck.
"""

import asyncio
import sys
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import click
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from flagdeck.auth.core import create_access_token
from flagdeck.db import create_all_tables_async, get_session_maker
from flagdeck.flags.models import Application, Flag, FlagType

SAMPLE_APPLICATION_NAME = "My Sample App"
SAMPLE_ACCESS_KEY = "sample-app-key-123"
SAMPLE_FLAGS: tuple[dict[str, Any], ...] = (
    {
        "key": "new_feature_beta",
        "display_name": "New Feature Beta",
        "description": "Enable beta features",
        "enabled": True,
        "type": FlagType.BOOLEAN.value,
        "value": "true",
    },
    {
        "key": "maintenance_mode",
        "display_name": "Maintenance Mode",
        "description": "Global maintenance",
        "enabled": False,
        "type": FlagType.BOOLEAN.value,
        "value": "false",
    },
)


@dataclass
class CLIDependencies:
    """Bundle of injectable dependencies used by CLI commands."""

    session_factory: Callable[[], AsyncSession]
    init_db: Callable[[], Awaitable[None]]
    token_factory: Callable[..., str]
    subprocess_run: Callable[..., Any]


def _get_cli_dependencies() -> CLIDependencies:
    """Return the default dependency bundle for CLI commands."""
    import subprocess

    return CLIDependencies(
        session_factory=get_session_maker(),
        init_db=create_all_tables_async,
        token_factory=create_access_token,
        subprocess_run=subprocess.run,
    )


@click.group()
def cli() -> None:
    """Flagdeck CLI."""
    pass


@cli.command()
def init_database() -> None:
    """Create every table that does not exist yet."""
    deps = _get_cli_dependencies()
    click.echo("Initializing database...")
    asyncio.run(deps.init_db())
    click.echo("Database initialized successfully!")


@cli.command()
def run_migrations() -> None:
    """Run database migrations."""
    deps = _get_cli_dependencies()

    click.echo("Running database migrations...")
    result = deps.subprocess_run(["alembic", "upgrade", "head"], capture_output=True, text=True)

    if result.returncode == 0:
        click.echo("Migrations completed successfully!")
        click.echo(result.stdout)
    else:
        click.echo("Migration failed!")
        click.echo(result.stderr)
        sys.exit(1)


async def seed_sample_application(session: AsyncSession, owner_id: str) -> tuple[Application, bool]:
    """Create the sample application unless its access key is already taken.

    Returns the application and whether it was created.
    """
    existing = await session.scalar(
        select(Application).where(Application.access_key == SAMPLE_ACCESS_KEY)
    )
    if existing is not None:
        return existing, False

    application = Application(
        name=SAMPLE_APPLICATION_NAME,
        access_key=SAMPLE_ACCESS_KEY,
        owner_id=owner_id,
    )
    session.add(application)
    await session.flush()
    for data in SAMPLE_FLAGS:
        session.add(Flag(application_id=application.id, **data))
    await session.commit()
    return application, True


@cli.command()
@click.option("--owner", default="admin", show_default=True, help="User id owning the sample app")
def seed(owner: str) -> None:
    """Seed a sample application with two flags."""
    deps = _get_cli_dependencies()

    async def _seed() -> None:
        await deps.init_db()
        async with deps.session_factory() as session:
            application, created = await seed_sample_application(session, owner)
        if created:
            click.echo(f"Seeded application '{application.name}' (owner: {owner})")
        else:
            click.echo(f"Sample application already exists (owner: {application.owner_id})")
        click.echo(f"SDK access key: {application.access_key}")

    asyncio.run(_seed())


@cli.command()
@click.option("--user-id", required=True, help="Subject of the token")
@click.option("--email", default=None, help="Email claim")
@click.option("--role", "roles", multiple=True, help="Role claim (repeatable)")
@click.option("--expires-minutes", type=int, default=None, help="Override token lifetime")
def issue_token(
    user_id: str, email: str | None, roles: tuple[str, ...], expires_minutes: int | None
) -> None:
    """Issue a development access token for the management API."""
    deps = _get_cli_dependencies()
    claims: dict[str, Any] = {"roles": list(roles)}
    if email:
        claims["email"] = email
    if expires_minutes is not None:
        token = deps.token_factory(user_id, expire_minutes=expires_minutes, **claims)
    else:
        token = deps.token_factory(user_id, **claims)
    click.echo(token)


@cli.command()
@click.option("--host", default=None, help="Bind host (defaults to settings)")
@click.option("--port", type=int, default=None, help="Bind port (defaults to settings)")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host: str | None, port: int | None, reload: bool) -> None:
    """Run the API server with uvicorn."""
    import uvicorn

    from flagdeck.settings import settings

    uvicorn.run(
        "flagdeck.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


if __name__ == "__main__":
    cli()
