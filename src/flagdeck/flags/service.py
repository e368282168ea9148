"""
Flag repository: CRUD for applications, flags and tags.

Sole writer of the persistent store. Every mutation checks that the caller
owns the application (or holds the admin role), validates its input, commits,
and only then invalidates the owning application's distribution cache entry.
"""

import json
import secrets
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any, Protocol
from uuid import UUID

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.core import UserInfo
from ..exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from .models import (
    DEFAULT_TAG_COLOR,
    MAX_VALUE_LENGTH,
    Application,
    ApplicationResponse,
    Flag,
    FlagCreate,
    FlagType,
    FlagUpdate,
    Tag,
    TagCreate,
    TagUpdate,
    flag_tags,
)

logger = structlog.get_logger(__name__)

MAX_KEY_LENGTH = 255
MAX_TAG_NAME_LENGTH = 100


class CacheInvalidator(Protocol):
    """Anything that can evict a distribution cache entry by access key."""

    def invalidate(self, access_key: str) -> Any: ...  # pragma: no cover - protocol definition


# ============================================
# Validation helpers
# ============================================


def generate_access_key() -> str:
    """Opaque SDK access key: 32 hex characters from a CSPRNG."""
    return secrets.token_hex(16)


def validate_flag_key(key: str | None) -> str:
    key = (key or "").strip()
    if not key:
        raise ValidationError("Flag key is required")
    if len(key) > MAX_KEY_LENGTH:
        raise ValidationError(f"Flag key must be at most {MAX_KEY_LENGTH} characters")
    return key


def _reject_constant(name: str) -> Any:
    raise ValueError(f"{name} is not valid JSON")


def validate_flag_value(value: str | None, flag_type: FlagType) -> str:
    """Check a flag value against the type-conditional rules.

    The value stays an opaque string; only JSON flags get their payload parsed.
    """
    if value is None or not value.strip():
        raise ValidationError("Flag value is required")
    if len(value) > MAX_VALUE_LENGTH:
        raise ValidationError(
            f"Flag value must be at most {MAX_VALUE_LENGTH} characters",
            context={"length": len(value)},
        )
    if flag_type == FlagType.JSON:
        try:
            json.loads(value, parse_constant=_reject_constant)
        except ValueError as e:
            raise ValidationError(
                "Flag value must be valid JSON for JSON flags", context={"error": str(e)}
            ) from e
    return value


def validate_tag_name(name: str | None) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Tag name is required")
    if len(name) > MAX_TAG_NAME_LENGTH:
        raise ValidationError(f"Tag name must be at most {MAX_TAG_NAME_LENGTH} characters")
    return name


# ============================================
# Shared lookups
# ============================================


async def get_accessible_application(
    session: AsyncSession, actor: UserInfo, application_id: UUID
) -> Application:
    """Load an application the caller may act on.

    Raises:
        NotFoundError: No application with that id
        AuthorizationError: Caller is neither the owner nor an admin
    """
    application = await session.get(Application, application_id)
    if application is None:
        raise NotFoundError("Application not found", context={"application_id": str(application_id)})
    if application.owner_id != actor.user_id and not actor.is_admin:
        logger.warning(
            "flags.access.denied",
            application_id=str(application_id),
            user_id=actor.user_id,
        )
        raise AuthorizationError(
            "You do not have access to this application",
            context={"application_id": str(application_id)},
        )
    return application


async def resolve_tags(
    session: AsyncSession, application_id: UUID, tag_ids: Iterable[UUID] | None
) -> list[Tag]:
    """Tags of ``application_id`` among ``tag_ids``; unknown or foreign ids are dropped."""
    wanted = set(tag_ids or ())
    if not wanted:
        return []
    result = await session.scalars(
        select(Tag)
        .where(Tag.application_id == application_id, Tag.id.in_(wanted))
        .order_by(Tag.name)
    )
    return list(result.all())


class FlagRepository:
    """Applications, flags and tags with ownership and validation enforcement."""

    def __init__(self, session: AsyncSession, cache: CacheInvalidator | None = None):
        self._session = session
        self._cache = cache

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _commit(self, conflict_message: str | None = None) -> None:
        try:
            await self._session.commit()
        except IntegrityError as e:
            await self._session.rollback()
            if conflict_message:
                raise ConflictError(conflict_message) from e
            logger.error("flags.repository.integrity_error", error=str(e))
            raise
        except Exception as e:
            await self._session.rollback()
            logger.error("flags.repository.commit_failed", error=str(e), exc_info=True)
            raise

    def _invalidate(self, access_key: str) -> None:
        if self._cache is not None:
            self._cache.invalidate(access_key)

    async def _get_flag(self, application: Application, flag_id: UUID) -> Flag:
        flag = await self._session.scalar(
            select(Flag)
            .where(Flag.id == flag_id, Flag.application_id == application.id)
            .execution_options(populate_existing=True)
        )
        if flag is None:
            raise NotFoundError("Flag not found", context={"flag_id": str(flag_id)})
        return flag

    async def _get_tag(self, application: Application, tag_id: UUID) -> Tag:
        tag = await self._session.scalar(
            select(Tag).where(Tag.id == tag_id, Tag.application_id == application.id)
        )
        if tag is None:
            raise NotFoundError("Tag not found", context={"tag_id": str(tag_id)})
        return tag

    async def _flag_key_taken(
        self, application_id: UUID, key: str, exclude_id: UUID | None = None
    ) -> bool:
        query = select(Flag.id).where(Flag.application_id == application_id, Flag.key == key)
        if exclude_id is not None:
            query = query.where(Flag.id != exclude_id)
        return await self._session.scalar(query) is not None

    async def _tag_name_taken(
        self, application_id: UUID, name: str, exclude_id: UUID | None = None
    ) -> bool:
        query = select(Tag.id).where(Tag.application_id == application_id, Tag.name == name)
        if exclude_id is not None:
            query = query.where(Tag.id != exclude_id)
        return await self._session.scalar(query) is not None

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------

    async def create_application(self, actor: UserInfo, name: str) -> Application:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Application name is required")

        application = Application(
            name=name,
            access_key=generate_access_key(),
            owner_id=actor.user_id,
        )
        self._session.add(application)
        await self._commit()

        logger.info(
            "Application created",
            application_id=str(application.id),
            owner_id=actor.user_id,
        )
        return application

    async def list_applications(self, actor: UserInfo) -> list[ApplicationResponse]:
        """The caller's applications, most recently updated first, with flag counts."""
        result = await self._session.execute(
            select(Application, func.count(Flag.id))
            .outerjoin(Flag, Flag.application_id == Application.id)
            .where(Application.owner_id == actor.user_id)
            .group_by(Application.id)
            .order_by(Application.updated_at.desc())
        )
        responses = []
        for application, flag_count in result.all():
            response = ApplicationResponse.model_validate(application)
            response.flag_count = flag_count
            responses.append(response)
        return responses

    async def get_application(self, actor: UserInfo, application_id: UUID) -> Application:
        return await get_accessible_application(self._session, actor, application_id)

    async def delete_application(self, actor: UserInfo, application_id: UUID) -> None:
        """Delete the application with its flags, tags and associations in one transaction."""
        application = await get_accessible_application(self._session, actor, application_id)
        access_key = application.access_key

        flag_ids = select(Flag.id).where(Flag.application_id == application.id)
        await self._session.execute(delete(flag_tags).where(flag_tags.c.flag_id.in_(flag_ids)))
        await self._session.execute(delete(Flag).where(Flag.application_id == application.id))
        await self._session.execute(delete(Tag).where(Tag.application_id == application.id))
        await self._session.execute(delete(Application).where(Application.id == application.id))
        await self._commit()

        self._invalidate(access_key)
        logger.info(
            "Application deleted",
            application_id=str(application_id),
            access_key=access_key,
            user_id=actor.user_id,
        )

    # ------------------------------------------------------------------
    # Flags
    # ------------------------------------------------------------------

    async def list_flags(self, actor: UserInfo, application_id: UUID) -> Sequence[Flag]:
        application = await get_accessible_application(self._session, actor, application_id)
        result = await self._session.scalars(
            select(Flag)
            .where(Flag.application_id == application.id)
            .order_by(Flag.created_at, Flag.key)
            .execution_options(populate_existing=True)
        )
        return result.all()

    async def get_flag(self, actor: UserInfo, application_id: UUID, flag_id: UUID) -> Flag:
        application = await get_accessible_application(self._session, actor, application_id)
        return await self._get_flag(application, flag_id)

    async def create_flag(
        self, actor: UserInfo, application_id: UUID, data: FlagCreate
    ) -> Flag:
        """Create a flag.

        Raises:
            ValidationError: Blank key, missing/blank/oversized value, or non-JSON value for a JSON flag
            ConflictError: The key already exists in the application
        """
        application = await get_accessible_application(self._session, actor, application_id)

        key = validate_flag_key(data.key)
        flag_type = FlagType(data.type or FlagType.BOOLEAN)
        value = validate_flag_value(data.value, flag_type)

        conflict = f"Flag key '{key}' already exists in this application"
        if await self._flag_key_taken(application.id, key):
            raise ConflictError(conflict, context={"key": key})

        display_name = (data.display_name or "").strip() or key
        flag = Flag(
            application_id=application.id,
            key=key,
            display_name=display_name,
            description=data.description,
            enabled=bool(data.enabled),
            type=flag_type.value,
            value=value,
            tags=await resolve_tags(self._session, application.id, data.tag_ids),
        )
        self._session.add(flag)
        await self._commit(conflict)

        self._invalidate(application.access_key)
        logger.info(
            "Flag created",
            application_id=str(application.id),
            flag_id=str(flag.id),
            key=key,
            enabled=flag.enabled,
        )
        return flag

    async def update_flag(
        self, actor: UserInfo, application_id: UUID, flag_id: UUID, data: FlagUpdate
    ) -> Flag:
        """Apply the fields present in ``data``.

        Value rules are checked against the resulting value and type, so
        switching a flag to JSON re-validates its current value. Supplied tag
        ids replace the tag set wholesale.
        """
        application = await get_accessible_application(self._session, actor, application_id)
        flag = await self._get_flag(application, flag_id)
        changes = data.model_dump(exclude_unset=True)

        # Everything is checked before the flag is touched so a rejected
        # update leaves nothing dirty for a later commit to pick up.
        key = flag.key
        conflict = None
        if "key" in changes:
            key = validate_flag_key(changes["key"])
            if key != flag.key:
                conflict = f"Flag key '{key}' already exists in this application"
                if await self._flag_key_taken(application.id, key, exclude_id=flag.id):
                    raise ConflictError(conflict, context={"key": key})

        flag_type = FlagType(changes.get("type") or flag.type)
        value = flag.value
        if "value" in changes or "type" in changes:
            value = validate_flag_value(changes.get("value", flag.value), flag_type)

        tags = None
        if changes.get("tag_ids") is not None:
            tags = await resolve_tags(self._session, application.id, changes["tag_ids"])

        flag.key = key
        flag.value = value
        flag.type = flag_type.value
        if changes.get("display_name"):
            flag.display_name = changes["display_name"].strip() or flag.display_name
        if "description" in changes:
            flag.description = changes["description"]
        if changes.get("enabled") is not None:
            flag.enabled = changes["enabled"]
        if tags is not None:
            flag.tags = tags
        flag.updated_at = datetime.now(UTC)

        await self._commit(conflict)

        self._invalidate(application.access_key)
        logger.info(
            "Flag updated",
            application_id=str(application.id),
            flag_id=str(flag.id),
            fields=sorted(changes),
        )
        return flag

    async def delete_flag(self, actor: UserInfo, application_id: UUID, flag_id: UUID) -> None:
        application = await get_accessible_application(self._session, actor, application_id)
        flag = await self._get_flag(application, flag_id)

        await self._session.execute(delete(flag_tags).where(flag_tags.c.flag_id == flag.id))
        await self._session.execute(delete(Flag).where(Flag.id == flag.id))
        await self._commit()

        self._invalidate(application.access_key)
        logger.info("Flag deleted", application_id=str(application.id), flag_id=str(flag_id))

    async def set_flag_tags(
        self,
        actor: UserInfo,
        application_id: UUID,
        flag_id: UUID,
        tag_ids: Iterable[UUID],
    ) -> Flag:
        """Replace the tags of one flag. Ids outside the application are ignored."""
        application = await get_accessible_application(self._session, actor, application_id)
        flag = await self._get_flag(application, flag_id)

        flag.tags = await resolve_tags(self._session, application.id, tag_ids)
        flag.updated_at = datetime.now(UTC)
        await self._commit()

        self._invalidate(application.access_key)
        logger.info(
            "Flag tags replaced",
            application_id=str(application.id),
            flag_id=str(flag.id),
            tag_count=len(flag.tags),
        )
        return flag

    # ------------------------------------------------------------------
    # Tags
    # ------------------------------------------------------------------

    async def list_tags(self, actor: UserInfo, application_id: UUID) -> Sequence[Tag]:
        application = await get_accessible_application(self._session, actor, application_id)
        result = await self._session.scalars(
            select(Tag).where(Tag.application_id == application.id).order_by(Tag.name)
        )
        return result.all()

    async def create_tag(self, actor: UserInfo, application_id: UUID, data: TagCreate) -> Tag:
        application = await get_accessible_application(self._session, actor, application_id)
        name = validate_tag_name(data.name)

        conflict = f"Tag '{name}' already exists in this application"
        if await self._tag_name_taken(application.id, name):
            raise ConflictError(conflict, context={"name": name})

        tag = Tag(
            application_id=application.id,
            name=name,
            color=(data.color or "").strip() or DEFAULT_TAG_COLOR,
        )
        self._session.add(tag)
        await self._commit(conflict)

        logger.info("Tag created", application_id=str(application.id), tag_id=str(tag.id))
        return tag

    async def update_tag(
        self, actor: UserInfo, application_id: UUID, tag_id: UUID, data: TagUpdate
    ) -> Tag:
        application = await get_accessible_application(self._session, actor, application_id)
        tag = await self._get_tag(application, tag_id)
        changes = data.model_dump(exclude_unset=True)

        conflict = None
        if "name" in changes:
            name = validate_tag_name(changes["name"])
            if name != tag.name:
                conflict = f"Tag '{name}' already exists in this application"
                if await self._tag_name_taken(application.id, name, exclude_id=tag.id):
                    raise ConflictError(conflict, context={"name": name})
                tag.name = name
        if "color" in changes:
            tag.color = (changes["color"] or "").strip() or DEFAULT_TAG_COLOR
        tag.updated_at = datetime.now(UTC)

        await self._commit(conflict)
        logger.info("Tag updated", application_id=str(application.id), tag_id=str(tag.id))
        return tag

    async def delete_tag(self, actor: UserInfo, application_id: UUID, tag_id: UUID) -> None:
        """Delete a tag and strip it from every flag; the flags themselves survive."""
        application = await get_accessible_application(self._session, actor, application_id)
        tag = await self._get_tag(application, tag_id)

        stripped = await self._session.execute(
            delete(flag_tags).where(flag_tags.c.tag_id == tag.id)
        )
        await self._session.execute(delete(Tag).where(Tag.id == tag.id))
        await self._commit()

        self._invalidate(application.access_key)
        logger.info(
            "Tag deleted",
            application_id=str(application.id),
            tag_id=str(tag_id),
            flags_untagged=stripped.rowcount,
        )
