"""
Bulk tag mutation across a batch of flags.

Each flag is committed on its own: a storage failure part-way through leaves
the earlier flags updated. The cache entry of the owning application is
invalidated at most once, after the per-flag updates, when any flag was
committed.
"""

from collections.abc import Iterable
from datetime import UTC, datetime
from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..auth.core import UserInfo
from ..exceptions import ValidationError
from .models import BulkTagAction, BulkTagResponse, Flag, FlagResponse, Tag
from .service import CacheInvalidator, get_accessible_application, resolve_tags

logger = structlog.get_logger(__name__)


def apply_tag_action(
    current: Iterable[Tag], requested: Iterable[Tag], action: BulkTagAction
) -> list[Tag]:
    """Compute a flag's new tag set, ordered by name."""
    current_by_id = {tag.id: tag for tag in current}
    requested_by_id = {tag.id: tag for tag in requested}

    if action == BulkTagAction.SET:
        result = requested_by_id
    elif action == BulkTagAction.REMOVE:
        result = {
            tag_id: tag for tag_id, tag in current_by_id.items() if tag_id not in requested_by_id
        }
    elif action == BulkTagAction.ADD:
        result = {**current_by_id, **requested_by_id}
    else:  # pragma: no cover - enum is exhaustive
        raise ValidationError(f"Unknown tag action: {action}")

    return sorted(result.values(), key=lambda tag: tag.name)


class BulkTagMutationEngine:
    """Apply one add/remove/set tag operation to many flags of one application."""

    def __init__(self, session: AsyncSession, cache: CacheInvalidator | None = None):
        self._session = session
        self._cache = cache

    async def mutate(
        self,
        actor: UserInfo,
        application_id: UUID,
        flag_ids: Iterable[UUID],
        tag_ids: Iterable[UUID],
        action: BulkTagAction | str,
    ) -> BulkTagResponse:
        """Apply ``action`` with ``tag_ids`` to every flag in ``flag_ids``.

        Flag ids outside the application and tag ids outside the application
        are skipped silently.

        Raises:
            ValidationError: ``flag_ids`` is empty or ``action`` is unknown
            NotFoundError / AuthorizationError: application lookup failed
        """
        flag_ids = set(flag_ids)
        if not flag_ids:
            raise ValidationError("flag_ids must contain at least one flag id")
        try:
            action = BulkTagAction(action)
        except ValueError as e:
            raise ValidationError(
                f"Unknown tag action: {action}",
                context={"allowed": [a.value for a in BulkTagAction]},
            ) from e

        application = await get_accessible_application(self._session, actor, application_id)
        access_key = application.access_key
        tags = await resolve_tags(self._session, application.id, tag_ids)

        result = await self._session.scalars(
            select(Flag)
            .where(Flag.application_id == application.id, Flag.id.in_(flag_ids))
            .order_by(Flag.created_at, Flag.key)
            .execution_options(populate_existing=True)
        )
        targets = list(result.all())

        updated: list[Flag] = []
        try:
            for flag in targets:
                flag.tags = apply_tag_action(flag.tags, tags, action)
                flag.updated_at = datetime.now(UTC)
                # A rollback expires every loaded instance.
                flag_id = str(flag.id)
                try:
                    await self._session.commit()
                except Exception as e:
                    await self._session.rollback()
                    logger.error(
                        "flags.bulk_tags.flag_failed",
                        application_id=str(application_id),
                        flag_id=flag_id,
                        committed=len(updated),
                        error=str(e),
                    )
                    raise
                updated.append(flag)
        finally:
            if updated and self._cache is not None:
                self._cache.invalidate(access_key)

        logger.info(
            "Bulk tag mutation applied",
            application_id=str(application_id),
            action=action.value,
            requested_flags=len(flag_ids),
            updated_flags=len(updated),
            tag_count=len(tags),
        )
        return BulkTagResponse(
            updated=len(updated),
            flags=[FlagResponse.model_validate(flag) for flag in updated],
        )
