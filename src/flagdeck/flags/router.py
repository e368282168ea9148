"""
FastAPI router for the management API: applications, flags and tags.

Every route requires an authenticated caller; ownership is enforced by the
repository.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status

from ..auth.core import UserInfo, get_current_user
from ..dependencies import get_bulk_engine, get_flag_repository
from .bulk import BulkTagMutationEngine
from .models import (
    ApplicationCreate,
    ApplicationResponse,
    BulkTagRequest,
    BulkTagResponse,
    FlagCreate,
    FlagResponse,
    FlagTagsUpdate,
    FlagUpdate,
    TagCreate,
    TagResponse,
    TagUpdate,
)
from .service import FlagRepository

router = APIRouter(prefix="/applications", tags=["Applications"])

CurrentUser = Annotated[UserInfo, Depends(get_current_user)]
Repository = Annotated[FlagRepository, Depends(get_flag_repository)]


# ==================== Applications ====================


@router.post("", response_model=ApplicationResponse, status_code=status.HTTP_201_CREATED)
async def create_application(
    payload: ApplicationCreate,
    current_user: CurrentUser,
    repository: Repository,
) -> ApplicationResponse:
    """Create an application with a freshly generated SDK access key."""
    application = await repository.create_application(current_user, payload.name)
    response = ApplicationResponse.model_validate(application)
    response.flag_count = 0
    return response


@router.get("", response_model=list[ApplicationResponse])
async def list_applications(
    current_user: CurrentUser,
    repository: Repository,
) -> list[ApplicationResponse]:
    """List the caller's applications, most recently updated first."""
    return await repository.list_applications(current_user)


@router.get("/{application_id}", response_model=ApplicationResponse)
async def get_application(
    application_id: UUID,
    current_user: CurrentUser,
    repository: Repository,
) -> ApplicationResponse:
    application = await repository.get_application(current_user, application_id)
    return ApplicationResponse.model_validate(application)


@router.delete("/{application_id}")
async def delete_application(
    application_id: UUID,
    current_user: CurrentUser,
    repository: Repository,
) -> dict[str, str]:
    """Delete an application together with its flags and tags."""
    await repository.delete_application(current_user, application_id)
    return {"message": "Deleted"}


# ==================== Flags ====================


@router.get("/{application_id}/flags", response_model=list[FlagResponse])
async def list_flags(
    application_id: UUID,
    current_user: CurrentUser,
    repository: Repository,
) -> list[FlagResponse]:
    flags = await repository.list_flags(current_user, application_id)
    return [FlagResponse.model_validate(flag) for flag in flags]


@router.post(
    "/{application_id}/flags",
    response_model=FlagResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_flag(
    application_id: UUID,
    payload: FlagCreate,
    current_user: CurrentUser,
    repository: Repository,
) -> FlagResponse:
    """
    Create a flag.

    Values are opaque strings. JSON flags must carry a parseable JSON value.
    """
    flag = await repository.create_flag(current_user, application_id, payload)
    return FlagResponse.model_validate(flag)


@router.post("/{application_id}/flags/bulk-tags", response_model=BulkTagResponse)
async def bulk_update_flag_tags(
    application_id: UUID,
    payload: BulkTagRequest,
    current_user: CurrentUser,
    engine: Annotated[BulkTagMutationEngine, Depends(get_bulk_engine)],
) -> BulkTagResponse:
    """Add, remove or set tags across many flags at once."""
    return await engine.mutate(
        current_user,
        application_id,
        payload.flag_ids,
        payload.tag_ids,
        payload.action,
    )


@router.get("/{application_id}/flags/{flag_id}", response_model=FlagResponse)
async def get_flag(
    application_id: UUID,
    flag_id: UUID,
    current_user: CurrentUser,
    repository: Repository,
) -> FlagResponse:
    flag = await repository.get_flag(current_user, application_id, flag_id)
    return FlagResponse.model_validate(flag)


@router.put("/{application_id}/flags/{flag_id}", response_model=FlagResponse)
async def update_flag(
    application_id: UUID,
    flag_id: UUID,
    payload: FlagUpdate,
    current_user: CurrentUser,
    repository: Repository,
) -> FlagResponse:
    """Update the supplied fields of a flag."""
    flag = await repository.update_flag(current_user, application_id, flag_id, payload)
    return FlagResponse.model_validate(flag)


@router.delete("/{application_id}/flags/{flag_id}")
async def delete_flag(
    application_id: UUID,
    flag_id: UUID,
    current_user: CurrentUser,
    repository: Repository,
) -> dict[str, str]:
    await repository.delete_flag(current_user, application_id, flag_id)
    return {"message": "Deleted"}


@router.post("/{application_id}/flags/{flag_id}/tags", response_model=FlagResponse)
@router.put("/{application_id}/flags/{flag_id}/tags", response_model=FlagResponse)
async def set_flag_tags(
    application_id: UUID,
    flag_id: UUID,
    payload: FlagTagsUpdate,
    current_user: CurrentUser,
    repository: Repository,
) -> FlagResponse:
    """Replace the tag set of a single flag."""
    flag = await repository.set_flag_tags(current_user, application_id, flag_id, payload.tag_ids)
    return FlagResponse.model_validate(flag)


# ==================== Tags ====================


@router.get("/{application_id}/tags", response_model=list[TagResponse])
async def list_tags(
    application_id: UUID,
    current_user: CurrentUser,
    repository: Repository,
) -> list[TagResponse]:
    tags = await repository.list_tags(current_user, application_id)
    return [TagResponse.model_validate(tag) for tag in tags]


@router.post(
    "/{application_id}/tags",
    response_model=TagResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_tag(
    application_id: UUID,
    payload: TagCreate,
    current_user: CurrentUser,
    repository: Repository,
) -> TagResponse:
    tag = await repository.create_tag(current_user, application_id, payload)
    return TagResponse.model_validate(tag)


@router.put("/{application_id}/tags/{tag_id}", response_model=TagResponse)
async def update_tag(
    application_id: UUID,
    tag_id: UUID,
    payload: TagUpdate,
    current_user: CurrentUser,
    repository: Repository,
) -> TagResponse:
    tag = await repository.update_tag(current_user, application_id, tag_id, payload)
    return TagResponse.model_validate(tag)


@router.delete("/{application_id}/tags/{tag_id}")
async def delete_tag(
    application_id: UUID,
    tag_id: UUID,
    current_user: CurrentUser,
    repository: Repository,
) -> dict[str, str]:
    """Delete a tag and detach it from every flag."""
    await repository.delete_tag(current_user, application_id, tag_id)
    return {"message": "Deleted"}


__all__ = ["router"]
