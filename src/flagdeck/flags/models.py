"""
Application, flag and tag models.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Index,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db import Base, TimestampMixin

MAX_VALUE_LENGTH = 10_000
DEFAULT_TAG_COLOR = "#3B82F6"


class FlagType(str, Enum):
    """Declared type of a flag value. The value itself is always stored as a string."""

    BOOLEAN = "BOOLEAN"
    STRING = "STRING"
    NUMBER = "NUMBER"
    JSON = "JSON"


flag_tags = Table(
    "flag_tags",
    Base.metadata,
    Column("flag_id", Uuid, ForeignKey("flags.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", Uuid, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
    Index("ix_flag_tags_tag_id", "tag_id"),
)


class Application(Base, TimestampMixin):
    """A tenant owning flags, tags and an SDK access key."""

    __tablename__ = "applications"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    access_key: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    owner_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)

    flags: Mapped[list["Flag"]] = relationship(
        back_populates="application",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    tags: Mapped[list["Tag"]] = relationship(
        back_populates="application",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )


class Tag(Base, TimestampMixin):
    """A label used to group flags within one application."""

    __tablename__ = "tags"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    application_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("applications.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    color: Mapped[str] = mapped_column(String(32), nullable=False, default=DEFAULT_TAG_COLOR)

    application: Mapped[Application] = relationship(back_populates="tags")

    __table_args__ = (UniqueConstraint("application_id", "name", name="uq_tags_application_name"),)


class Flag(Base, TimestampMixin):
    """A named configuration toggle with a typed string value."""

    __tablename__ = "flags"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    application_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("applications.id", ondelete="CASCADE"), nullable=False, index=True
    )
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False, default=FlagType.BOOLEAN.value)
    value: Mapped[str] = mapped_column(Text, nullable=False)

    application: Mapped[Application] = relationship(back_populates="flags")
    tags: Mapped[list[Tag]] = relationship(
        secondary=flag_tags, lazy="selectin", order_by=Tag.name
    )

    __table_args__ = (
        UniqueConstraint("application_id", "key", name="uq_flags_application_key"),
        Index("ix_flags_application_enabled", "application_id", "enabled"),
    )


# Pydantic models for API


class ApplicationCreate(BaseModel):
    """Model for creating applications."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str = Field(min_length=1, max_length=255)


class ApplicationResponse(BaseModel):
    """Model for application responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    name: str
    access_key: str
    owner_id: str
    created_at: datetime
    updated_at: datetime
    flag_count: int | None = None


class TagCreate(BaseModel):
    """Model for creating tags."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str | None = None
    color: str | None = Field(default=None, max_length=32)


class TagUpdate(BaseModel):
    """Model for updating tags. Omitted fields are left unchanged."""

    model_config = ConfigDict(str_strip_whitespace=True, extra="forbid")

    name: str | None = None
    color: str | None = Field(default=None, max_length=32)


class TagResponse(BaseModel):
    """Model for tag responses."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    application_id: UUID
    name: str
    color: str
    created_at: datetime
    updated_at: datetime


class FlagCreate(BaseModel):
    """Model for creating flags.

    Value constraints (blank, length, JSON) are enforced by the repository so
    they apply to every caller, not only HTTP clients.
    """

    model_config = ConfigDict(extra="forbid")

    key: str | None = None
    display_name: str | None = None
    description: str | None = None
    enabled: bool = False
    type: FlagType = FlagType.BOOLEAN
    value: str | None = None
    tag_ids: list[UUID] | None = None


class FlagUpdate(BaseModel):
    """Model for updating flags. Omitted fields are left unchanged."""

    model_config = ConfigDict(extra="forbid")

    key: str | None = None
    display_name: str | None = None
    description: str | None = None
    enabled: bool | None = None
    type: FlagType | None = None
    value: str | None = None
    tag_ids: list[UUID] | None = None


class FlagResponse(BaseModel):
    """Model for flag responses, tags resolved."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    application_id: UUID
    key: str
    display_name: str
    description: str | None
    enabled: bool
    type: FlagType
    value: str
    tags: list[TagResponse]
    created_at: datetime
    updated_at: datetime


class FlagTagsUpdate(BaseModel):
    """Model for replacing the tags of one flag."""

    model_config = ConfigDict(extra="forbid")

    tag_ids: list[UUID] = Field(default_factory=list)


class BulkTagAction(str, Enum):
    """Tag operations applied across a batch of flags."""

    ADD = "add"
    REMOVE = "remove"
    SET = "set"


class BulkTagRequest(BaseModel):
    """Model for bulk tag mutation requests."""

    model_config = ConfigDict(extra="forbid")

    flag_ids: list[UUID] = Field(default_factory=list)
    tag_ids: list[UUID] = Field(default_factory=list)
    action: BulkTagAction


class BulkTagResponse(BaseModel):
    """Outcome of a bulk tag mutation."""

    updated: int
    flags: list[FlagResponse]
