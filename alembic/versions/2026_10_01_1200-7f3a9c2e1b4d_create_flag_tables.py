"""create_flag_tables

Revision ID: 7f3a9c2e1b4d
Revises:
Create Date: 2026-10-01 12:00:00.000000

"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "7f3a9c2e1b4d"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    ]


def upgrade() -> None:
    """Create applications, flags, tags and the flag/tag association table."""
    op.create_table(
        "applications",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("access_key", sa.String(64), nullable=False),
        sa.Column("owner_id", sa.String(255), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_applications_access_key", "applications", ["access_key"], unique=True)
    op.create_index("ix_applications_owner_id", "applications", ["owner_id"])

    op.create_table(
        "tags",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "application_id",
            sa.Uuid(),
            sa.ForeignKey("applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("color", sa.String(32), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("application_id", "name", name="uq_tags_application_name"),
    )
    op.create_index("ix_tags_application_id", "tags", ["application_id"])

    op.create_table(
        "flags",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column(
            "application_id",
            sa.Uuid(),
            sa.ForeignKey("applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("key", sa.String(255), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("type", sa.String(16), nullable=False),
        sa.Column("value", sa.Text(), nullable=False),
        *_timestamps(),
        sa.UniqueConstraint("application_id", "key", name="uq_flags_application_key"),
    )
    op.create_index("ix_flags_application_id", "flags", ["application_id"])
    op.create_index("ix_flags_application_enabled", "flags", ["application_id", "enabled"])

    op.create_table(
        "flag_tags",
        sa.Column(
            "flag_id",
            sa.Uuid(),
            sa.ForeignKey("flags.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "tag_id",
            sa.Uuid(),
            sa.ForeignKey("tags.id", ondelete="CASCADE"),
            primary_key=True,
        ),
    )
    op.create_index("ix_flag_tags_tag_id", "flag_tags", ["tag_id"])


def downgrade() -> None:
    op.drop_index("ix_flag_tags_tag_id", table_name="flag_tags")
    op.drop_table("flag_tags")
    op.drop_index("ix_flags_application_enabled", table_name="flags")
    op.drop_index("ix_flags_application_id", table_name="flags")
    op.drop_table("flags")
    op.drop_index("ix_tags_application_id", table_name="tags")
    op.drop_table("tags")
    op.drop_index("ix_applications_owner_id", table_name="applications")
    op.drop_index("ix_applications_access_key", table_name="applications")
    op.drop_table("applications")
