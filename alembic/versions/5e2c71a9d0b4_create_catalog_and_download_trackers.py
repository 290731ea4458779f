"""Create catalog tables and download_trackers

Revision ID: 5e2c71a9d0b4
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "5e2c71a9d0b4"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create mods, mod_versions, launcher_versions and download_trackers."""
    op.create_table(
        "mods",
        sa.Column("slug", sa.String(64), primary_key=True),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "mod_versions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "mod_slug",
            sa.String(64),
            sa.ForeignKey("mods.slug", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("version", sa.String(64), nullable=False),
        sa.Column("download_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("mod_slug", "version", name="uq_mod_versions_mod_version"),
    )

    op.create_table(
        "launcher_versions",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("version", sa.String(64), nullable=False, unique=True),
        sa.Column("download_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    op.create_table(
        "download_trackers",
        sa.Column("path", sa.String(1024), primary_key=True),
        sa.Column("ip_hash", sa.String(32), primary_key=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_download_trackers_expires_at",
        "download_trackers",
        ["expires_at"],
    )


def downgrade() -> None:
    """Drop download_trackers and the catalog tables."""
    op.drop_index("ix_download_trackers_expires_at", table_name="download_trackers")
    op.drop_table("download_trackers")
    op.drop_table("launcher_versions")
    op.drop_table("mod_versions")
    op.drop_table("mods")
