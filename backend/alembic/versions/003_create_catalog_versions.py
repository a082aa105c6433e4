"""Create catalog_versions table.

Revision ID: 003
Revises: 002
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "003"
down_revision: str | None = "002"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "catalog_versions",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column("version_number", sa.Integer(), nullable=False),
        sa.Column("hash_sha256", sa.String(64), nullable=False),
        sa.Column("item_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("range_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("snapshot", postgresql.JSONB(), nullable=False),
        sa.Column("diff_from_previous", postgresql.JSONB(), nullable=True),
        sa.Column("previous_version", sa.Integer(), nullable=True),
    )
    op.create_index(
        "ix_catalog_versions_version_number", "catalog_versions", ["version_number"], unique=True
    )


def downgrade() -> None:
    op.drop_index("ix_catalog_versions_version_number", table_name="catalog_versions")
    op.drop_table("catalog_versions")
