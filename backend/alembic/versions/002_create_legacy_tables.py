"""Create legacy study tables.

Revision ID: 002
Revises: 001
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: str | None = "001"
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "studies",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("category", sa.String(255), nullable=True),
    )
    op.create_index("ix_studies_name", "studies", ["name"])

    op.create_table(
        "parameters",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "study_id",
            sa.String(36),
            sa.ForeignKey("studies.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("unit", sa.String(64), nullable=True),
        sa.Column("position", sa.Integer(), nullable=True),
    )
    op.create_index("ix_parameters_study_id", "parameters", ["study_id"])

    op.create_table(
        "reference_ranges",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "parameter_id",
            sa.String(36),
            sa.ForeignKey("parameters.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sex", sa.String(20), nullable=True),
        sa.Column("age_min", sa.Float(), nullable=True),
        sa.Column("age_max", sa.Float(), nullable=True),
        sa.Column("age_min_unit", sa.String(20), nullable=True),
        sa.Column("min_value", sa.Float(), nullable=True),
        sa.Column("max_value", sa.Float(), nullable=True),
        sa.Column("text_value", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index("ix_reference_ranges_parameter_id", "reference_ranges", ["parameter_id"])


def downgrade() -> None:
    op.drop_index("ix_reference_ranges_parameter_id", table_name="reference_ranges")
    op.drop_table("reference_ranges")
    op.drop_index("ix_parameters_study_id", table_name="parameters")
    op.drop_table("parameters")
    op.drop_index("ix_studies_name", table_name="studies")
    op.drop_table("studies")
