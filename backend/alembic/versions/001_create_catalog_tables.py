"""Create analysis catalog tables.

Revision ID: 001
Revises: None
Create Date: 2026-10-19

"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "analysis",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("code", sa.String(64), nullable=True, unique=True),
        sa.Column("category", sa.String(255), nullable=True),
        sa.Column("general_units", sa.String(64), nullable=True),
    )
    op.create_index("ix_analysis_name", "analysis", ["name"])

    op.create_table(
        "analysis_parameters",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "analysis_id",
            sa.String(36),
            sa.ForeignKey("analysis.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("unit", sa.String(64), nullable=True),
        sa.Column("decimal_places", sa.Integer(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=True),
    )
    op.create_index("ix_analysis_parameters_analysis_id", "analysis_parameters", ["analysis_id"])

    op.create_table(
        "analysis_reference_ranges",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
        ),
        sa.Column(
            "parameter_id",
            sa.String(36),
            sa.ForeignKey("analysis_parameters.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sex", sa.String(20), nullable=True),
        sa.Column("age_min", sa.Float(), nullable=True),
        sa.Column("age_max", sa.Float(), nullable=True),
        sa.Column("age_min_unit", sa.String(20), nullable=True),
        sa.Column("lower", sa.Float(), nullable=True),
        sa.Column("upper", sa.Float(), nullable=True),
        sa.Column("text_value", sa.Text(), nullable=True),
        sa.Column("unit", sa.String(64), nullable=True),
        sa.Column("method", sa.String(255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
    )
    op.create_index(
        "ix_analysis_reference_ranges_parameter_id", "analysis_reference_ranges", ["parameter_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_analysis_reference_ranges_parameter_id", table_name="analysis_reference_ranges")
    op.drop_table("analysis_reference_ranges")
    op.drop_index("ix_analysis_parameters_analysis_id", table_name="analysis_parameters")
    op.drop_table("analysis_parameters")
    op.drop_index("ix_analysis_name", table_name="analysis")
    op.drop_table("analysis")
