"""SQLAlchemy models for the legacy study/parameter schema.

These tables predate the analysis catalog. They are only read by the
legacy migrator and, where present, repaired in place by the
schema-agnostic passes.
"""

from sqlalchemy import Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base


class Study(Base):
    """Legacy laboratory study."""

    __tablename__ = "studies"

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    category: Mapped[str | None] = mapped_column(String(255), nullable=True)


class LegacyParameter(Base):
    """Legacy study parameter."""

    __tablename__ = "parameters"

    study_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("studies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str | None] = mapped_column(String(64), nullable=True)
    position: Mapped[int | None] = mapped_column(Integer, nullable=True)


class LegacyReferenceRange(Base):
    """Legacy reference range (min_value / max_value columns)."""

    __tablename__ = "reference_ranges"

    parameter_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("parameters.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sex: Mapped[str | None] = mapped_column(String(20), nullable=True)
    age_min: Mapped[float | None] = mapped_column(Float, nullable=True)
    age_max: Mapped[float | None] = mapped_column(Float, nullable=True)
    age_min_unit: Mapped[str | None] = mapped_column(String(20), nullable=True)
    min_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    text_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
