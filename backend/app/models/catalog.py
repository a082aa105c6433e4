"""SQLAlchemy models for the analysis catalog (current schema)."""

from sqlalchemy import Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.database import Base


class Analysis(Base):
    """Laboratory analysis (study) owning one or more parameters."""

    __tablename__ = "analysis"

    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    code: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)
    category: Mapped[str | None] = mapped_column(String(255), nullable=True)
    general_units: Mapped[str | None] = mapped_column(String(64), nullable=True)

    parameters: Mapped[list["AnalysisParameter"]] = relationship(
        back_populates="analysis",
        cascade="all, delete-orphan",
        order_by="AnalysisParameter.position",
    )

    def __repr__(self) -> str:
        return f"<Analysis(id={self.id}, name={self.name}, code={self.code})>"


class AnalysisParameter(Base):
    """Measurable or qualitative analyte belonging to an analysis."""

    __tablename__ = "analysis_parameters"

    analysis_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("analysis.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit: Mapped[str | None] = mapped_column(String(64), nullable=True)
    decimal_places: Mapped[int | None] = mapped_column(Integer, nullable=True)
    position: Mapped[int | None] = mapped_column(Integer, nullable=True)

    analysis: Mapped[Analysis] = relationship(back_populates="parameters")
    reference_ranges: Mapped[list["AnalysisReferenceRange"]] = relationship(
        back_populates="parameter",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<AnalysisParameter(id={self.id}, name={self.name}, unit={self.unit})>"


class AnalysisReferenceRange(Base):
    """Age and sex scoped normal-value interval for a parameter.

    The interval is half-open: [age_min, age_max). NULL bounds mean the
    open ends of the age domain. The value is either the numeric pair
    (lower, upper) or text_value.
    """

    __tablename__ = "analysis_reference_ranges"

    parameter_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("analysis_parameters.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sex: Mapped[str | None] = mapped_column(String(20), nullable=True)
    age_min: Mapped[float | None] = mapped_column(Float, nullable=True)
    age_max: Mapped[float | None] = mapped_column(Float, nullable=True)
    age_min_unit: Mapped[str | None] = mapped_column(String(20), nullable=True)
    lower: Mapped[float | None] = mapped_column(Float, nullable=True)
    upper: Mapped[float | None] = mapped_column(Float, nullable=True)
    text_value: Mapped[str | None] = mapped_column(Text, nullable=True)
    unit: Mapped[str | None] = mapped_column(String(64), nullable=True)
    method: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    parameter: Mapped[AnalysisParameter] = relationship(back_populates="reference_ranges")

    def __repr__(self) -> str:
        return (
            f"<AnalysisReferenceRange(id={self.id}, sex={self.sex}, "
            f"age=[{self.age_min},{self.age_max}), lower={self.lower}, upper={self.upper})>"
        )
