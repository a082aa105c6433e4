"""SQLAlchemy model for the append-only catalog version log."""

from typing import Any

from sqlalchemy import JSON, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class CatalogVersion(Base):
    """Immutable catalog snapshot plus diff against the previous version.

    Rows are only ever inserted. version_number is monotonic and gapless.
    """

    __tablename__ = "catalog_versions"

    version_number: Mapped[int] = mapped_column(Integer, nullable=False, unique=True, index=True)
    hash_sha256: Mapped[str] = mapped_column(String(64), nullable=False)
    item_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    range_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    snapshot: Mapped[Any] = mapped_column(JSONType, nullable=False)
    diff_from_previous: Mapped[Any | None] = mapped_column(JSONType, nullable=True)
    previous_version: Mapped[int | None] = mapped_column(Integer, nullable=True)

    def __repr__(self) -> str:
        return f"<CatalogVersion(version={self.version_number}, hash={self.hash_sha256[:12]})>"
