"""SQLAlchemy ORM models for reference range reconciliation.

All models inherit from Base which provides:
- id: UUID primary key (string form)
- created_at: Timestamp

Models:
- Analysis, AnalysisParameter, AnalysisReferenceRange (current catalog)
- Study, LegacyParameter, LegacyReferenceRange (legacy schema)
- CatalogVersion (append-only version log)
"""

from app.core.database import Base
from app.models.catalog import Analysis, AnalysisParameter, AnalysisReferenceRange
from app.models.catalog_version import CatalogVersion
from app.models.legacy import LegacyParameter, LegacyReferenceRange, Study

__all__ = [
    "Base",
    "Analysis",
    "AnalysisParameter",
    "AnalysisReferenceRange",
    "Study",
    "LegacyParameter",
    "LegacyReferenceRange",
    "CatalogVersion",
]
