"""Pydantic schemas and enums for reference range reconciliation."""

from app.schemas.base import FillMode, IssueKind, PlanAction, RepairKind, Sex
from app.schemas.reconciliation import (
    AuditReport,
    CatalogVersionResult,
    Interval,
    InvalidRange,
    Issue,
    ReconciliationReport,
    ReportItem,
)

__all__ = [
    # Enums
    "Sex",
    "IssueKind",
    "RepairKind",
    "PlanAction",
    "FillMode",
    # Reports
    "Interval",
    "Issue",
    "InvalidRange",
    "AuditReport",
    "ReportItem",
    "ReconciliationReport",
    "CatalogVersionResult",
]
