"""Reconciliation report schemas.

These are the structured (machine-readable) outputs of the audit and
repair passes. The CLI serializes them with model_dump_json().
"""

from typing import Any

from pydantic import BaseModel, Field

from app.schemas.base import IssueKind, RepairKind, Sex


class Interval(BaseModel):
    """Half-open age interval [age_min, age_max) of one range row."""

    id: str | None = Field(None, description="Range row identifier")
    age_min: float = Field(..., description="Inclusive lower age bound (years)")
    age_max: float = Field(..., description="Exclusive upper age bound (years)")


class Issue(BaseModel):
    """Consistency issue found by the overlap detector."""

    analysis: str = Field(..., description="Analysis name")
    parameter: str = Field(..., description="Parameter name")
    sex: Sex | None = Field(None, description="Sex partition, when the issue is interval based")
    kind: IssueKind = Field(..., description="Issue classification")
    interval_a: Interval | None = Field(None, description="First interval involved")
    interval_b: Interval | None = Field(None, description="Second interval involved")
    detail: str = Field("", description="Human-readable explanation")


class InvalidRange(BaseModel):
    """Range row that failed canonicalization."""

    id: str | None = Field(None, description="Range row identifier")
    analysis: str = Field(..., description="Analysis name")
    parameter: str = Field(..., description="Parameter name")
    problems: list[str] = Field(default_factory=list, description="Data errors found in the row")


class AuditReport(BaseModel):
    """Result of a read-only audit pass."""

    ok: bool = Field(..., description="True when no HIGH issue was found")
    matched: int = Field(0, description="Parameters matched by the filter")
    high: int = Field(0, description="Number of HIGH_* issues")
    warn: int = Field(0, description="Number of WARN_* issues")
    skipped: int = Field(0, description="Number of malformed rows")
    issues: list[Issue] = Field(default_factory=list)
    invalid: list[InvalidRange] = Field(default_factory=list)


class ReportItem(BaseModel):
    """One row of a reconciliation plan or its applied outcome."""

    action: str = Field(..., description="would_insert, insert, skip, aborted, ...")
    table: str = Field(..., description="Range table the item targets")
    analysis: str | None = None
    parameter: str | None = None
    range_id: str | None = Field(None, description="Existing row acted upon")
    sex: str | None = None
    age_min: float | None = None
    age_max: float | None = None
    lower: float | None = None
    upper: float | None = None
    text_value: str | None = None
    reason: str = ""


class ReconciliationReport(BaseModel):
    """Result of a reconciliation pass, dry-run or applied."""

    ok: bool = True
    kind: RepairKind
    applied: bool = False
    matched: int = 0
    inserted: int = 0
    updated: int = 0
    deleted: int = 0
    skipped: int = 0
    error: str | None = None
    items: list[ReportItem] = Field(default_factory=list)


class CatalogVersionResult(BaseModel):
    """Outcome of a catalog versioning run."""

    changed: bool = Field(..., description="False when the catalog hash is unchanged")
    version_number: int | None = Field(None, description="New (or current) version number")
    hash_sha256: str = Field(..., description="Hash of the canonical snapshot")
    previous_version: int | None = None
    item_count: int = 0
    range_count: int = 0
    diff: dict[str, Any] | None = None
