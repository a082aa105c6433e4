"""Base schemas and enums for reference range reconciliation."""

from enum import Enum


class Sex(str, Enum):
    """Canonical sex of a reference range.

    AMBOS means the range applies to both sexes.
    """

    MASCULINO = "Masculino"
    FEMENINO = "Femenino"
    AMBOS = "Ambos"


class IssueKind(str, Enum):
    """Consistency issues reported by the overlap detector."""

    HIGH_DUPLICATE_RANGE = "HIGH_DUPLICATE_RANGE"
    HIGH_OVERLAP_SAME_SEX = "HIGH_OVERLAP_SAME_SEX"
    WARN_AMBOS_OVERLAP_SEX = "WARN_AMBOS_OVERLAP_SEX"
    HIGH_DUPLICATE_PARAMETER_NAME = "HIGH_DUPLICATE_PARAMETER_NAME"

    @property
    def is_high(self) -> bool:
        return self.value.startswith("HIGH_")


class RepairKind(str, Enum):
    """Repair passes available to the reconciliation pipeline."""

    FILL_GAPS = "fill_gaps"
    SPLIT_AMBOS = "split_ambos"
    COLLAPSE_AMBOS = "collapse_ambos"
    FORCE_EXCLUSIVE = "force_exclusive"
    SNAP_BOUNDARIES = "snap_boundaries"
    MIGRATE_LEGACY = "migrate_legacy"
    DEDUPE_EXACT = "dedupe_exact"
    TRIM_OVERLAPS = "trim_overlaps"


class PlanAction(str, Enum):
    """Mutation a plan item performs."""

    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"
    SKIP = "skip"


class FillMode(str, Enum):
    """Gap filler coverage strategy."""

    ADJACENT = "adjacent"  # Per-sex gaps within the age domain
    PEDIATRIC = "pediatric"  # [0, 18) filled as Ambos
    ADULT = "adult"  # [18, 120) filled as Ambos
    BOTH = "both"  # Pediatric and adult
