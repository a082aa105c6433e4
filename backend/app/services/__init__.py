"""Reference range reconciliation services."""

from app.services.boundary_snapper import DEFAULT_SNAP_RULES, BoundarySnapStrategy, SnapRule
from app.services.catalog_versioner import (
    CatalogVersioner,
    build_snapshot,
    canonical_json,
    diff_snapshots,
    hash_catalog,
)
from app.services.deduplicator import DedupeExactStrategy
from app.services.gap_filler import GapFiller, GapFillStrategy, choose_template, find_gaps
from app.services.interval_model import (
    ReferenceRange,
    canonicalize,
    compute_gaps,
    merge_intervals,
    normalize_sex,
    overlaps,
)
from app.services.legacy_migrator import LegacyMigrationStrategy
from app.services.overlap_detector import OverlapDetector
from app.services.overlap_trimmer import TrimOverlapsStrategy, trim_same_values
from app.services.range_store import (
    LEGACY,
    MODERN,
    FilterError,
    NameFilter,
    ParameterGroup,
    RangeColumnMapping,
    RangeStore,
    SchemaError,
)
from app.services.reconciliation import (
    PlanItem,
    ReconciliationPipeline,
    RepairStrategy,
    TransactionScope,
)
from app.services.sex_reconciler import (
    CollapseAmbosStrategy,
    ForceExclusiveStrategy,
    SplitAmbosStrategy,
)

__all__ = [
    # Interval model
    "ReferenceRange",
    "canonicalize",
    "normalize_sex",
    "overlaps",
    "merge_intervals",
    "compute_gaps",
    # Storage
    "RangeStore",
    "RangeColumnMapping",
    "NameFilter",
    "ParameterGroup",
    "MODERN",
    "LEGACY",
    "FilterError",
    "SchemaError",
    # Detection
    "OverlapDetector",
    # Pipeline
    "ReconciliationPipeline",
    "RepairStrategy",
    "PlanItem",
    "TransactionScope",
    # Repairs
    "GapFiller",
    "GapFillStrategy",
    "find_gaps",
    "choose_template",
    "SplitAmbosStrategy",
    "CollapseAmbosStrategy",
    "ForceExclusiveStrategy",
    "BoundarySnapStrategy",
    "SnapRule",
    "DEFAULT_SNAP_RULES",
    "LegacyMigrationStrategy",
    "DedupeExactStrategy",
    "TrimOverlapsStrategy",
    "trim_same_values",
    # Versioning
    "CatalogVersioner",
    "build_snapshot",
    "canonical_json",
    "hash_catalog",
    "diff_snapshots",
]
