"""Catalog canonicalization and versioning.

Builds a snapshot of the whole catalog (analyses -> parameters ->
ranges), serializes it canonically (object keys sorted, array order
kept) and fingerprints it with SHA-256. A new CatalogVersion row is
appended only when the fingerprint differs from the latest version.
"""

import hashlib
import json
import logging
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from app.models.catalog_version import CatalogVersion
from app.schemas.base import Sex
from app.schemas.reconciliation import CatalogVersionResult
from app.services.interval_model import SEX_ORDER, ReferenceRange, format_number
from app.services.range_store import ParameterGroup, RangeStore, SchemaError

logger = logging.getLogger(__name__)

_SEX_RANK = {sex: index for index, sex in enumerate(SEX_ORDER)}


def _normalize(value: Any) -> Any:
    """Make numbers serialize identically regardless of storage type."""
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if isinstance(value, bool) or value is None:
        return value
    if isinstance(value, Decimal):
        value = float(value)
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, Sex):
        return value.value
    return value


def canonical_json(value: Any) -> str:
    """Deterministic JSON: keys sorted recursively, no whitespace."""
    return json.dumps(_normalize(value), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def hash_catalog(snapshot: Any) -> str:
    """SHA-256 hex digest of the canonical serialization."""
    return hashlib.sha256(canonical_json(snapshot).encode("utf-8")).hexdigest()


def _range_entry(rng: ReferenceRange) -> dict[str, Any]:
    return {
        "sex": rng.sex.value,
        "age_min": rng.age_min,
        "age_max": rng.age_max,
        "age_unit": rng.age_unit,
        "lower": rng.lower,
        "upper": rng.upper,
        "text_value": rng.text_value,
        "unit": rng.unit,
        "method": rng.method,
        "notes": rng.notes,
    }


def _range_order(rng: ReferenceRange) -> tuple:
    return (
        _SEX_RANK[rng.sex],
        rng.age_min,
        rng.age_max,
        rng.lower is None,
        rng.lower or 0,
        rng.upper is None,
        rng.upper or 0,
        rng.text_value or "",
        rng.method or "",
        rng.unit or "",
        rng.notes or "",
    )


def build_snapshot(groups: list[ParameterGroup]) -> list[dict[str, Any]]:
    """Ordered catalog snapshot from loaded parameter groups.

    Analyses are keyed by code when present, otherwise by name, and
    sorted by key. Parameters keep catalog order. Ranges are sorted by
    content so that row ids and insertion order do not affect the hash.
    """
    analyses: dict[str, dict[str, Any]] = {}
    for group in groups:
        key = group.analysis_code or group.analysis
        entry = analyses.setdefault(
            key,
            {
                "key": key,
                "name": group.analysis,
                "category": group.category,
                "parameters": [],
            },
        )
        entry["parameters"].append(
            {
                "name": group.parameter,
                "unit": group.unit,
                "decimal_places": group.decimal_places,
                "ranges": [_range_entry(r) for r in sorted(group.ranges, key=_range_order)],
            }
        )
    return [analyses[key] for key in sorted(analyses)]


def _simplify(rng: dict[str, Any]) -> str:
    """Compact projection of a snapshot range used for diffing."""
    return (
        f"{rng.get('sex')}|{format_number(rng.get('age_min'))}-{format_number(rng.get('age_max'))}"
        f"|{format_number(rng.get('lower'))}-{format_number(rng.get('upper'))}|{rng.get('text_value') or ''}"
    )


def diff_snapshots(previous: list[dict[str, Any]] | None, current: list[dict[str, Any]]) -> dict[str, Any]:
    """Shallow diff between two snapshots.

    A parameter counts as changed when the set of simplified range
    projections differs.
    """
    prev_by_key = {a["key"]: a for a in previous or []}
    cur_by_key = {a["key"]: a for a in current}

    diff: dict[str, Any] = {
        "added_analyses": sorted(k for k in cur_by_key if k not in prev_by_key),
        "removed_analyses": sorted(k for k in prev_by_key if k not in cur_by_key),
        "modified_analyses": [],
    }
    for key in sorted(k for k in cur_by_key if k in prev_by_key):
        old_params = {p["name"]: p for p in prev_by_key[key]["parameters"]}
        new_params = {p["name"]: p for p in cur_by_key[key]["parameters"]}
        changed = sorted(
            name
            for name in new_params
            if name in old_params
            and {_simplify(r) for r in new_params[name]["ranges"]} != {_simplify(r) for r in old_params[name]["ranges"]}
        )
        added = sorted(n for n in new_params if n not in old_params)
        removed = sorted(n for n in old_params if n not in new_params)
        if added or removed or changed:
            diff["modified_analyses"].append(
                {"key": key, "added_params": added, "removed_params": removed, "changed_params": changed}
            )
    return diff


class CatalogVersioner:
    """Computes the catalog fingerprint and appends versions when it changes."""

    def __init__(self, session: Session, store: RangeStore | None = None):
        self.session = session
        self.store = store or RangeStore(session)

    def latest_version(self) -> CatalogVersion | None:
        return self.session.scalars(
            select(CatalogVersion).order_by(CatalogVersion.version_number.desc()).limit(1)
        ).first()

    def snapshot(self) -> list[dict[str, Any]]:
        spec = self.store.preferred_spec()
        return build_snapshot(self.store.load_groups(spec))

    def commit_version(self) -> CatalogVersionResult:
        """Compute and, if changed, commit a new catalog version."""
        if not self.store.has_table(CatalogVersion.__tablename__):
            raise SchemaError(f"Table {CatalogVersion.__tablename__!r} does not exist; run migrations")

        snapshot = self.snapshot()
        digest = hash_catalog(snapshot)
        item_count = len(snapshot)
        range_count = sum(len(p["ranges"]) for a in snapshot for p in a["parameters"])

        latest = self.latest_version()
        if latest is not None and latest.hash_sha256 == digest:
            logger.info(f"Catalog unchanged (version {latest.version_number}, {digest[:12]})")
            self.session.rollback()
            return CatalogVersionResult(
                changed=False,
                version_number=latest.version_number,
                hash_sha256=digest,
                previous_version=latest.previous_version,
                item_count=item_count,
                range_count=range_count,
            )

        previous_number = self.session.scalar(select(func.max(CatalogVersion.version_number)))
        diff = diff_snapshots(latest.snapshot if latest else None, snapshot)
        version = CatalogVersion(
            version_number=(previous_number or 0) + 1,
            hash_sha256=digest,
            item_count=item_count,
            range_count=range_count,
            snapshot=_normalize(snapshot),
            diff_from_previous=diff,
            previous_version=previous_number,
        )
        self.session.add(version)
        self.session.commit()
        logger.info(
            f"Catalog version {version.version_number} committed "
            f"({item_count} analyses, {range_count} ranges, {digest[:12]})"
        )
        return CatalogVersionResult(
            changed=True,
            version_number=version.version_number,
            hash_sha256=digest,
            previous_version=previous_number,
            item_count=item_count,
            range_count=range_count,
            diff=diff,
        )
