"""Reconciliation pipeline.

Every repair pass follows the same shape:

    load -> plan -> print plan -> (optionally) apply

A RepairStrategy turns loaded ParameterGroups into PlanItems, a pure
computation with no writes. ReconciliationPipeline prints the plan,
and in apply mode re-checks every item against storage right before the
write (existence of the source row, absence of an identical target,
presence of the deletion evidence), committing one transaction per
repair group. A storage failure rolls back the open group and aborts
the rest of the batch.
"""

import logging
import sys
from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import TextIO

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.audit import AuditAction, log_failed_group, log_range_mutation
from app.schemas.base import PlanAction, RepairKind
from app.schemas.reconciliation import AuditReport, ReconciliationReport, ReportItem
from app.services.interval_model import RangeIdentity, ReferenceRange
from app.services.overlap_detector import OverlapDetector
from app.services.range_store import (
    FilterError,
    NameFilter,
    ParameterGroup,
    RangeStore,
    RangeTableSpec,
)

logger = logging.getLogger(__name__)

# Fields compared when turning a planned update into column changes
UPDATABLE_FIELDS = ("sex", "age_min", "age_max", "lower", "upper", "text_value", "unit", "method", "notes")

_AUDIT_ACTIONS = {
    PlanAction.INSERT: AuditAction.CREATE,
    PlanAction.UPDATE: AuditAction.UPDATE,
    PlanAction.DELETE: AuditAction.DELETE,
}


class TransactionScope(str, Enum):
    """Unit of commit when applying a plan."""

    BATCH = "batch"  # Whole plan in one transaction
    PARAMETER = "parameter"  # One transaction per parameter
    ITEM = "item"  # Every mutation commits on its own


@dataclass
class PlanItem:
    """One proposed change (or a reported skip).

    source is the existing row acted upon, target the row as it should
    exist afterwards, and evidence the rows that must still exist for a
    delete to be safe.
    """

    action: PlanAction
    kind: RepairKind
    table: RangeTableSpec
    analysis: str | None = None
    parameter: str | None = None
    source: ReferenceRange | None = None
    target: ReferenceRange | None = None
    evidence: tuple[ReferenceRange, ...] = ()
    reason: str = ""
    group: str = ""

    @property
    def subject(self) -> ReferenceRange | None:
        return self.target or self.source

    def to_report_item(self, action: str, reason: str | None = None, range_id: str | None = None) -> ReportItem:
        rng = self.subject
        return ReportItem(
            action=action,
            table=self.table.ranges,
            analysis=self.analysis,
            parameter=self.parameter,
            range_id=range_id or (self.source.id if self.source else None),
            sex=rng.sex.value if rng else None,
            age_min=rng.age_min if rng else None,
            age_max=rng.age_max if rng else None,
            lower=rng.lower if rng else None,
            upper=rng.upper if rng else None,
            text_value=rng.text_value if rng else None,
            reason=self.reason if reason is None else reason,
        )


def changed_fields(source: ReferenceRange, target: ReferenceRange) -> list[str]:
    """Canonical fields that differ between two versions of a row."""
    return [name for name in UPDATABLE_FIELDS if getattr(source, name) != getattr(target, name)]


class RepairStrategy(ABC):
    """A repair pass: selects tables, plans changes per parameter."""

    kind: RepairKind
    scope: TransactionScope = TransactionScope.PARAMETER
    requires_filter: bool = False

    def default_filter(self) -> NameFilter | None:
        return None

    def tables(self, store: RangeStore) -> list[RangeTableSpec]:
        return [store.preferred_spec()]

    def plan(self, store: RangeStore, name_filter: NameFilter) -> tuple[int, list[PlanItem]]:
        """Plan changes for every matching parameter.

        Returns:
            (number of matched parameters, plan items)
        """
        matched = 0
        items: list[PlanItem] = []
        for spec in self.tables(store):
            for group in store.load_groups(spec, name_filter):
                matched += 1
                items.extend(self.data_error_items(group))
                items.extend(self.plan_group(group, store))
        return matched, items

    @abstractmethod
    def plan_group(self, group: ParameterGroup, store: RangeStore) -> list[PlanItem]:
        """Plan changes for one parameter. Must not write."""

    def item(self, action: PlanAction, group: ParameterGroup, **kwargs) -> PlanItem:
        """Build a PlanItem in this strategy's context."""
        return PlanItem(
            action=action,
            kind=self.kind,
            table=group.table,
            analysis=group.analysis,
            parameter=group.parameter,
            group=f"{group.table.name}:{group.parameter_id}",
            **kwargs,
        )

    def data_error_items(self, group: ParameterGroup) -> list[PlanItem]:
        """Skip items for rows that failed canonicalization."""
        return [
            self.item(PlanAction.SKIP, group, source=rng, reason="; ".join(rng.problems))
            for rng in group.invalid_ranges
        ]


class PlannedIdentities:
    """Identities a plan will create, for in-plan deduplication."""

    def __init__(self, existing: Iterable[ReferenceRange] = ()):
        self._identities: set[RangeIdentity] = {rng.identity for rng in existing}

    def __contains__(self, rng: ReferenceRange) -> bool:
        return rng.identity in self._identities

    def add(self, rng: ReferenceRange) -> None:
        self._identities.add(rng.identity)

    def discard(self, rng: ReferenceRange) -> None:
        self._identities.discard(rng.identity)


def format_plan_table(items: list[PlanItem], kind: RepairKind, applied: bool) -> str:
    """Render a plan as a fixed-width table, one row per item."""
    mode = "APPLY" if applied else "DRY-RUN"
    header = f"[{mode}] {kind.value}: {len(items)} item(s)"
    if not items:
        return f"{header}\n  No changes planned.\n"

    rows = [("action", "table", "analysis / parameter", "range", "reason")]
    for item in items:
        action = item.action.value if item.action is PlanAction.SKIP else f"would_{item.action.value}"
        rng = item.subject
        change = rng.describe() if rng else ""
        if item.action is PlanAction.UPDATE and item.source is not None:
            change = f"{item.source.describe()} -> {change}"
        rows.append((action, item.table.ranges, f"{item.analysis} / {item.parameter}", change, item.reason))

    widths = [max(len(str(row[i])) for row in rows) for i in range(4)]
    lines = [header]
    for row in rows:
        cells = [str(value).ljust(widths[i]) for i, value in enumerate(row[:4])]
        lines.append("  " + "  ".join(cells) + ("  " + row[4] if row[4] else ""))
    return "\n".join(lines) + "\n"


class ReconciliationPipeline:
    """Shared filter / plan / apply pipeline for all repair passes."""

    def __init__(self, session: Session, tenant: str | None = None, store: RangeStore | None = None):
        self.session = session
        self.tenant = tenant
        self.store = store or RangeStore(session)

    def resolve_filter(self, strategy: RepairStrategy, name_filter: NameFilter | None) -> NameFilter:
        """Apply the strategy default and required-filter rule."""
        if name_filter is None or name_filter.is_empty:
            name_filter = strategy.default_filter() or NameFilter()
        if strategy.requires_filter and name_filter.is_empty:
            raise FilterError(f"{strategy.kind.value} requires a parameter filter")
        return name_filter

    def plan(self, strategy: RepairStrategy, name_filter: NameFilter | None = None) -> tuple[int, list[PlanItem]]:
        """Compute the plan without writing anything."""
        name_filter = self.resolve_filter(strategy, name_filter)
        logger.info(f"Planning {strategy.kind.value} (tenant={self.tenant or 'default'}, filter={name_filter})")
        return strategy.plan(self.store, name_filter)

    def run(
        self,
        strategy: RepairStrategy,
        name_filter: NameFilter | None = None,
        apply: bool = False,
        stream: TextIO | None = None,
    ) -> ReconciliationReport:
        """Plan, print the plan and, when apply is set, execute it."""
        matched, items = self.plan(strategy, name_filter)
        out = stream if stream is not None else sys.stdout
        out.write(format_plan_table(items, strategy.kind, apply))
        # Planning only read; end that transaction before writing
        self.session.rollback()

        if not apply:
            return self._dry_run_report(strategy.kind, matched, items)
        return self.apply(strategy, matched, items)

    def _dry_run_report(self, kind: RepairKind, matched: int, items: list[PlanItem]) -> ReconciliationReport:
        report = ReconciliationReport(kind=kind, applied=False, matched=matched)
        for item in items:
            if item.action is PlanAction.SKIP:
                report.skipped += 1
                report.items.append(item.to_report_item("skip"))
                continue
            self._count(report, item.action)
            report.items.append(item.to_report_item(f"would_{item.action.value}"))
        return report

    @staticmethod
    def _count(report: ReconciliationReport, action: PlanAction) -> None:
        if action is PlanAction.INSERT:
            report.inserted += 1
        elif action is PlanAction.UPDATE:
            report.updated += 1
        elif action is PlanAction.DELETE:
            report.deleted += 1
        else:
            report.skipped += 1

    def _group_items(self, strategy: RepairStrategy, items: list[PlanItem]) -> list[list[PlanItem]]:
        if strategy.scope is TransactionScope.BATCH:
            return [items] if items else []
        if strategy.scope is TransactionScope.ITEM:
            return [[item] for item in items]
        groups: dict[str, list[PlanItem]] = {}
        for item in items:
            groups.setdefault(item.group, []).append(item)
        return list(groups.values())

    def apply(self, strategy: RepairStrategy, matched: int, items: list[PlanItem]) -> ReconciliationReport:
        """Execute a plan, one transaction per repair group."""
        report = ReconciliationReport(kind=strategy.kind, applied=True, matched=matched)
        groups = self._group_items(strategy, items)

        for index, group_items in enumerate(groups):
            outcomes: list[tuple[PlanItem, PlanAction, str, str | None]] = []
            try:
                for item in group_items:
                    outcomes.append((item, *self._apply_item(item)))
                self.session.commit()
            except SQLAlchemyError as e:
                self.session.rollback()
                report.ok = False
                report.error = str(e).splitlines()[0]
                logger.error(f"{strategy.kind.value}: storage failure, batch aborted: {report.error}")
                log_failed_group(
                    strategy.kind.value,
                    report.error,
                    tenant=self.tenant,
                    details={"items": len(group_items)},
                )
                for remaining in groups[index:]:
                    for item in remaining:
                        report.items.append(item.to_report_item("aborted"))
                break

            for item, action, reason, range_id in outcomes:
                self._count(report, action)
                label = action.value
                report.items.append(item.to_report_item(label, reason=reason, range_id=range_id))
                if action in _AUDIT_ACTIONS:
                    log_range_mutation(
                        _AUDIT_ACTIONS[action],
                        item.table.ranges,
                        range_id,
                        strategy.kind.value,
                        tenant=self.tenant,
                        details={"analysis": item.analysis, "parameter": item.parameter, "reason": reason},
                    )

        logger.info(
            f"{strategy.kind.value}: inserted={report.inserted} updated={report.updated} "
            f"deleted={report.deleted} skipped={report.skipped} ok={report.ok}"
        )
        return report

    def _apply_item(self, item: PlanItem) -> tuple[PlanAction, str, str | None]:
        """Re-check and execute one item.

        Returns:
            (effective action, reason, affected row id)
        """
        store, spec = self.store, item.table
        source, target = item.source, item.target

        if item.action is PlanAction.SKIP:
            return PlanAction.SKIP, item.reason, source.id if source else None

        if item.action is PlanAction.INSERT:
            existing = store.find_identical(spec, target.identity)
            if existing is not None:
                return PlanAction.SKIP, "identical row already exists", existing
            return PlanAction.INSERT, item.reason, store.insert(spec, target)

        if not store.exists(spec, source.id):
            return PlanAction.SKIP, "source row no longer exists", source.id

        if item.action is PlanAction.UPDATE:
            if store.find_identical(spec, target.identity, exclude_id=source.id) is not None:
                store.delete(spec, source.id)
                return PlanAction.DELETE, "identical target already exists", source.id
            store.update(spec, source.id, target, changed_fields(source, target))
            return PlanAction.UPDATE, item.reason, source.id

        for evidence in item.evidence:
            if store.find_identical(spec, evidence.identity, exclude_id=source.id) is None:
                return PlanAction.SKIP, f"evidence no longer present: {evidence.describe()}", source.id
        store.delete(spec, source.id)
        return PlanAction.DELETE, item.reason, source.id

    def audit(self, name_filter: NameFilter | None = None) -> AuditReport:
        """Run the read-only overlap detector over matching parameters."""
        name_filter = name_filter or NameFilter()
        spec = self.store.preferred_spec()
        groups = self.store.load_groups(spec, name_filter)
        report = OverlapDetector().audit(groups)
        logger.info(
            f"Audit ({spec.name}, filter={name_filter}): high={report.high} warn={report.warn} skipped={report.skipped}"
        )
        return report
