"""Legacy to current catalog range migration.

Copies ranges from the legacy studies/parameters/reference_ranges tables
into analysis_reference_ranges, matching studies to analyses and
parameters to analysis parameters by exact name. Strictly additive: a
legacy row whose identity already exists in the current table is
skipped, nothing is ever deleted.
"""

import logging

from sqlalchemy import and_, func, select

from app.schemas.base import PlanAction, RepairKind
from app.services.range_store import (
    LEGACY,
    MODERN,
    NameFilter,
    ParameterGroup,
    RangeStore,
    SchemaError,
)
from app.services.reconciliation import PlannedIdentities, PlanItem, RepairStrategy, TransactionScope

logger = logging.getLogger(__name__)

NOTE_MIGRATED = "Migrated from legacy"


class LegacyMigrationStrategy(RepairStrategy):
    """Insert legacy ranges missing from the current catalog."""

    kind = RepairKind.MIGRATE_LEGACY
    scope = TransactionScope.ITEM

    def plan(self, store: RangeStore, name_filter: NameFilter) -> tuple[int, list[PlanItem]]:
        missing = [spec.name for spec in (MODERN, LEGACY) if not store.is_available(spec)]
        if missing:
            raise SchemaError(f"Legacy migration needs both schemas; missing: {', '.join(missing)}")

        legacy_mapping = store.mapping(LEGACY)
        studies = store.table(LEGACY.analyses)
        legacy_params = store.table(LEGACY.parameters)
        legacy_ranges = store.table(LEGACY.ranges)
        analyses = store.table(MODERN.analyses)
        params = store.table(MODERN.parameters)

        columns = [
            legacy_ranges,
            analyses.c.id.label("m_analysis_id"),
            analyses.c.name.label("m_analysis"),
            params.c.id.label("m_parameter_id"),
            params.c.name.label("m_parameter"),
        ]
        # Unit fallback: legacy parameter unit, then modern parameter unit, then analysis units
        unit_sources = [
            col
            for col in (
                legacy_params.c.get("unit"),
                params.c.get("unit"),
                analyses.c.get("general_units"),
            )
            if col is not None
        ]
        if len(unit_sources) > 1:
            columns.append(func.coalesce(*unit_sources).label("m_unit"))
        elif unit_sources:
            columns.append(unit_sources[0].label("m_unit"))

        stmt = (
            select(*columns)
            .select_from(
                legacy_ranges.join(legacy_params, legacy_ranges.c.parameter_id == legacy_params.c.id)
                .join(studies, legacy_params.c[LEGACY.analysis_fk] == studies.c.id)
                .join(analyses, analyses.c.name == studies.c.name)
                .join(
                    params,
                    and_(params.c[MODERN.analysis_fk] == analyses.c.id, params.c.name == legacy_params.c.name),
                )
            )
            .order_by(analyses.c.name, params.c.name, legacy_ranges.c.id)
        )
        clause = name_filter.clause(studies.c.name, legacy_params.c.name)
        if clause is not None:
            stmt = stmt.where(clause)

        groups: dict[str, ParameterGroup] = {}
        items: list[PlanItem] = []
        planned = PlannedIdentities()
        for row in store.session.execute(stmt).mappings():
            pid = str(row["m_parameter_id"])
            group = groups.get(pid)
            if group is None:
                group = ParameterGroup(
                    table=MODERN,
                    analysis_id=str(row["m_analysis_id"]),
                    analysis=row["m_analysis"],
                    parameter_id=pid,
                    parameter=row["m_parameter"],
                )
                groups[pid] = group

            legacy = store.to_canonical(row, legacy_mapping)
            if not legacy.is_valid:
                items.append(
                    self.item(
                        PlanAction.SKIP,
                        group,
                        source=legacy,
                        reason=f"legacy row {legacy.id}: {'; '.join(legacy.problems)}",
                    )
                )
                continue

            target = legacy.clone(
                parameter_id=pid,
                unit=legacy.unit or row.get("m_unit"),
                notes=NOTE_MIGRATED,
            )
            if target in planned or store.find_identical(MODERN, target.identity) is not None:
                logger.debug(f"{group.label}: legacy row {legacy.id} already migrated")
                continue
            planned.add(target)
            items.append(
                self.item(PlanAction.INSERT, group, target=target, reason=f"from legacy row {legacy.id}")
            )

        logger.info(f"Legacy migration: {len(groups)} matched parameter(s), {len(items)} item(s)")
        return len(groups), items

    def plan_group(self, group: ParameterGroup, store: RangeStore) -> list[PlanItem]:
        raise NotImplementedError("legacy rows are planned from one join in plan()")
