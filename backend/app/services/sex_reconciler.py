"""Sex partition reconciliation.

Three independent passes over Ambos ("both sexes") rows:

- split: clone Ambos rows into Masculino and Femenino rows
- collapse: delete Ambos rows proven redundant by exact M and F matches
- force-exclusive: turn Ambos rows of single-sex tests into the target sex

All three are dedup-aware: an exact duplicate is never inserted; the
redundant source row is deleted instead.
"""

import logging
from dataclasses import replace

from app.schemas.base import PlanAction, RepairKind, Sex
from app.services.interval_model import Interval, ReferenceRange, format_number, overlaps
from app.services.range_store import FilterError, ParameterGroup, RangeStore, RangeTableSpec
from app.services.reconciliation import PlannedIdentities, PlanItem, RepairStrategy, TransactionScope

logger = logging.getLogger(__name__)

NOTE_SPLIT = "Auto-split from Ambos"

SPECIFIC_SEXES = (Sex.MASCULINO, Sex.FEMENINO)


def _span(rng: ReferenceRange) -> str:
    return f"[{format_number(rng.age_min)},{format_number(rng.age_max)})"


class SplitAmbosStrategy(RepairStrategy):
    """Clone Ambos rows into identical Masculino and Femenino rows.

    A target sex that already has an identical row is satisfied as is.
    A target sex with an overlapping but different row is a conflict and
    is left for human review.
    """

    kind = RepairKind.SPLIT_AMBOS
    scope = TransactionScope.PARAMETER

    def __init__(self, band: Interval | None = None, remove_source: bool = False):
        if band is not None and band[0] >= band[1]:
            raise FilterError(f"Invalid age band: [{band[0]},{band[1]})")
        self.band = band
        self.remove_source = remove_source

    def _in_band(self, rng: ReferenceRange) -> bool:
        if self.band is None:
            return True
        return rng.age_min >= self.band[0] and rng.age_max <= self.band[1]

    def plan_group(self, group: ParameterGroup, store: RangeStore) -> list[PlanItem]:
        buckets = group.by_sex()
        planned = PlannedIdentities(group.valid_ranges)
        items: list[PlanItem] = []

        for ambos in buckets[Sex.AMBOS]:
            if not self._in_band(ambos):
                continue
            clones = []
            conflict = False
            for sex in SPECIFIC_SEXES:
                clone = ambos.clone(sex=sex, notes=NOTE_SPLIT)
                clones.append(clone)
                if clone in planned:
                    continue
                clash = next(
                    (r for r in buckets[sex] if overlaps(r.age_min, r.age_max, ambos.age_min, ambos.age_max)),
                    None,
                )
                if clash is not None:
                    conflict = True
                    items.append(
                        self.item(
                            PlanAction.SKIP,
                            group,
                            source=ambos,
                            reason=f"{sex.value} {_span(clash)} overlaps with different values",
                        )
                    )
                    continue
                planned.add(clone)
                items.append(self.item(PlanAction.INSERT, group, target=clone, reason=NOTE_SPLIT))

            if self.remove_source and not conflict:
                items.append(
                    self.item(
                        PlanAction.DELETE,
                        group,
                        source=ambos,
                        evidence=tuple(clones),
                        reason="Ambos row replaced by sex-specific rows",
                    )
                )
        return items


class CollapseAmbosStrategy(RepairStrategy):
    """Delete Ambos rows that exactly match both a Masculino and a Femenino row.

    The whole batch is deleted in one transaction.
    """

    kind = RepairKind.COLLAPSE_AMBOS
    scope = TransactionScope.BATCH

    def plan_group(self, group: ParameterGroup, store: RangeStore) -> list[PlanItem]:
        buckets = group.by_sex()
        male = {r.value_key: r for r in buckets[Sex.MASCULINO]}
        female = {r.value_key: r for r in buckets[Sex.FEMENINO]}

        items = []
        for ambos in buckets[Sex.AMBOS]:
            m, f = male.get(ambos.value_key), female.get(ambos.value_key)
            if m is None or f is None:
                continue
            items.append(
                self.item(
                    PlanAction.DELETE,
                    group,
                    source=ambos,
                    evidence=(m, f),
                    reason="redundant: identical Masculino and Femenino rows exist",
                )
            )
        return items


class ForceExclusiveStrategy(RepairStrategy):
    """Convert Ambos rows of single-sex tests into the target sex.

    Updates the row in place, or deletes it when the target-sex row
    already exists. Runs over every range table present.
    """

    kind = RepairKind.FORCE_EXCLUSIVE
    scope = TransactionScope.PARAMETER
    requires_filter = True

    def __init__(self, target: Sex | str):
        try:
            target = Sex(target)
        except ValueError:
            raise FilterError(f"Unknown target sex: {target!r}") from None
        if target is Sex.AMBOS:
            raise FilterError("Target sex must be Masculino or Femenino")
        self.target = target

    def tables(self, store: RangeStore) -> list[RangeTableSpec]:
        return store.available_specs() or [store.preferred_spec()]

    def plan_group(self, group: ParameterGroup, store: RangeStore) -> list[PlanItem]:
        buckets = group.by_sex()
        planned = PlannedIdentities(group.valid_ranges)
        items = []
        for ambos in buckets[Sex.AMBOS]:
            converted = replace(ambos, sex=self.target)
            if converted in planned:
                items.append(
                    self.item(
                        PlanAction.DELETE,
                        group,
                        source=ambos,
                        evidence=(converted,),
                        reason=f"identical {self.target.value} row exists",
                    )
                )
                continue
            planned.add(converted)
            items.append(
                self.item(
                    PlanAction.UPDATE,
                    group,
                    source=ambos,
                    target=converted,
                    reason=f"Ambos -> {self.target.value}",
                )
            )
        return items
