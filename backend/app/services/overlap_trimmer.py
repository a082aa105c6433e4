"""Trimming of overlapping same-sex ranges that carry the same values.

Within one (parameter, sex) partition, rows sharing unit, method and
value fields describe the same reference interval, so their overlap can
be removed without changing any lookup result:

1. A row whose band is fully covered by narrower rows with the same
   values (typically a coarse [0,120) next to finer bands) is deleted.
2. The remaining rows are swept in (age_min, age_max) order; a row
   starting before the furthest end seen so far has its age_min moved
   up to that end, or is deleted when it ends up empty.

Overlapping rows with different values are clinical conflicts. They are
reported as skips for human review and never modified.
"""

import logging
from collections import defaultdict
from dataclasses import replace

from app.schemas.base import PlanAction, RepairKind
from app.services.interval_model import (
    ReferenceRange,
    compute_gaps,
    format_number,
    merge_intervals,
    overlaps,
    sort_ranges,
)
from app.services.range_store import ParameterGroup, RangeStore
from app.services.reconciliation import PlanItem, RepairStrategy, TransactionScope

logger = logging.getLogger(__name__)


def _span(rng: ReferenceRange) -> str:
    return f"[{format_number(rng.age_min)},{format_number(rng.age_max)})"


def value_key(rng: ReferenceRange) -> tuple:
    """Fields that must match for two rows to be trimmed against each other."""
    return (rng.unit, rng.method, rng.lower, rng.upper, rng.text_value)


def _contains(outer: ReferenceRange, inner: ReferenceRange) -> bool:
    return outer.age_min <= inner.age_min and inner.age_max <= outer.age_max and outer.interval != inner.interval


def trim_same_values(rows: list[ReferenceRange]) -> dict[str, ReferenceRange | None]:
    """Final form of every row of one value set.

    Returns:
        Mapping of row id to the trimmed row, the unchanged row, or None
        when the row is to be deleted. The union of the kept intervals
        equals the union of the input intervals.
    """
    deleted: set[str] = set()
    for rng in sorted(rows, key=lambda r: r.age_max - r.age_min):
        inner = [r for r in rows if r.id not in deleted and r.id != rng.id and _contains(rng, r)]
        if inner and not compute_gaps(merge_intervals(r.interval for r in inner), rng.interval):
            deleted.add(rng.id)

    final: dict[str, ReferenceRange | None] = {rid: None for rid in deleted}
    frontier: float | None = None
    for rng in sort_ranges(r for r in rows if r.id not in deleted):
        if frontier is not None and rng.age_min < frontier:
            if rng.age_max <= frontier:
                final[rng.id] = None
                continue
            rng = replace(rng, age_min=frontier)
        final[rng.id] = rng
        frontier = rng.age_max if frontier is None else max(frontier, rng.age_max)
    return final


class TrimOverlapsStrategy(RepairStrategy):
    """Remove same-value overlaps within each sex partition.

    One transaction per parameter. Deletes carry the kept rows of the
    same value set as evidence, in their trimmed form, so they only run
    after the updates they rely on.
    """

    kind = RepairKind.TRIM_OVERLAPS
    scope = TransactionScope.PARAMETER

    def plan_group(self, group: ParameterGroup, store: RangeStore) -> list[PlanItem]:
        updates: list[PlanItem] = []
        deletes: list[PlanItem] = []
        skips: list[PlanItem] = []

        for sex, ranges in group.by_sex().items():
            value_sets: dict[tuple, list[ReferenceRange]] = defaultdict(list)
            for rng in ranges:
                value_sets[value_key(rng)].append(rng)

            kept: list[ReferenceRange] = []
            for rows in value_sets.values():
                final = trim_same_values(rows)
                survivors = [r for r in final.values() if r is not None]
                kept.extend(survivors)
                for rng in rows:
                    result = final[rng.id]
                    if result is None:
                        evidence = tuple(
                            r for r in survivors if overlaps(r.age_min, r.age_max, rng.age_min, rng.age_max)
                        )
                        deletes.append(
                            self.item(
                                PlanAction.DELETE,
                                group,
                                source=rng,
                                evidence=evidence,
                                reason=f"{_span(rng)} covered by rows with the same values",
                            )
                        )
                    elif result.age_min != rng.age_min:
                        updates.append(
                            self.item(
                                PlanAction.UPDATE,
                                group,
                                source=rng,
                                target=result,
                                reason=f"age_min trimmed to {format_number(result.age_min)}",
                            )
                        )

            reach: ReferenceRange | None = None
            for rng in sort_ranges(kept):
                if reach is not None and overlaps(reach.age_min, reach.age_max, rng.age_min, rng.age_max):
                    skips.append(
                        self.item(
                            PlanAction.SKIP,
                            group,
                            source=rng,
                            reason=f"{sex.value} {_span(reach)} overlaps {_span(rng)} with different values",
                        )
                    )
                if reach is None or rng.age_max > reach.age_max:
                    reach = rng

        items = updates + deletes + skips
        if items:
            logger.debug(
                f"{group.label}: {len(updates)} trim(s), {len(deletes)} delete(s), {len(skips)} conflict(s)"
            )
        return items
