"""Boundary snapping for near-miss age bands.

Historical data entry produced bands such as [1,13) and [13,18) where
the canonical pediatric banding is [1,12) and [12,18). The snapper
rewrites a small, table-driven set of such edges per (parameter, sex).
"""

import logging
from dataclasses import dataclass, replace

from app.core.config import settings
from app.schemas.base import PlanAction, RepairKind
from app.services.interval_model import Interval, format_number
from app.services.range_store import NameFilter, ParameterGroup, RangeStore
from app.services.reconciliation import PlannedIdentities, PlanItem, RepairStrategy, TransactionScope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SnapRule:
    """Rewrite source band to target band, optionally only when requires exists."""

    source: Interval
    target: Interval
    requires: Interval | None = None

    def __str__(self) -> str:
        def span(interval: Interval) -> str:
            return f"[{format_number(interval[0])},{format_number(interval[1])})"

        text = f"{span(self.source)} -> {span(self.target)}"
        if self.requires:
            text += f" (given {span(self.requires)})"
        return text


# Hematology pediatric banding
DEFAULT_SNAP_RULES: tuple[SnapRule, ...] = (
    SnapRule(source=(1, 13), target=(1, 12)),
    SnapRule(source=(13, 18), target=(12, 18)),
    SnapRule(source=(1, 18), target=(1, 12), requires=(12, 18)),
)


class BoundarySnapStrategy(RepairStrategy):
    """Snap near-miss band edges, deleting the source when the target exists."""

    kind = RepairKind.SNAP_BOUNDARIES
    scope = TransactionScope.PARAMETER

    def __init__(self, rules: tuple[SnapRule, ...] = DEFAULT_SNAP_RULES):
        self.rules = rules

    def default_filter(self) -> NameFilter | None:
        return NameFilter.parse(settings.snap_filter) if settings.snap_filter else None

    def plan_group(self, group: ParameterGroup, store: RangeStore) -> list[PlanItem]:
        planned = PlannedIdentities(group.valid_ranges)
        items = []
        for sex, ranges in group.by_sex().items():
            bands = {r.interval for r in ranges}
            for rule in self.rules:
                if rule.requires is not None and rule.requires not in bands:
                    continue
                for rng in ranges:
                    if rng.interval != rule.source:
                        continue
                    snapped = replace(rng, age_min=rule.target[0], age_max=rule.target[1])
                    if snapped in planned:
                        items.append(
                            self.item(
                                PlanAction.DELETE,
                                group,
                                source=rng,
                                evidence=(snapped,),
                                reason=f"{rule}: identical target exists",
                            )
                        )
                        continue
                    planned.add(snapped)
                    bands.add(rule.target)
                    items.append(
                        self.item(PlanAction.UPDATE, group, source=rng, target=snapped, reason=str(rule))
                    )
        return items
