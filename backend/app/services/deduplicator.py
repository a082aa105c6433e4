"""Removal of exact duplicate reference ranges."""

import logging

from app.schemas.base import PlanAction, RepairKind
from app.services.interval_model import RangeIdentity, ReferenceRange
from app.services.range_store import ParameterGroup, RangeStore
from app.services.reconciliation import PlanItem, RepairStrategy, TransactionScope

logger = logging.getLogger(__name__)


class DedupeExactStrategy(RepairStrategy):
    """Keep the first row of every identity group and delete the rest.

    Rows are considered in storage order. The kept row is the deletion
    evidence, so a delete only happens while it still exists.
    """

    kind = RepairKind.DEDUPE_EXACT
    scope = TransactionScope.PARAMETER

    def plan_group(self, group: ParameterGroup, store: RangeStore) -> list[PlanItem]:
        kept: dict[RangeIdentity, ReferenceRange] = {}
        items = []
        for rng in group.valid_ranges:
            first = kept.setdefault(rng.identity, rng)
            if first is rng:
                continue
            items.append(
                self.item(
                    PlanAction.DELETE,
                    group,
                    source=rng,
                    evidence=(first,),
                    reason=f"duplicate of {first.id}",
                )
            )
        return items
