"""Gap computation and template-based gap filling.

A gap is a part of the age domain not covered by any range of a sex
partition. Gaps are closed by cloning the value fields of an existing
neighbouring range (the template). No value is ever computed: when no
template exists the fill is a text placeholder marked as provisional.
"""

import logging

from app.core.config import settings
from app.schemas.base import FillMode, PlanAction, RepairKind, Sex
from app.services.interval_model import (
    Interval,
    ReferenceRange,
    clip_intervals,
    compute_gaps,
    merge_intervals,
)
from app.services.range_store import ParameterGroup, RangeStore
from app.services.reconciliation import PlannedIdentities, PlanItem, RepairStrategy, TransactionScope

logger = logging.getLogger(__name__)

NOTE_AUTO_FILL = "Auto-fill gap"
NOTE_PROVISIONAL = "Auto-fill gap (provisional: pending interpretation)"

PLACEHOLDER_BAND = "pending interpretation for this age band"
PLACEHOLDER_PEDIATRIC = "pending pediatric interpretation"

PEDIATRIC_WINDOW: Interval = (0, 18)
ADULT_WINDOW: Interval = (18, 120)

# Adult life stages and their placeholders; [64,65) is a boundary band
ADULT_STAGES: tuple[tuple[float, float, str], ...] = (
    (18, 64, "pending adult interpretation"),
    (65, 120, "pending adult (65+) interpretation"),
)

# Narrow bands that naive manual entry commonly leaves uncovered
BOUNDARY_BANDS: tuple[Interval, ...] = ((12, 13), (17, 18), (64, 65))


def find_gaps(ranges: list[ReferenceRange], domain: Interval | None = None) -> list[Interval]:
    """Uncovered sub-intervals of domain for a set of ranges."""
    return compute_gaps(merge_intervals(r.interval for r in ranges), domain)


def choose_template(ranges: list[ReferenceRange], gap: Interval) -> ReferenceRange | None:
    """Pick the range whose values fill gap.

    Priority: the range ending where the gap starts, then the range
    starting where the gap ends, then the first range carrying a value.
    """
    usable = [r for r in sorted(ranges, key=lambda r: (r.age_min, r.age_max)) if r.has_value]
    start, end = gap
    for rng in usable:
        if rng.age_max == start:
            return rng
    for rng in usable:
        if rng.age_min == end:
            return rng
    return usable[0] if usable else None


def fill_coverage(
    buckets: dict[Sex, list[ReferenceRange]],
    sex: Sex = Sex.AMBOS,
    planned: list[ReferenceRange] | None = None,
) -> list[Interval]:
    """Bands a fill of sex must not touch.

    A Masculino or Femenino fill avoids its own rows and Ambos rows. An
    Ambos fill avoids rows of any sex, since an Ambos row over a
    sex-specific row makes lookups ambiguous. Fills already planned in
    the same pass count as rows.
    """
    rows = [r for ranges in buckets.values() for r in ranges] + list(planned or [])
    if sex is not Sex.AMBOS:
        rows = [r for r in rows if r.sex in (sex, Sex.AMBOS)]
    return merge_intervals(r.interval for r in rows)


class GapFiller:
    """Proposes ranges that close coverage gaps of one parameter."""

    def __init__(
        self,
        mode: FillMode = FillMode.ADJACENT,
        boundaries: bool = False,
        fill_empty: bool = False,
        domain: Interval | None = None,
    ):
        self.mode = mode
        self.boundaries = boundaries
        self.fill_empty = fill_empty
        self.domain = domain or settings.age_domain

    def _fill(
        self,
        parameter_id: str,
        sex: Sex,
        gap: Interval,
        template: ReferenceRange | None,
        placeholder: str,
    ) -> ReferenceRange:
        start, end = gap
        if template is not None:
            return template.clone(
                parameter_id=parameter_id,
                sex=sex,
                age_min=start,
                age_max=end,
                notes=NOTE_AUTO_FILL,
            )
        return ReferenceRange(
            id=None,
            parameter_id=parameter_id,
            sex=sex,
            age_min=start,
            age_max=end,
            text_value=placeholder,
            notes=NOTE_PROVISIONAL,
        )

    def propose(self, group: ParameterGroup) -> list[ReferenceRange]:
        """New ranges for one parameter, in sex and age order."""
        pid = group.parameter_id
        if not group.ranges:
            if not self.fill_empty:
                return []
            return [self._fill(pid, Sex.AMBOS, self.domain, None, PLACEHOLDER_BAND)]

        buckets = group.by_sex()
        proposals: list[ReferenceRange] = []

        # Each step sees the fills of the previous ones as coverage
        if self.mode is FillMode.ADJACENT:
            proposals += self._adjacent(pid, buckets)
        if self.mode in (FillMode.PEDIATRIC, FillMode.BOTH):
            proposals += self._pediatric(pid, buckets, proposals)
        if self.mode in (FillMode.ADULT, FillMode.BOTH):
            proposals += self._adult(pid, buckets, proposals)
        if self.boundaries:
            proposals += self._boundary_bands(pid, buckets, proposals)
        return proposals

    def _adjacent(self, pid: str, buckets: dict[Sex, list[ReferenceRange]]) -> list[ReferenceRange]:
        """Per-sex gap fills, sex-specific buckets first.

        A band missing from both a sex bucket and the Ambos bucket is
        filled for the sex that has rows; the Ambos bucket then treats
        those fills as covered.
        """
        proposals: list[ReferenceRange] = []
        for sex, own in buckets.items():
            if not own:
                continue
            covered = fill_coverage(buckets, sex, proposals)
            for gap in compute_gaps(covered, self.domain):
                template = choose_template(own, gap)
                proposals.append(self._fill(pid, sex, gap, template, PLACEHOLDER_BAND))
        return proposals

    def _pediatric(
        self, pid: str, buckets: dict[Sex, list[ReferenceRange]], planned: list[ReferenceRange]
    ) -> list[ReferenceRange]:
        # Template: an Ambos numeric range reaching from childhood to the domain end
        template = next(
            (
                r
                for r in buckets[Sex.AMBOS]
                if r.has_numeric and r.age_min <= PEDIATRIC_WINDOW[1] and r.age_max >= self.domain[1]
            ),
            None,
        )
        return [
            self._fill(pid, Sex.AMBOS, gap, template, PLACEHOLDER_PEDIATRIC)
            for gap in compute_gaps(fill_coverage(buckets, planned=planned), PEDIATRIC_WINDOW)
        ]

    def _adult(
        self, pid: str, buckets: dict[Sex, list[ReferenceRange]], planned: list[ReferenceRange]
    ) -> list[ReferenceRange]:
        proposals = []
        gaps = compute_gaps(fill_coverage(buckets, planned=planned), ADULT_WINDOW)
        for stage_min, stage_max, placeholder in ADULT_STAGES:
            for gap in clip_intervals(gaps, (stage_min, stage_max)):
                proposals.append(self._fill(pid, Sex.AMBOS, gap, None, placeholder))
        return proposals

    def _boundary_bands(
        self, pid: str, buckets: dict[Sex, list[ReferenceRange]], planned: list[ReferenceRange]
    ) -> list[ReferenceRange]:
        proposals = []
        covered = fill_coverage(buckets, planned=planned)
        for band in BOUNDARY_BANDS:
            for gap in compute_gaps(clip_intervals(covered, band), band):
                template = choose_template(buckets[Sex.AMBOS], gap)
                proposals.append(self._fill(pid, Sex.AMBOS, gap, template, PLACEHOLDER_BAND))
        return proposals


class GapFillStrategy(RepairStrategy):
    """Inserts template-derived rows into coverage gaps.

    Every insert is independent and guarded by an identity check, so
    items commit one by one.
    """

    kind = RepairKind.FILL_GAPS
    scope = TransactionScope.ITEM

    def __init__(self, mode: FillMode = FillMode.ADJACENT, boundaries: bool = False, fill_empty: bool = False):
        self.filler = GapFiller(mode=mode, boundaries=boundaries, fill_empty=fill_empty)

    def plan_group(self, group: ParameterGroup, store: RangeStore) -> list[PlanItem]:
        mapping = store.mapping(group.table)
        planned = PlannedIdentities(group.valid_ranges)
        items = []
        for proposal in self.filler.propose(group):
            if proposal in planned:
                continue
            planned.add(proposal)
            if not proposal.has_numeric and not mapping.can_store_text:
                items.append(
                    self.item(
                        PlanAction.SKIP,
                        group,
                        target=proposal,
                        reason=f"{group.table.ranges} has no text column for a placeholder",
                    )
                )
                continue
            items.append(self.item(PlanAction.INSERT, group, target=proposal, reason=proposal.notes or ""))
        if items:
            logger.debug(f"{group.label}: {len(items)} gap fill(s) planned")
        return items
