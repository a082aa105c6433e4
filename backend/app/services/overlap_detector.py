"""Duplicate and overlap detection for reference ranges.

Read-only analysis over loaded ParameterGroups. Produces an ordered list
of Issues; nothing here touches storage. Interval checks cover every row
with a usable age interval, including rows whose values are malformed;
those rows are also listed as invalid in the AuditReport.
"""

import logging
from collections import defaultdict

from app.schemas.base import IssueKind, Sex
from app.schemas.reconciliation import AuditReport, Interval, InvalidRange, Issue
from app.services.interval_model import ReferenceRange, fold_text, format_number, overlaps
from app.services.range_store import ParameterGroup

logger = logging.getLogger(__name__)


def _interval(rng: ReferenceRange) -> Interval:
    return Interval(id=rng.id, age_min=rng.age_min, age_max=rng.age_max)


def _span(rng: ReferenceRange) -> str:
    return f"[{format_number(rng.age_min)},{format_number(rng.age_max)})"


class OverlapDetector:
    """Finds duplicates, same-sex overlaps, Ambos/sex overlaps and duplicate names."""

    def detect(self, groups: list[ParameterGroup]) -> list[Issue]:
        """Detect issues in parameter groups, in group order."""
        issues: list[Issue] = []
        for group in groups:
            issues.extend(self.duplicate_ranges(group))
            issues.extend(self.same_sex_overlaps(group))
            issues.extend(self.ambos_overlaps(group))
        issues.extend(self.duplicate_parameter_names(groups))
        return issues

    def audit(self, groups: list[ParameterGroup]) -> AuditReport:
        issues = self.detect(groups)
        invalid = self.invalid_ranges(groups)
        high = sum(1 for issue in issues if issue.kind.is_high)
        return AuditReport(
            ok=high == 0,
            matched=len(groups),
            high=high,
            warn=len(issues) - high,
            skipped=len(invalid),
            issues=issues,
            invalid=invalid,
        )

    def invalid_ranges(self, groups: list[ParameterGroup]) -> list[InvalidRange]:
        """Rows with data errors, with the reasons found while canonicalizing."""
        return [
            InvalidRange(id=rng.id, analysis=group.analysis, parameter=group.parameter, problems=list(rng.problems))
            for group in groups
            for rng in group.invalid_ranges
        ]

    def _issue(self, group: ParameterGroup, kind: IssueKind, **kwargs) -> Issue:
        return Issue(analysis=group.analysis, parameter=group.parameter, kind=kind, **kwargs)

    def duplicate_ranges(self, group: ParameterGroup) -> list[Issue]:
        """Rows sharing the full identity tuple."""
        by_identity: dict[tuple, list[ReferenceRange]] = defaultdict(list)
        for rng in group.interval_ranges:
            by_identity[rng.identity].append(rng)

        issues = []
        for rows in by_identity.values():
            first = rows[0]
            for dup in rows[1:]:
                issues.append(
                    self._issue(
                        group,
                        IssueKind.HIGH_DUPLICATE_RANGE,
                        sex=first.sex,
                        interval_a=_interval(first),
                        interval_b=_interval(dup),
                        detail=f"{len(rows)} identical rows {first.describe()}",
                    )
                )
        return issues

    def same_sex_overlaps(self, group: ParameterGroup) -> list[Issue]:
        """Overlapping intervals within one sex partition.

        Intervals are sorted by (age_min, age_max) and each one is tested
        against the furthest-reaching interval seen so far. Exact
        duplicates are reported by duplicate_ranges instead.
        """
        issues = []
        for sex, ranges in group.by_sex(any_value=True).items():
            reach: ReferenceRange | None = None
            for rng in ranges:
                if reach is not None and overlaps(reach.age_min, reach.age_max, rng.age_min, rng.age_max):
                    if reach.identity != rng.identity:
                        issues.append(
                            self._issue(
                                group,
                                IssueKind.HIGH_OVERLAP_SAME_SEX,
                                sex=sex,
                                interval_a=_interval(reach),
                                interval_b=_interval(rng),
                                detail=f"{_span(reach)} overlaps {_span(rng)}",
                            )
                        )
                if reach is None or rng.age_max > reach.age_max:
                    reach = rng
        return issues

    def ambos_overlaps(self, group: ParameterGroup) -> list[Issue]:
        """Every Ambos interval against every Masculino and Femenino interval."""
        buckets = group.by_sex(any_value=True)
        issues = []
        for ambos in buckets[Sex.AMBOS]:
            for sex in (Sex.MASCULINO, Sex.FEMENINO):
                for other in buckets[sex]:
                    if overlaps(ambos.age_min, ambos.age_max, other.age_min, other.age_max):
                        issues.append(
                            self._issue(
                                group,
                                IssueKind.WARN_AMBOS_OVERLAP_SEX,
                                sex=sex,
                                interval_a=_interval(ambos),
                                interval_b=_interval(other),
                                detail=f"Ambos {_span(ambos)} overlaps {sex.value} {_span(other)}",
                            )
                        )
        return issues

    def duplicate_parameter_names(self, groups: list[ParameterGroup]) -> list[Issue]:
        """Distinct parameters of one analysis sharing a case-folded name."""
        by_name: dict[tuple[str, str, str], list[ParameterGroup]] = defaultdict(list)
        for group in groups:
            by_name[(group.table.name, group.analysis_id, fold_text(group.parameter))].append(group)

        issues = []
        for same in by_name.values():
            ids = {group.parameter_id for group in same}
            if len(ids) > 1:
                first = same[0]
                issues.append(
                    self._issue(
                        first,
                        IssueKind.HIGH_DUPLICATE_PARAMETER_NAME,
                        detail=f"{len(ids)} parameters named {first.parameter!r}",
                    )
                )
        return issues
