"""Tests for trimming overlapping same-sex ranges."""

import io

from sqlalchemy.orm import Session

from app.schemas.base import PlanAction
from app.services.interval_model import canonicalize
from app.services.overlap_trimmer import TrimOverlapsStrategy, trim_same_values
from app.services.range_store import MODERN, NameFilter, ParameterGroup, RangeStore
from app.services.reconciliation import ReconciliationPipeline


def make_rows(bands: list[tuple[float, float]], sex: str = "Ambos", prefix: str = "r", **values) -> list:
    values = values or {"lower": 70, "upper": 100}
    return [
        canonicalize({"id": f"{prefix}{i}", "parameter_id": "p1", "sex": sex, "age_min": s, "age_max": e, **values})
        for i, (s, e) in enumerate(bands)
    ]


def make_group(ranges: list) -> ParameterGroup:
    return ParameterGroup(
        table=MODERN,
        analysis_id="a1",
        analysis="Química",
        parameter_id="p1",
        parameter="Glucosa",
        ranges=ranges,
    )


def intervals(final: dict) -> dict:
    return {rid: (rng.interval if rng else None) for rid, rng in final.items()}


class TestTrimSameValues:
    """Tests for the per value set trimming rules."""

    def test_partial_overlap_moves_age_min(self) -> None:
        """Test the later row starts where the earlier one ends."""
        final = trim_same_values(make_rows([(0, 20), (10, 60)]))
        assert intervals(final) == {"r0": (0, 20), "r1": (20, 60)}
        assert final["r1"].id == "r1"

    def test_fully_covered_row_deleted(self) -> None:
        """Test a row inside an earlier row is deleted."""
        final = trim_same_values(make_rows([(0, 50), (10, 30)]))
        assert intervals(final) == {"r0": (0, 50), "r1": None}

    def test_coarse_row_dropped_when_finer_bands_cover_it(self) -> None:
        """Test [0,120) goes when [0,18) and [18,120) carry the same values."""
        final = trim_same_values(make_rows([(0, 120), (0, 18), (18, 120)]))
        assert intervals(final) == {"r0": None, "r1": (0, 18), "r2": (18, 120)}

    def test_coarse_row_kept_when_finer_bands_leave_gaps(self) -> None:
        """Test a coarse row is trimmed rather than dropped when it is still needed."""
        final = trim_same_values(make_rows([(0, 120), (0, 18)]))
        assert intervals(final) == {"r0": (18, 120), "r1": (0, 18)}

    def test_coverage_is_preserved(self) -> None:
        """Test the kept rows are disjoint and cover the same ages as before."""
        rows = make_rows([(0, 120), (0, 18), (10, 120), (50, 80), (5, 7)])
        final = trim_same_values(rows)
        kept = sorted(rng.interval for rng in final.values() if rng is not None)
        assert kept == [(0, 18), (18, 120)]
        for (_, end), (start, _) in zip(kept, kept[1:]):
            assert end <= start


class TestTrimOverlapsPlan:
    """Tests for planning against loaded groups."""

    def test_plan_updates_before_deletes(self, db_session: Session) -> None:
        """Test trims come first and deletes carry the trimmed rows as evidence."""
        group = make_group(make_rows([(0, 120), (0, 18), (10, 120)]))

        items = TrimOverlapsStrategy().plan_group(group, RangeStore(db_session))

        assert [item.action for item in items] == [PlanAction.UPDATE, PlanAction.DELETE]
        update, delete = items
        assert (update.source.interval, update.target.interval) == ((10, 120), (18, 120))
        assert update.reason == "age_min trimmed to 18"
        assert delete.source.id == "r0"
        assert sorted(r.interval for r in delete.evidence) == [(0, 18), (18, 120)]

    def test_different_values_are_skipped(self, db_session: Session) -> None:
        """Test overlaps with different values are left for review."""
        ranges = make_rows([(0, 50)], sex="M") + make_rows([(40, 120)], sex="M", prefix="x", lower=80, upper=110)

        (item,) = TrimOverlapsStrategy().plan_group(make_group(ranges), RangeStore(db_session))

        assert item.action is PlanAction.SKIP
        assert item.source.id == "x0"
        assert item.reason == "Masculino [0,50) overlaps [40,120) with different values"

    def test_sexes_are_trimmed_independently(self, db_session: Session) -> None:
        """Test same values in different sex partitions are not compared."""
        ranges = make_rows([(0, 120)], sex="M") + make_rows([(0, 60)], sex="F", prefix="f")
        assert TrimOverlapsStrategy().plan_group(make_group(ranges), RangeStore(db_session)) == []


class TestTrimOverlapsStrategy:
    """Tests for the trim pass against storage."""

    def _seed_glucosa(self, seed):
        param = seed.parameter(seed.analysis("Química"), "Glucosa")
        seed.range(param, age_min=0, age_max=120, lower=70, upper=100)
        seed.range(param, age_min=0, age_max=18, lower=70, upper=100)
        seed.range(param, age_min=10, age_max=120, lower=70, upper=100)
        seed.commit()
        return param

    def test_apply_clears_same_sex_overlaps(self, seed, db_session: Session, ranges_of) -> None:
        """Test apply leaves disjoint rows and a clean audit."""
        param = self._seed_glucosa(seed)
        pipeline = ReconciliationPipeline(db_session)
        glucosa = NameFilter.parse("Glucosa")
        assert pipeline.audit(glucosa).high > 0

        report = pipeline.run(TrimOverlapsStrategy(), glucosa, apply=True, stream=io.StringIO())

        assert report.ok
        assert (report.updated, report.deleted) == (1, 1)
        assert [(r.age_min, r.age_max) for r in ranges_of(param)] == [(0, 18), (18, 120)]
        assert pipeline.audit(glucosa).issues == []

    def test_second_run_plans_nothing(self, seed, db_session: Session) -> None:
        """Test the pass is idempotent."""
        self._seed_glucosa(seed)
        pipeline = ReconciliationPipeline(db_session)

        pipeline.run(TrimOverlapsStrategy(), apply=True, stream=io.StringIO())
        again = pipeline.run(TrimOverlapsStrategy(), apply=True, stream=io.StringIO())

        assert again.items == []

    def test_conflicting_values_untouched(self, seed, db_session: Session, ranges_of) -> None:
        """Test conflicting rows are reported and not modified."""
        param = seed.parameter(seed.analysis("Química"), "Glucosa")
        seed.range(param, sex="Masculino", age_min=0, age_max=50, lower=70, upper=100)
        seed.range(param, sex="Masculino", age_min=40, age_max=120, lower=80, upper=110)
        seed.commit()

        report = ReconciliationPipeline(db_session).run(TrimOverlapsStrategy(), apply=True, stream=io.StringIO())

        assert (report.updated, report.deleted, report.skipped) == (0, 0, 1)
        assert "with different values" in report.items[0].reason
        assert [(r.age_min, r.age_max) for r in ranges_of(param)] == [(0, 50), (40, 120)]
