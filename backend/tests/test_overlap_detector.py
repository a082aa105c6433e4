"""Tests for duplicate and overlap detection."""

from sqlalchemy.orm import Session

from app.schemas.base import IssueKind, Sex
from app.services.interval_model import canonicalize
from app.services.overlap_detector import OverlapDetector
from app.services.range_store import MODERN, NameFilter, ParameterGroup
from app.services.reconciliation import ReconciliationPipeline


def make_group(rows: list[dict], parameter: str = "Hemoglobina", parameter_id: str = "p1") -> ParameterGroup:
    ranges = [
        canonicalize({"id": f"r{i}", "parameter_id": parameter_id, **row}) for i, row in enumerate(rows)
    ]
    return ParameterGroup(
        table=MODERN,
        analysis_id="a1",
        analysis="Biometría Hemática",
        parameter_id=parameter_id,
        parameter=parameter,
        ranges=ranges,
    )


def kinds(issues) -> list[IssueKind]:
    return [issue.kind for issue in issues]


class TestDuplicateRanges:
    """Tests for exact duplicate detection."""

    def test_identical_rows_flagged(self) -> None:
        """Test two rows with the same identity tuple are a HIGH duplicate."""
        group = make_group(
            [
                {"sex": "M", "age_min": 18, "age_max": 120, "lower": 13, "upper": 17},
                {"sex": "Masculino", "age_min": 18, "age_max": 120, "lower": 13, "upper": 17},
            ]
        )
        issues = OverlapDetector().detect([group])
        assert kinds(issues) == [IssueKind.HIGH_DUPLICATE_RANGE]
        assert issues[0].interval_a.id == "r0"
        assert issues[0].interval_b.id == "r1"

    def test_different_method_is_not_duplicate(self) -> None:
        """Test method is part of the identity tuple."""
        group = make_group(
            [
                {"sex": "F", "lower": 1, "upper": 2, "method": "ECLIA"},
                {"sex": "F", "lower": 1, "upper": 2, "method": "CLIA"},
            ]
        )
        issues = OverlapDetector().detect([group])
        assert IssueKind.HIGH_DUPLICATE_RANGE not in kinds(issues)
        assert kinds(issues) == [IssueKind.HIGH_OVERLAP_SAME_SEX]


class TestSameSexOverlaps:
    """Tests for same-sex overlap detection."""

    def test_overlapping_bands(self) -> None:
        """Test [1,13) and [12,18) overlap within one sex."""
        group = make_group(
            [
                {"sex": "Ambos", "age_min": 1, "age_max": 13, "lower": 11, "upper": 14},
                {"sex": "Ambos", "age_min": 12, "age_max": 18, "lower": 12, "upper": 15},
            ]
        )
        issues = OverlapDetector().detect([group])
        assert kinds(issues) == [IssueKind.HIGH_OVERLAP_SAME_SEX]
        assert issues[0].sex is Sex.AMBOS
        assert issues[0].detail == "[1,13) overlaps [12,18)"

    def test_touching_bands_are_clean(self) -> None:
        """Test adjacent bands produce no issue."""
        group = make_group(
            [
                {"sex": "F", "age_min": 0, "age_max": 12, "lower": 11, "upper": 14},
                {"sex": "F", "age_min": 12, "age_max": 120, "lower": 12, "upper": 15},
            ]
        )
        assert OverlapDetector().detect([group]) == []

    def test_different_sexes_do_not_overlap(self) -> None:
        """Test Masculino and Femenino bands are independent."""
        group = make_group(
            [
                {"sex": "M", "age_min": 0, "age_max": 120, "lower": 13, "upper": 17},
                {"sex": "F", "age_min": 0, "age_max": 120, "lower": 12, "upper": 16},
            ]
        )
        assert OverlapDetector().detect([group]) == []


class TestAmbosOverlaps:
    """Tests for Ambos versus sex-specific overlaps."""

    def test_ambos_overlapping_each_sex(self) -> None:
        """Test an Ambos row overlapping M and F rows gives two WARNs."""
        group = make_group(
            [
                {"sex": "M", "age_min": 18, "age_max": 120, "lower": 13, "upper": 17},
                {"sex": "F", "age_min": 18, "age_max": 120, "lower": 12, "upper": 16},
                {"sex": "Ambos", "age_min": 0, "age_max": 120, "lower": 12, "upper": 16},
            ]
        )
        issues = OverlapDetector().detect([group])
        assert kinds(issues) == [IssueKind.WARN_AMBOS_OVERLAP_SEX, IssueKind.WARN_AMBOS_OVERLAP_SEX]
        assert [issue.sex for issue in issues] == [Sex.MASCULINO, Sex.FEMENINO]

    def test_report_counts(self) -> None:
        """Test WARN issues keep the audit ok."""
        group = make_group(
            [
                {"sex": "M", "age_min": 18, "age_max": 120, "lower": 13, "upper": 17},
                {"sex": "Ambos", "age_min": 0, "age_max": 120, "lower": 12, "upper": 16},
            ]
        )
        report = OverlapDetector().audit([group])
        assert report.ok is True
        assert report.matched == 1
        assert (report.high, report.warn) == (0, 1)


class TestDuplicateParameterNames:
    """Tests for duplicate parameter names within an analysis."""

    def test_case_folded_names(self) -> None:
        """Test 'Hemoglobina' and 'HEMOGLOBINA' in one analysis are flagged."""
        groups = [
            make_group([], parameter="Hemoglobina", parameter_id="p1"),
            make_group([], parameter="HEMOGLOBINA", parameter_id="p2"),
        ]
        issues = OverlapDetector().detect(groups)
        assert kinds(issues) == [IssueKind.HIGH_DUPLICATE_PARAMETER_NAME]
        assert issues[0].detail == "2 parameters named 'Hemoglobina'"


class TestPipelineAudit:
    """Tests for the audit operation against storage."""

    def test_audit_reports_high_issues(self, seed, db_session: Session) -> None:
        """Test audit over stored ranges, filtered by name."""
        param = seed.parameter(seed.analysis("Biometría Hemática"), "Hemoglobina")
        seed.range(param, sex="F", age_min=0, age_max=18, lower=11, upper=15)
        seed.range(param, sex="F", age_min=0, age_max=18, lower=11, upper=15)
        other = seed.parameter(seed.analysis("Química"), "Glucosa")
        seed.range(other, lower=1, upper=2)
        seed.range(other, lower=1, upper=2)
        seed.commit()

        report = ReconciliationPipeline(db_session).audit(NameFilter.parse("Hemoglobina"))

        assert report.ok is False
        assert report.matched == 1
        assert report.high == 1
        assert report.issues[0].parameter == "Hemoglobina"


class TestMalformedRows:
    """Tests for rows that failed canonicalization."""

    ROWS = [
        {"sex": "Ambos", "age_min": 0, "age_max": 120, "lower": 10, "upper": 40},
        {"sex": "Ambos", "age_min": 10, "age_max": 30},
    ]

    def test_row_without_value_still_overlaps(self) -> None:
        """Test a row missing its values is still checked for overlaps."""
        issues = OverlapDetector().detect([make_group(self.ROWS)])
        assert kinds(issues) == [IssueKind.HIGH_OVERLAP_SAME_SEX]
        assert issues[0].detail == "[0,120) overlaps [10,30)"
        assert issues[0].interval_b.id == "r1"

    def test_row_without_interval_is_not_compared(self) -> None:
        """Test an empty age interval is listed as invalid but never overlaps."""
        group = make_group(
            [
                {"sex": "F", "age_min": 0, "age_max": 120, "lower": 1, "upper": 2},
                {"sex": "F", "age_min": 50, "age_max": 20, "lower": 1, "upper": 2},
            ]
        )
        report = OverlapDetector().audit([group])
        assert report.issues == []
        assert report.skipped == 1
        assert report.invalid[0].problems == ["empty age interval [50,20)"]

    def test_invalid_rows_listed_in_report(self) -> None:
        """Test malformed rows appear in the report with their reasons."""
        report = OverlapDetector().audit([make_group(self.ROWS)])
        assert report.ok is False
        assert report.skipped == 1
        (row,) = report.invalid
        assert row.id == "r1"
        assert row.parameter == "Hemoglobina"
        assert row.problems == ["missing both numeric range and text value"]

    def test_pipeline_audit_reports_stored_malformed_row(self, seed, db_session: Session) -> None:
        """Test audit over storage lists the malformed row and its overlap."""
        param = seed.parameter(seed.analysis("Biometría Hemática"), "Hemoglobina")
        seed.range(param, age_min=0, age_max=120, lower=10, upper=40)
        broken = seed.range(param, age_min=10, age_max=30)
        seed.commit()

        report = ReconciliationPipeline(db_session).audit(NameFilter.parse("Hemoglobina"))

        assert (report.high, report.warn, report.skipped) == (1, 0, 1)
        assert report.invalid[0].id == str(broken.id)
