"""Tests for the reference range interval model and interval algebra."""

import itertools
from decimal import Decimal

import pytest

from app.schemas.base import Sex
from app.services.interval_model import (
    canonicalize,
    compute_gaps,
    merge_intervals,
    normalize_sex,
    overlaps,
)


class TestNormalizeSex:
    """Tests for sex string normalization."""

    @pytest.mark.parametrize("value", ["m", "M", "Masculino", "MALE", "hombre", " Hombre "])
    def test_masculino_synonyms(self, value: str) -> None:
        """Test masculine spellings map to Masculino."""
        assert normalize_sex(value) is Sex.MASCULINO

    @pytest.mark.parametrize("value", ["f", "Femenino", "female", "Mujer"])
    def test_femenino_synonyms(self, value: str) -> None:
        """Test feminine spellings map to Femenino."""
        assert normalize_sex(value) is Sex.FEMENINO

    @pytest.mark.parametrize("value", ["a", "Ambos", "ALL", "todos", "", None])
    def test_ambos_synonyms(self, value) -> None:
        """Test both-sexes spellings and missing values map to Ambos."""
        assert normalize_sex(value) is Sex.AMBOS

    def test_accents_are_folded(self) -> None:
        """Test accented spellings are recognized."""
        assert normalize_sex("Varón") is Sex.MASCULINO

    def test_unrecognized_returns_none(self) -> None:
        """Test unknown strings are not guessed."""
        assert normalize_sex("desconocido") is None


class TestCanonicalize:
    """Tests for canonicalize()."""

    def test_null_ages_become_domain_bounds(self) -> None:
        """Test NULL age bounds mean the open ends of [0, 120)."""
        rng = canonicalize({"sex": "M", "age_min": None, "age_max": None, "lower": 1, "upper": 2})
        assert rng.age_min == 0
        assert rng.age_max == 120
        assert rng.is_valid

    def test_ages_are_clamped(self) -> None:
        """Test ages outside the domain are clamped."""
        rng = canonicalize({"age_min": -5, "age_max": 200, "text_value": "Negativo"})
        assert rng.interval == (0, 120)

    def test_legacy_column_names(self) -> None:
        """Test min_value/max_value are read as lower/upper."""
        rng = canonicalize({"sex": "F", "age_min": 18, "age_max": 65, "min_value": 11, "max_value": 15})
        assert rng.lower == 11
        assert rng.upper == 15
        assert rng.sex is Sex.FEMENINO

    def test_comma_decimal_and_decimal_type(self) -> None:
        """Test comma decimals and Decimal values parse as floats."""
        rng = canonicalize({"lower": "12,5", "upper": Decimal("16.5")})
        assert rng.lower == 12.5
        assert rng.upper == 16.5

    @pytest.mark.parametrize("bad", ["abc", True, float("nan"), float("inf")])
    def test_malformed_numbers_are_reported(self, bad) -> None:
        """Test malformed numeric input is recorded, not raised."""
        rng = canonicalize({"lower": bad, "upper": 5})
        assert rng.lower is None
        assert any("malformed lower" in p for p in rng.problems)
        assert not rng.is_valid

    def test_missing_value_is_reported(self) -> None:
        """Test a row without numeric range or text is a data error."""
        rng = canonicalize({"sex": "Ambos", "age_min": 0, "age_max": 1, "text_value": "  "})
        assert rng.text_value is None
        assert "missing both numeric range and text value" in rng.problems

    def test_empty_interval_is_reported(self) -> None:
        """Test age_min >= age_max is a data error."""
        rng = canonicalize({"age_min": 12, "age_max": 12, "lower": 1, "upper": 2})
        assert any("empty age interval" in p for p in rng.problems)

    def test_unknown_sex_defaults_to_ambos(self) -> None:
        """Test the permissive policy keeps unknown sexes as Ambos."""
        rng = canonicalize({"sex": "x?", "lower": 1, "upper": 2}, unknown_sex="ambos")
        assert rng.sex is Sex.AMBOS
        assert rng.is_valid

    def test_unknown_sex_reject_policy(self) -> None:
        """Test the reject policy reports unknown sexes."""
        rng = canonicalize({"sex": "x?", "lower": 1, "upper": 2}, unknown_sex="reject")
        assert rng.sex is Sex.AMBOS
        assert "unrecognized sex: 'x?'" in rng.problems

    def test_blank_method_normalized_for_identity(self) -> None:
        """Test blank method and text compare equal to NULL in identities."""
        a = canonicalize({"id": 1, "parameter_id": 7, "method": " ", "lower": 1, "upper": 2})
        b = canonicalize({"id": 2, "parameter_id": "7", "method": None, "lower": 1.0, "upper": 2.0})
        assert a.identity == b.identity
        assert a.id == "1"

    def test_identity_ignores_unit_and_notes(self) -> None:
        """Test unit and notes are not part of the identity tuple."""
        a = canonicalize({"parameter_id": "p", "lower": 1, "upper": 2, "unit": "g/dL", "notes": "x"})
        b = canonicalize({"parameter_id": "p", "lower": 1, "upper": 2, "unit": "mg/dL"})
        assert a.identity == b.identity


class TestOverlaps:
    """Tests for the open overlap test."""

    def test_touching_intervals_do_not_overlap(self) -> None:
        """Test [0,12) and [12,18) only touch."""
        assert not overlaps(0, 12, 12, 18)
        assert not overlaps(12, 18, 0, 12)

    def test_nested_intervals_overlap(self) -> None:
        """Test containment is an overlap."""
        assert overlaps(0, 120, 18, 65)

    def test_matches_definition_exhaustively(self) -> None:
        """Test overlaps() agrees with s1<e2 and s2<e1 on a grid."""
        points = [0, 1, 5, 12, 18, 65, 120]
        pairs = [(s, e) for s, e in itertools.product(points, points) if s < e]
        for (s1, e1), (s2, e2) in itertools.product(pairs, pairs):
            assert overlaps(s1, e1, s2, e2) == (s1 < e2 and s2 < e1)


class TestIntervalAlgebra:
    """Tests for merge and gap helpers."""

    def test_merge_joins_overlapping_and_touching(self) -> None:
        """Test merging sorts and joins adjacent intervals."""
        assert merge_intervals([(12, 18), (0, 1), (1, 12), (65, 120)]) == [(0, 18), (65, 120)]

    def test_gaps_of_tsh_coverage(self) -> None:
        """Test [0,1) [1,12) [65,120) leaves exactly [12,65)."""
        assert compute_gaps([(0, 1), (1, 12), (65, 120)], (0, 120)) == [(12, 65)]

    def test_gaps_leading_and_trailing(self) -> None:
        """Test gaps before the first and after the last interval."""
        assert compute_gaps([(5, 10)], (0, 120)) == [(0, 5), (10, 120)]

    def test_gaps_of_empty_coverage(self) -> None:
        """Test no coverage yields the whole domain."""
        assert compute_gaps([], (0, 120)) == [(0, 120)]

    def test_gaps_and_coverage_partition_domain(self) -> None:
        """Test merged coverage plus gaps tile [0,120) with no overlap."""
        samples = [
            [(0, 1), (1, 12), (65, 120)],
            [(3, 7), (7, 8), (100, 110)],
            [(0, 120)],
            [(50, 60), (10, 20), (15, 30)],
        ]
        for intervals in samples:
            covered = merge_intervals(intervals)
            gaps = compute_gaps(covered, (0, 120))
            pieces = sorted(covered + gaps)
            assert pieces[0][0] == 0
            assert pieces[-1][1] == 120
            for (s1, e1), (s2, e2) in zip(pieces, pieces[1:], strict=False):
                assert e1 == s2
            for gs, ge in gaps:
                assert not any(overlaps(gs, ge, cs, ce) for cs, ce in covered)