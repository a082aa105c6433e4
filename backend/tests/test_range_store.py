"""Tests for schema-agnostic range storage access."""

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from app.schemas.base import Sex
from app.services.interval_model import canonicalize
from app.services.range_store import (
    LEGACY,
    MODERN,
    FilterError,
    NameFilter,
    RangeColumnMapping,
    RangeStore,
    SchemaError,
)


class TestNameFilter:
    """Tests for filter parsing."""

    def test_none_is_empty(self) -> None:
        """Test no filter matches everything."""
        assert NameFilter.parse(None).is_empty

    def test_alternation_and_commas(self) -> None:
        """Test '|' and ',' both separate terms."""
        name_filter = NameFilter.parse("Hemoglobina| Hematocrito ,TSH")
        assert name_filter.patterns == ("%Hemoglobina%", "%Hematocrito%", "%TSH%")

    def test_explicit_wildcards_kept(self) -> None:
        """Test terms with wildcards are used as given."""
        assert NameFilter.parse("Hemo%").patterns == ("Hemo%",)

    @pytest.mark.parametrize("value", ["", " | ", "%", "%%|_"])
    def test_unusable_filters_rejected(self, value: str) -> None:
        """Test empty and match-everything filters are input errors."""
        with pytest.raises(FilterError):
            NameFilter.parse(value)


class TestRangeColumnMapping:
    """Tests for column resolution."""

    def test_modern_columns(self) -> None:
        """Test current catalog columns resolve directly."""
        mapping = RangeColumnMapping.resolve(
            ["id", "parameter_id", "sex", "age_min", "age_max", "age_min_unit", "lower", "upper",
             "text_value", "unit", "method", "notes"]
        )
        assert mapping.lower == "lower"
        assert mapping.upper == "upper"
        assert mapping.method == "method"
        assert mapping.age_unit == "age_min_unit"

    def test_legacy_columns(self) -> None:
        """Test legacy min_value/max_value and missing method/unit."""
        mapping = RangeColumnMapping.resolve(
            ["id", "parameter_id", "sex", "age_min", "age_max", "min_value", "max_value", "text_value"]
        )
        assert mapping.lower == "min_value"
        assert mapping.upper == "max_value"
        assert mapping.method is None
        assert mapping.unit is None
        assert mapping.can_store_text


class TestRangeStore:
    """Tests for RangeStore against a SQLite database."""

    def test_detects_both_layouts(self, db_session: Session) -> None:
        """Test the current catalog is preferred when both exist."""
        store = RangeStore(db_session)
        assert store.available_specs() == [MODERN, LEGACY]
        assert store.preferred_spec() == MODERN

    def test_missing_tables_raise_schema_error(self, db_session: Session) -> None:
        """Test a database without range tables is a schema error."""
        for table in ("analysis_reference_ranges", "reference_ranges"):
            db_session.execute(text(f"DROP TABLE {table}"))
        db_session.commit()
        with pytest.raises(SchemaError):
            RangeStore(db_session).preferred_spec()

    def test_load_groups_filters_and_canonicalizes(self, seed, db_session: Session) -> None:
        """Test loading matched parameters with canonical ranges."""
        hema = seed.analysis("Biometría Hemática", code="BH", category="Hematología")
        hb = seed.parameter(hema, "Hemoglobina", unit="g/dL", position=1)
        seed.parameter(hema, "Hematocrito", unit="%", position=2)
        glucose = seed.parameter(seed.analysis("Química"), "Glucosa")
        seed.range(hb, sex="M", age_min=None, age_max=None, lower=13, upper=17)
        seed.range(glucose, lower=70, upper=100)
        seed.commit()

        groups = RangeStore(db_session).load_groups(MODERN, NameFilter.parse("hemoglobina"))

        assert [g.parameter for g in groups] == ["Hemoglobina"]
        group = groups[0]
        assert group.analysis_code == "BH"
        assert group.unit == "g/dL"
        (rng,) = group.ranges
        assert rng.sex is Sex.MASCULINO
        assert rng.interval == (0, 120)
        assert (rng.lower, rng.upper) == (13, 17)

    def test_filter_matches_category(self, seed, db_session: Session) -> None:
        """Test the filter also matches the analysis category."""
        hema = seed.analysis("Biometría Hemática", category="Hematología")
        seed.parameter(hema, "Plaquetas")
        seed.commit()

        groups = RangeStore(db_session).load_groups(MODERN, NameFilter.parse("hematolog"))
        assert [g.parameter for g in groups] == ["Plaquetas"]

    def test_find_identical_treats_nulls_as_open_ends(self, seed, db_session: Session) -> None:
        """Test stored NULL ages and blank method match canonical values."""
        param = seed.parameter(seed.analysis("TSH"), "TSH")
        row = seed.range(param, sex="ambos", age_min=None, age_max=None, lower=0.5, upper=4.5, method="")
        seed.commit()

        store = RangeStore(db_session)
        identity = canonicalize(
            {"parameter_id": param.id, "sex": "Ambos", "age_min": 0, "age_max": 120, "lower": 0.5, "upper": 4.5}
        ).identity
        assert store.find_identical(MODERN, identity) == row.id
        assert store.find_identical(MODERN, identity, exclude_id=row.id) is None
        assert store.find_identical(MODERN, identity._replace(upper=5.0)) is None

    def test_insert_update_delete(self, seed, db_session: Session) -> None:
        """Test the write helpers against the current catalog table."""
        param = seed.parameter(seed.analysis("TSH"), "TSH")
        seed.commit()
        store = RangeStore(db_session)

        rng = canonicalize({"parameter_id": param.id, "sex": "F", "age_min": 1, "age_max": 12, "text_value": "Negativo"})
        new_id = store.insert(MODERN, rng)
        assert store.exists(MODERN, new_id)

        stored = store.get_range(MODERN, new_id)
        assert stored.sex is Sex.FEMENINO
        assert stored.text_value == "Negativo"

        store.update(MODERN, new_id, stored.clone(age_min=0), ["age_min"])
        assert store.get_range(MODERN, new_id).age_min == 0

        assert store.delete(MODERN, new_id) == 1
        assert not store.exists(MODERN, new_id)

    def test_legacy_table_cannot_store_method(self, seed, db_session: Session) -> None:
        """Test identities with a method never match the legacy table."""
        study = seed.study("TSH")
        lp = seed.legacy_parameter(study, "TSH")
        seed.legacy_range(lp, min_value=0.5, max_value=4.5)
        seed.commit()

        store = RangeStore(db_session)
        identity = canonicalize(
            {"parameter_id": lp.id, "lower": 0.5, "upper": 4.5, "method": "ECLIA"}
        ).identity
        assert store.find_identical(LEGACY, identity) is None
        assert store.find_identical(LEGACY, identity._replace(method=None)) is not None
