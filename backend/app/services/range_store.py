"""Reference range storage access.

The same repair logic runs against two table layouts: the current
analysis catalog (analysis / analysis_parameters /
analysis_reference_ranges) and the legacy schema (studies / parameters /
reference_ranges). Column names differ between them, so columns are
resolved at runtime by reflecting each table once per invocation and
matching candidate names, the same way the EHR connector maps source
columns.

RangeStore never commits. Transaction boundaries belong to the caller.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    Integer,
    MetaData,
    Table,
    and_,
    delete,
    func,
    insert,
    inspect,
    literal,
    nulls_last,
    or_,
    select,
    update,
)
from sqlalchemy.orm import Session
from sqlalchemy.sql.elements import ColumnElement

from app.core.config import settings
from app.schemas.base import Sex
from app.services.interval_model import (
    SEX_ORDER,
    RangeIdentity,
    ReferenceRange,
    canonicalize,
    sex_synonyms,
)

logger = logging.getLogger(__name__)

# Chunk size for parameter_id IN (...) lookups
_IN_CHUNK = 500


class FilterError(ValueError):
    """Invalid operator input: unparseable filter or missing argument."""


class SchemaError(RuntimeError):
    """Required tables or columns are missing from storage."""


@dataclass(frozen=True)
class NameFilter:
    """Analysis/parameter name filter.

    Parsed from a substring or alternation pattern such as
    "Hemoglobina|Hematocrito". Terms are matched case-insensitively with
    LIKE; a term without wildcards matches as a substring.
    """

    patterns: tuple[str, ...] = ()

    @classmethod
    def parse(cls, value: str | None) -> "NameFilter":
        """Parse a filter expression.

        Raises:
            FilterError: If the expression is given but has no usable term,
                or a term consists only of wildcards
        """
        if value is None:
            return cls()
        terms = [term.strip() for term in value.replace(",", "|").split("|")]
        terms = [term for term in terms if term]
        if not terms:
            raise FilterError(f"Empty filter expression: {value!r}")

        patterns = []
        for term in terms:
            if not term.strip("%_"):
                raise FilterError(f"Filter term {term!r} would match everything")
            patterns.append(term if ("%" in term or "_" in term) else f"%{term}%")
        return cls(tuple(patterns))

    @property
    def is_empty(self) -> bool:
        return not self.patterns

    def clause(self, *columns: Any) -> ColumnElement[bool] | None:
        """OR of ILIKE matches of every pattern against every column."""
        if self.is_empty:
            return None
        return or_(*[col.ilike(pattern) for pattern in self.patterns for col in columns])

    def __str__(self) -> str:
        return "|".join(self.patterns) if self.patterns else "*"


@dataclass(frozen=True)
class RangeTableSpec:
    """Names of the three tables of one catalog layout."""

    name: str
    ranges: str
    parameters: str
    analyses: str
    analysis_fk: str


MODERN = RangeTableSpec(
    name="modern",
    ranges="analysis_reference_ranges",
    parameters="analysis_parameters",
    analyses="analysis",
    analysis_fk="analysis_id",
)
LEGACY = RangeTableSpec(
    name="legacy",
    ranges="reference_ranges",
    parameters="parameters",
    analyses="studies",
    analysis_fk="study_id",
)

# Candidate column names per logical range field
DEFAULT_RANGE_COLUMN_CANDIDATES: dict[str, list[str]] = {
    "lower": ["lower", "min_value", "lower_value"],
    "upper": ["upper", "max_value", "upper_value"],
    "unit": ["unit", "units"],
    "text": ["text_value", "value_text"],
    "method": ["method"],
    "age_unit": ["age_min_unit", "age_unit"],
    "notes": ["notes", "note"],
}

_REQUIRED_RANGE_COLUMNS = ("id", "parameter_id", "sex", "age_min", "age_max")


@dataclass(frozen=True)
class RangeColumnMapping:
    """Resolved physical column names for the optional range fields."""

    lower: str | None = None
    upper: str | None = None
    unit: str | None = None
    text: str | None = None
    method: str | None = None
    age_unit: str | None = None
    notes: str | None = None

    @classmethod
    def resolve(cls, columns: Iterable[str]) -> "RangeColumnMapping":
        """Match available columns against the candidate lists."""
        available = {col.lower(): col for col in columns}
        resolved: dict[str, str | None] = {}
        for field_name, candidates in DEFAULT_RANGE_COLUMN_CANDIDATES.items():
            resolved[field_name] = next(
                (available[c] for c in candidates if c in available),
                None,
            )
        return cls(**resolved)

    @property
    def can_store_text(self) -> bool:
        return self.text is not None

    @property
    def can_store_numeric(self) -> bool:
        return self.lower is not None and self.upper is not None

    def column_for(self, field_name: str) -> str | None:
        """Physical column for a canonical ReferenceRange field."""
        if field_name in ("sex", "age_min", "age_max", "parameter_id"):
            return field_name
        if field_name == "text_value":
            return self.text
        return getattr(self, field_name, None)


@dataclass
class ParameterGroup:
    """A parameter with its analysis context and canonical ranges."""

    table: RangeTableSpec
    analysis_id: str
    analysis: str
    parameter_id: str
    parameter: str
    unit: str | None = None
    analysis_code: str | None = None
    analysis_units: str | None = None
    category: str | None = None
    decimal_places: int | None = None
    ranges: list[ReferenceRange] = field(default_factory=list)

    @property
    def valid_ranges(self) -> list[ReferenceRange]:
        return [r for r in self.ranges if r.is_valid]

    @property
    def invalid_ranges(self) -> list[ReferenceRange]:
        return [r for r in self.ranges if not r.is_valid]

    @property
    def interval_ranges(self) -> list[ReferenceRange]:
        """Ranges with a usable age interval, including rows with bad values."""
        return [r for r in self.ranges if r.has_interval]

    def by_sex(self, any_value: bool = False) -> dict[Sex, list[ReferenceRange]]:
        """Ranges bucketed by sex, each sorted by interval.

        Only valid ranges by default; any_value also keeps rows whose
        values are malformed but whose interval is usable.
        """
        buckets: dict[Sex, list[ReferenceRange]] = {sex: [] for sex in SEX_ORDER}
        for rng in self.interval_ranges if any_value else self.valid_ranges:
            buckets[rng.sex].append(rng)
        for bucket in buckets.values():
            bucket.sort(key=lambda r: (r.age_min, r.age_max))
        return buckets

    @property
    def label(self) -> str:
        return f"{self.analysis} / {self.parameter}"


class RangeStore:
    """Schema-agnostic reads and writes of reference range rows."""

    def __init__(self, session: Session):
        self.session = session
        self._metadata = MetaData()
        self._tables: dict[str, Table] = {}
        self._mappings: dict[str, RangeColumnMapping] = {}
        self._table_names: set[str] | None = None

    # ------------------------------------------------------------------
    # Schema probing
    # ------------------------------------------------------------------

    def has_table(self, name: str) -> bool:
        if self._table_names is None:
            self._table_names = set(inspect(self.session.connection()).get_table_names())
        return name in self._table_names

    def table(self, name: str) -> Table:
        """Reflect (once) and return a table."""
        if name not in self._tables:
            if not self.has_table(name):
                raise SchemaError(f"Table {name!r} does not exist")
            self._tables[name] = Table(name, self._metadata, autoload_with=self.session.connection())
        return self._tables[name]

    def has_column(self, table_name: str, column: str) -> bool:
        return self.has_table(table_name) and column in self.table(table_name).c

    def is_available(self, spec: RangeTableSpec) -> bool:
        return all(self.has_table(name) for name in (spec.ranges, spec.parameters, spec.analyses))

    def available_specs(self) -> list[RangeTableSpec]:
        """Layouts present in storage, current catalog first."""
        return [spec for spec in (MODERN, LEGACY) if self.is_available(spec)]

    def preferred_spec(self) -> RangeTableSpec:
        """Current catalog when present, else the legacy layout."""
        specs = self.available_specs()
        if not specs:
            raise SchemaError("No reference range tables found (neither current nor legacy schema)")
        return specs[0]

    def mapping(self, spec: RangeTableSpec) -> RangeColumnMapping:
        """Resolve (once) the column mapping of a range table."""
        if spec.ranges not in self._mappings:
            columns = list(self.table(spec.ranges).c.keys())
            missing = [col for col in _REQUIRED_RANGE_COLUMNS if col not in columns]
            if missing:
                raise SchemaError(f"Table {spec.ranges!r} is missing columns: {', '.join(missing)}")
            mapping = RangeColumnMapping.resolve(columns)
            if not mapping.can_store_numeric and not mapping.can_store_text:
                raise SchemaError(f"Table {spec.ranges!r} has no value columns")
            logger.debug(f"Resolved columns for {spec.ranges}: {mapping}")
            self._mappings[spec.ranges] = mapping
        return self._mappings[spec.ranges]

    def _uses_integer_ids(self, table_name: str) -> bool:
        return isinstance(self.table(table_name).c.id.type, Integer)

    def _coerce_id(self, table_name: str, value: Any) -> Any:
        if value is not None and self._uses_integer_ids(table_name):
            return int(value)
        return value

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load_groups(self, spec: RangeTableSpec, name_filter: NameFilter | None = None) -> list[ParameterGroup]:
        """Load matching parameters with their canonical ranges.

        Parameters are ordered by analysis name, position and parameter
        name; ranges keep storage order (creation time, then id).
        """
        mapping = self.mapping(spec)
        analyses = self.table(spec.analyses)
        params = self.table(spec.parameters)

        optional = {
            "category": analyses.c.get("category"),
            "analysis_code": analyses.c.get("code"),
            "analysis_units": analyses.c.get("general_units"),
            "unit": params.c.get("unit"),
            "decimal_places": params.c.get("decimal_places"),
        }
        columns = [
            analyses.c.id.label("analysis_id"),
            analyses.c.name.label("analysis"),
            params.c.id.label("parameter_id"),
            params.c.name.label("parameter"),
        ]
        columns += [col.label(key) for key, col in optional.items() if col is not None]

        stmt = select(*columns).select_from(
            params.join(analyses, params.c[spec.analysis_fk] == analyses.c.id)
        )
        match_columns = [analyses.c.name, params.c.name]
        if optional["category"] is not None:
            match_columns.append(optional["category"])
        clause = name_filter.clause(*match_columns) if name_filter else None
        if clause is not None:
            stmt = stmt.where(clause)

        order = [analyses.c.name]
        if "position" in params.c:
            order.append(nulls_last(params.c.position.asc()))
        order += [params.c.name, params.c.id]
        stmt = stmt.order_by(*order)

        groups: list[ParameterGroup] = []
        by_id: dict[str, ParameterGroup] = {}
        for row in self.session.execute(stmt).mappings():
            data = dict(row)
            group = ParameterGroup(
                table=spec,
                analysis_id=str(data.pop("analysis_id")),
                analysis=data.pop("analysis"),
                parameter_id=str(data.pop("parameter_id")),
                parameter=data.pop("parameter"),
                **data,
            )
            groups.append(group)
            by_id[group.parameter_id] = group

        for rng in self._load_ranges(spec, mapping, list(by_id)):
            by_id[rng.parameter_id].ranges.append(rng)

        logger.debug(f"Loaded {len(groups)} parameter(s) from {spec.ranges} (filter={name_filter})")
        return groups

    def _load_ranges(
        self,
        spec: RangeTableSpec,
        mapping: RangeColumnMapping,
        parameter_ids: list[str],
    ) -> list[ReferenceRange]:
        ranges_table = self.table(spec.ranges)
        order = []
        if "created_at" in ranges_table.c:
            order.append(ranges_table.c.created_at)
        order.append(ranges_table.c.id)

        result: list[ReferenceRange] = []
        for start in range(0, len(parameter_ids), _IN_CHUNK):
            chunk = [self._coerce_id(spec.parameters, pid) for pid in parameter_ids[start : start + _IN_CHUNK]]
            stmt = select(ranges_table).where(ranges_table.c.parameter_id.in_(chunk)).order_by(*order)
            for row in self.session.execute(stmt).mappings():
                result.append(self.to_canonical(row, mapping))
        return result

    @staticmethod
    def to_canonical(row: Any, mapping: RangeColumnMapping) -> ReferenceRange:
        """Canonicalize a stored row using the resolved mapping."""

        def get(column: str | None) -> Any:
            return row[column] if column else None

        raw = {
            "id": row["id"],
            "parameter_id": row["parameter_id"],
            "sex": row["sex"],
            "age_min": row["age_min"],
            "age_max": row["age_max"],
            "lower": get(mapping.lower),
            "upper": get(mapping.upper),
            "text_value": get(mapping.text),
            "unit": get(mapping.unit),
            "method": get(mapping.method),
            "notes": get(mapping.notes),
        }
        return canonicalize(raw)

    def get_range(self, spec: RangeTableSpec, range_id: str) -> ReferenceRange | None:
        """Fetch one range row by id."""
        ranges_table = self.table(spec.ranges)
        row = (
            self.session.execute(
                select(ranges_table).where(ranges_table.c.id == self._coerce_id(spec.ranges, range_id))
            )
            .mappings()
            .first()
        )
        return None if row is None else self.to_canonical(row, self.mapping(spec))

    def exists(self, spec: RangeTableSpec, range_id: str) -> bool:
        ranges_table = self.table(spec.ranges)
        stmt = select(literal(1)).where(ranges_table.c.id == self._coerce_id(spec.ranges, range_id))
        return self.session.execute(stmt).first() is not None

    def _sex_clause(self, column: Any, sex: Sex) -> ColumnElement[bool]:
        clause = func.lower(func.trim(column)).in_(sex_synonyms(sex))
        if sex is Sex.AMBOS:
            clause = or_(clause, column.is_(None))
        return clause

    def find_identical(
        self,
        spec: RangeTableSpec,
        identity: RangeIdentity,
        exclude_id: str | None = None,
    ) -> str | None:
        """Id of a stored row matching the identity tuple, if any.

        Stored NULL age bounds match the open domain ends and blank
        method / text values match NULL.
        """
        mapping = self.mapping(spec)
        ranges_table = self.table(spec.ranges)
        lo, hi = settings.age_domain
        c = ranges_table.c

        conditions = [
            c.parameter_id == self._coerce_id(spec.parameters, identity.parameter_id),
            self._sex_clause(c.sex, identity.sex),
            func.coalesce(c.age_min, lo) == identity.age_min,
            func.coalesce(c.age_max, hi) == identity.age_max,
        ]
        for field_name, value in (
            ("method", identity.method),
            ("lower", identity.lower),
            ("upper", identity.upper),
            ("text_value", identity.text_value),
        ):
            column_name = mapping.column_for(field_name)
            if column_name is None:
                if value is not None:
                    return None
                continue
            column = c[column_name]
            if field_name in ("method", "text_value"):
                column = func.nullif(func.trim(column), "")
            conditions.append(column.is_not_distinct_from(value))
        if exclude_id is not None:
            conditions.append(c.id != self._coerce_id(spec.ranges, exclude_id))

        row = self.session.execute(select(c.id).where(and_(*conditions)).limit(1)).first()
        return None if row is None else str(row[0])

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def _values_for(self, spec: RangeTableSpec, rng: ReferenceRange, fields: Iterable[str]) -> dict[str, Any]:
        mapping = self.mapping(spec)
        values: dict[str, Any] = {}
        for field_name in fields:
            column = mapping.column_for(field_name)
            value = getattr(rng, field_name)
            if column is None:
                if value is not None and field_name in ("lower", "upper", "text_value"):
                    raise SchemaError(f"Table {spec.ranges!r} cannot store {field_name}")
                continue
            if field_name == "sex":
                value = value.value
            elif field_name == "parameter_id":
                value = self._coerce_id(spec.parameters, value)
            values[column] = value
        return values

    def insert(self, spec: RangeTableSpec, rng: ReferenceRange) -> str:
        """Insert a range row and return its id."""
        mapping = self.mapping(spec)
        values = self._values_for(
            spec,
            rng,
            ("parameter_id", "sex", "age_min", "age_max", "lower", "upper", "text_value", "unit", "method", "notes"),
        )
        if mapping.age_unit:
            values[mapping.age_unit] = settings.storage_age_unit
        new_id: Any = None
        if not self._uses_integer_ids(spec.ranges):
            new_id = str(uuid4())
            values["id"] = new_id

        result = self.session.execute(insert(self.table(spec.ranges)).values(**values))
        if new_id is None:
            new_id = result.inserted_primary_key[0]
        logger.debug(f"Inserted {spec.ranges}/{new_id}: {rng.describe()}")
        return str(new_id)

    def update(self, spec: RangeTableSpec, range_id: str, rng: ReferenceRange, fields: Iterable[str]) -> int:
        """Update the given canonical fields of a row from rng."""
        values = self._values_for(spec, rng, fields)
        if not values:
            return 0
        ranges_table = self.table(spec.ranges)
        result = self.session.execute(
            update(ranges_table)
            .where(ranges_table.c.id == self._coerce_id(spec.ranges, range_id))
            .values(**values)
        )
        logger.debug(f"Updated {spec.ranges}/{range_id}: {values}")
        return result.rowcount

    def delete(self, spec: RangeTableSpec, range_id: str) -> int:
        """Delete a row by id."""
        ranges_table = self.table(spec.ranges)
        result = self.session.execute(
            delete(ranges_table).where(ranges_table.c.id == self._coerce_id(spec.ranges, range_id))
        )
        logger.debug(f"Deleted {spec.ranges}/{range_id}")
        return result.rowcount
