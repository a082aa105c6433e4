"""Reference range interval model.

Normalizes heterogeneous range rows (legacy and current column names,
NULL age bounds, free-form sex strings, comma decimals) into a single
canonical record and provides the interval algebra the reconciliation
passes are built on.

All intervals are half-open [start, end) in years over the age domain
(default [0, 120)).
"""

import logging
import math
import unicodedata
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Any, NamedTuple

from app.core.config import settings
from app.schemas.base import Sex

logger = logging.getLogger(__name__)

Interval = tuple[float, float]

# Order in which sex partitions are processed and reported
SEX_ORDER: tuple[Sex, ...] = (Sex.MASCULINO, Sex.FEMENINO, Sex.AMBOS)

# Case and accent folded sex strings
SEX_SYNONYMS: dict[str, Sex] = {
    "m": Sex.MASCULINO,
    "masculino": Sex.MASCULINO,
    "male": Sex.MASCULINO,
    "hombre": Sex.MASCULINO,
    "varon": Sex.MASCULINO,
    "f": Sex.FEMENINO,
    "femenino": Sex.FEMENINO,
    "female": Sex.FEMENINO,
    "mujer": Sex.FEMENINO,
    "a": Sex.AMBOS,
    "ambos": Sex.AMBOS,
    "all": Sex.AMBOS,
    "any": Sex.AMBOS,
    "both": Sex.AMBOS,
    "todos": Sex.AMBOS,
    "": Sex.AMBOS,
}

# Problems that leave a row without a usable age interval
INTERVAL_PROBLEMS: tuple[str, ...] = ("malformed age_min", "malformed age_max", "empty age interval")

# Alternative source column names, first match wins
FIELD_ALIASES: dict[str, tuple[str, ...]] = {
    "lower": ("lower", "min_value"),
    "upper": ("upper", "max_value"),
    "age_unit": ("age_unit", "age_min_unit"),
}


class RangeIdentity(NamedTuple):
    """Fields that make two range rows exact duplicates."""

    parameter_id: str | None
    sex: Sex
    age_min: float
    age_max: float
    method: str | None
    lower: float | None
    upper: float | None
    text_value: str | None


@dataclass(frozen=True)
class ReferenceRange:
    """Canonical reference range record.

    problems holds data errors found while canonicalizing. A range with
    problems is reported and skipped by every repair pass, never repaired.
    """

    id: str | None
    parameter_id: str | None
    sex: Sex
    age_min: float
    age_max: float
    lower: float | None = None
    upper: float | None = None
    text_value: str | None = None
    unit: str | None = None
    method: str | None = None
    notes: str | None = None
    age_unit: str = "years"
    problems: tuple[str, ...] = ()

    @property
    def interval(self) -> Interval:
        return (self.age_min, self.age_max)

    @property
    def has_numeric(self) -> bool:
        return self.lower is not None or self.upper is not None

    @property
    def has_value(self) -> bool:
        return self.has_numeric or self.text_value is not None

    @property
    def is_valid(self) -> bool:
        return not self.problems

    @property
    def has_interval(self) -> bool:
        """True when the age bounds form a usable interval, whatever the values."""
        return not any(p.startswith(INTERVAL_PROBLEMS) for p in self.problems)

    @property
    def identity(self) -> RangeIdentity:
        return RangeIdentity(
            self.parameter_id,
            self.sex,
            self.age_min,
            self.age_max,
            self.method,
            self.lower,
            self.upper,
            self.text_value,
        )

    @property
    def value_key(self) -> tuple:
        """Identity without parameter and sex, used to compare partitions."""
        return (self.age_min, self.age_max, self.method, self.lower, self.upper, self.text_value)

    def clone(self, **changes: Any) -> "ReferenceRange":
        """Copy of this range as a new (unsaved) row."""
        return replace(self, id=None, problems=(), **changes)

    def describe(self) -> str:
        """Short human-readable form, e.g. 'Ambos [18,120) 12-16'."""
        return f"{self.sex.value} [{format_number(self.age_min)},{format_number(self.age_max)}) {describe_value(self)}"


def format_number(value: float | None) -> str:
    """Render a number without a trailing '.0'."""
    if value is None:
        return ""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def describe_value(rng: ReferenceRange) -> str:
    """Value fields of a range as text."""
    if rng.has_numeric:
        return f"{format_number(rng.lower)}-{format_number(rng.upper)}"
    return rng.text_value or ""


def fold_text(value: str) -> str:
    """Case-fold and strip accents."""
    decomposed = unicodedata.normalize("NFKD", value.strip().casefold())
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_sex(value: Any) -> Sex | None:
    """Map a free-form sex value to Sex, or None when unrecognized."""
    if value is None:
        return Sex.AMBOS
    if isinstance(value, Sex):
        return value
    return SEX_SYNONYMS.get(fold_text(str(value)))


def sex_synonyms(sex: Sex) -> list[str]:
    """Stored spellings (folded) that normalize to sex."""
    return [key for key, value in SEX_SYNONYMS.items() if value is sex]


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_number(value: Any, field: str, problems: list[str]) -> float | None:
    """Parse a numeric field; malformed input is recorded in problems."""
    if value is None:
        return None
    if isinstance(value, bool):
        problems.append(f"malformed {field}: {value!r}")
        return None
    if isinstance(value, (int, float, Decimal)):
        number = float(value)
    else:
        text = str(value).strip()
        if not text:
            return None
        if "," in text and "." not in text:
            text = text.replace(",", ".")
        try:
            number = float(text)
        except ValueError:
            problems.append(f"malformed {field}: {value!r}")
            return None
    if not math.isfinite(number):
        problems.append(f"malformed {field}: {value!r}")
        return None
    return number


def _pick(raw: Mapping[str, Any], field: str) -> Any:
    for key in FIELD_ALIASES.get(field, (field,)):
        if key in raw:
            return raw[key]
    return None


def canonicalize(
    raw: Mapping[str, Any],
    *,
    unknown_sex: str | None = None,
    domain: Interval | None = None,
) -> ReferenceRange:
    """Normalize a raw range row into a ReferenceRange.

    Never raises for bad data. Malformed numbers become None and are
    listed in ReferenceRange.problems, as are empty age intervals and
    rows carrying neither a numeric pair nor a text value.

    Args:
        raw: Row mapping using current or legacy column names
        unknown_sex: "ambos" (default from settings) maps unrecognized
            sex strings to Ambos; "reject" records a problem instead
        domain: Age domain, defaults to settings.age_domain

    Returns:
        Canonical ReferenceRange
    """
    lo, hi = domain or settings.age_domain
    policy = unknown_sex or settings.unknown_sex_policy
    problems: list[str] = []

    raw_sex = raw.get("sex")
    sex = normalize_sex(raw_sex)
    if sex is None:
        if policy == "reject":
            problems.append(f"unrecognized sex: {raw_sex!r}")
        sex = Sex.AMBOS

    age_min = _parse_number(raw.get("age_min"), "age_min", problems)
    age_max = _parse_number(raw.get("age_max"), "age_max", problems)
    age_min = lo if age_min is None else min(max(age_min, lo), hi)
    age_max = hi if age_max is None else min(max(age_max, lo), hi)
    if age_min >= age_max:
        problems.append(f"empty age interval [{format_number(age_min)},{format_number(age_max)})")

    lower = _parse_number(_pick(raw, "lower"), "lower", problems)
    upper = _parse_number(_pick(raw, "upper"), "upper", problems)
    text_value = _clean_text(raw.get("text_value"))
    if lower is None and upper is None and text_value is None:
        problems.append("missing both numeric range and text value")

    rid = raw.get("id")
    pid = raw.get("parameter_id")
    return ReferenceRange(
        id=None if rid is None else str(rid),
        parameter_id=None if pid is None else str(pid),
        sex=sex,
        age_min=age_min,
        age_max=age_max,
        lower=lower,
        upper=upper,
        text_value=text_value,
        unit=_clean_text(raw.get("unit")),
        method=_clean_text(raw.get("method")),
        notes=_clean_text(raw.get("notes")),
        problems=tuple(problems),
    )


# ============================================================================
# Interval algebra
# ============================================================================


def overlaps(s1: float, e1: float, s2: float, e2: float) -> bool:
    """Open overlap test for [s1,e1) and [s2,e2). Touching is not overlap."""
    return s1 < e2 and s2 < e1


def merge_intervals(intervals: Iterable[Interval]) -> list[Interval]:
    """Sort and merge overlapping or touching intervals."""
    merged: list[list[float]] = []
    for start, end in sorted(intervals):
        if start >= end:
            continue
        if merged and start <= merged[-1][1]:
            merged[-1][1] = max(merged[-1][1], end)
        else:
            merged.append([start, end])
    return [(start, end) for start, end in merged]


def compute_gaps(intervals: Iterable[Interval], domain: Interval | None = None) -> list[Interval]:
    """Complement of the covered intervals within domain.

    Sweeps a cursor from the domain start: whenever the next interval
    starts past the cursor a gap is emitted, then the cursor advances to
    the interval end. A trailing gap closes the domain.
    """
    lo, hi = domain or settings.age_domain
    gaps: list[Interval] = []
    cursor = lo
    for start, end in sorted(intervals):
        start, end = max(start, lo), min(end, hi)
        if start >= end:
            continue
        if start > cursor:
            gaps.append((cursor, min(start, hi)))
        cursor = max(cursor, end)
    if cursor < hi:
        gaps.append((cursor, hi))
    return gaps


def clip_intervals(intervals: Iterable[Interval], window: Interval) -> list[Interval]:
    """Restrict intervals to window."""
    lo, hi = window
    clipped = [(max(s, lo), min(e, hi)) for s, e in intervals]
    return [(s, e) for s, e in clipped if s < e]


def sort_ranges(ranges: Iterable[ReferenceRange]) -> list[ReferenceRange]:
    """Sort ranges by (age_min, age_max), stable for equal intervals."""
    return sorted(ranges, key=lambda r: (r.age_min, r.age_max))
