from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from functools import cmp_to_key
from typing import Any, Callable, Dict, Iterable, List, Mapping, Sequence, Tuple, Union

from farmer_registry.config import MAX_SORT_KEYS
from farmer_registry.core.errors import SortSpecError
from farmer_registry.core.models import BusinessRecord, parse_datetime


class SortKey(str, Enum):
    NAME = "name"
    OWNER_NAME = "ownerName"
    AGE = "age"
    DATE = "date"
    EMPLOYEES = "employees"
    FEMALE_EMPLOYEES = "femaleEmployees"
    YOUTH_EMPLOYEES = "youthEmployees"
    PERMANENT_EMPLOYEES = "permanentEmployees"
    DISTRICT = "district"
    REVENUE = "revenue"


class Direction(str, Enum):
    ASC = "asc"
    DESC = "desc"


def revenue_rank(value: str) -> int:
    """Order revenue brackets as the directory shows them; unknown -> 0."""
    s = (value or "").strip()
    if not s:
        return 0
    if s.startswith("<"):
        return 1
    if s.startswith("840k"):
        return 2
    if s.startswith("1.2M"):
        return 3
    if s.startswith("2.4M"):
        return 4
    if s.startswith(">"):
        return 5
    return 0


def _date_key(record: BusinessRecord) -> datetime:
    return parse_datetime(record.commencement_date) or datetime.min


SORT_EXTRACTORS: Dict[SortKey, Callable[[BusinessRecord], Any]] = {
    SortKey.NAME: lambda r: (r.business_name or "").casefold(),
    SortKey.OWNER_NAME: lambda r: (r.owner_name or "").casefold(),
    SortKey.AGE: lambda r: r.owner_age or 0,
    SortKey.DATE: _date_key,
    SortKey.EMPLOYEES: lambda r: r.employees or 0,
    SortKey.FEMALE_EMPLOYEES: lambda r: r.female_employees or 0,
    SortKey.YOUTH_EMPLOYEES: lambda r: r.youth_employees or 0,
    SortKey.PERMANENT_EMPLOYEES: lambda r: 1 if r.permanent_employees else 0,
    SortKey.DISTRICT: lambda r: (r.district or "").casefold(),
    SortKey.REVENUE: lambda r: revenue_rank(r.revenue),
}

_missing = set(SortKey) - set(SORT_EXTRACTORS)
if _missing:
    raise RuntimeError(f"Sort keys without an extractor: {sorted(k.value for k in _missing)}")


@dataclass(frozen=True)
class SortEntry:
    key: SortKey
    direction: Direction = Direction.ASC


SortSpec = Tuple[SortEntry, ...]

DEFAULT_SORT: SortSpec = (SortEntry(SortKey.DATE, Direction.DESC),)

_KEY_ALIASES = {
    "businessName": SortKey.NAME,
    "business_name": SortKey.NAME,
    "owner_name": SortKey.OWNER_NAME,
    "ownerAge": SortKey.AGE,
    "commencementDate": SortKey.DATE,
    "female_employees": SortKey.FEMALE_EMPLOYEES,
    "youth_employees": SortKey.YOUTH_EMPLOYEES,
    "permanent_employees": SortKey.PERMANENT_EMPLOYEES,
}

RawSortEntry = Union[SortEntry, Mapping[str, Any], Sequence[str]]


def _parse_key(raw: Any) -> SortKey:
    if isinstance(raw, SortKey):
        return raw
    text = str(raw).strip()
    if text in _KEY_ALIASES:
        return _KEY_ALIASES[text]
    try:
        return SortKey(text)
    except ValueError:
        raise SortSpecError(f"Unsupported sort field: {raw!r}") from None


def _parse_direction(raw: Any) -> Direction:
    if isinstance(raw, Direction):
        return raw
    try:
        return Direction(str(raw).strip().lower())
    except ValueError:
        raise SortSpecError(f"Unsupported sort direction: {raw!r}") from None


def build_sort_spec(entries: Iterable[RawSortEntry]) -> SortSpec:
    """
    Validate and normalize a sort specification.

    Each entry may be a SortEntry, a mapping {"field": ..., "dir"/"direction": ...}
    or a (field, direction) pair. Raises SortSpecError for an empty spec, more
    than MAX_SORT_KEYS entries, a repeated field or an unknown field/direction.
    """
    spec: List[SortEntry] = []
    for entry in entries:
        if isinstance(entry, SortEntry):
            parsed = entry
        elif isinstance(entry, Mapping):
            if "field" not in entry:
                raise SortSpecError(f"Sort entry without a field: {dict(entry)!r}")
            direction = entry.get("direction", entry.get("dir", Direction.ASC))
            parsed = SortEntry(_parse_key(entry["field"]), _parse_direction(direction))
        elif isinstance(entry, (list, tuple)) and len(entry) == 2:
            parsed = SortEntry(_parse_key(entry[0]), _parse_direction(entry[1]))
        else:
            raise SortSpecError(f"Malformed sort entry: {entry!r}")
        spec.append(parsed)

    if not spec:
        raise SortSpecError("Sort specification must contain at least one entry.")
    if len(spec) > MAX_SORT_KEYS:
        raise SortSpecError(f"Sort specification allows at most {MAX_SORT_KEYS} entries, got {len(spec)}.")

    seen = set()
    for entry in spec:
        if entry.key in seen:
            raise SortSpecError(f"Sort field repeated: {entry.key.value}")
        seen.add(entry.key)

    return tuple(spec)


def compare(a: BusinessRecord, b: BusinessRecord, spec: SortSpec) -> int:
    """
    Lexicographic comparison under the spec: -1, 0 or 1.

    The first entry whose keys differ decides; a full tie returns 0 and the
    caller's stable sort keeps input order.
    """
    for entry in spec:
        extract = SORT_EXTRACTORS[entry.key]
        va, vb = extract(a), extract(b)
        if va == vb:
            continue
        result = -1 if va < vb else 1
        return result if entry.direction is Direction.ASC else -result
    return 0


def sort_records(records: Iterable[BusinessRecord], spec: SortSpec = DEFAULT_SORT) -> List[BusinessRecord]:
    spec = build_sort_spec(spec)
    return sorted(records, key=cmp_to_key(lambda a, b: compare(a, b, spec)))
