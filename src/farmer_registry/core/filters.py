from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Dict, Mapping, Optional, Union

import logging
import re

from farmer_registry.config import (
    GENDER_VALUES,
    OWNERSHIP_VALUES,
    PROVINCE_DISTRICTS,
    STATUS_VALUES,
)
from farmer_registry.core.models import BusinessRecord, clean_text

logger = logging.getLogger(__name__)

_NON_NUMERIC = re.compile(r"[^0-9.]")


class Facet(str, Enum):
    """Every attribute a FilterSpec can constrain."""

    OWNERSHIP = "ownership"
    GENDER = "gender"
    PROVINCE = "province"
    DISTRICT = "district"
    BUSINESS_TYPE = "businessType"
    BUSINESS_SIZE = "businessSize"
    EDUCATION_LEVEL = "educationLevel"
    DISABILITY_STATUS = "disabilityStatus"
    STATUS = "status"
    VALUE_CHAIN = "valueChain"
    ANNUAL_INCOME = "annualIncome"
    AGE = "age"


RANGE_FACETS = frozenset({Facet.ANNUAL_INCOME, Facet.AGE})

# Categorical facets whose values come from a closed set; anything else in a
# request is ignored rather than producing an empty result.
ENUMERATED_VALUES: Dict[Facet, tuple] = {
    Facet.OWNERSHIP: OWNERSHIP_VALUES,
    Facet.GENDER: GENDER_VALUES,
    Facet.STATUS: STATUS_VALUES,
}

FACET_EXTRACTORS: Dict[Facet, Callable[[BusinessRecord], Any]] = {
    Facet.OWNERSHIP: lambda r: r.ownership,
    Facet.GENDER: lambda r: r.gender,
    Facet.PROVINCE: lambda r: r.province,
    Facet.DISTRICT: lambda r: r.district,
    Facet.BUSINESS_TYPE: lambda r: r.business_type,
    Facet.BUSINESS_SIZE: lambda r: r.business_size,
    Facet.EDUCATION_LEVEL: lambda r: r.education_level,
    Facet.DISABILITY_STATUS: lambda r: r.disability_status,
    Facet.STATUS: lambda r: r.status,
    Facet.VALUE_CHAIN: lambda r: r.value_chain,
    Facet.ANNUAL_INCOME: lambda r: r.annual_income,
    Facet.AGE: lambda r: r.owner_age,
}

_missing = set(Facet) - set(FACET_EXTRACTORS)
if _missing:
    raise RuntimeError(f"Facets without an extractor: {sorted(f.value for f in _missing)}")


def extract_number(value: Any) -> Optional[float]:
    """
    Pull a number out of a free-text field such as "1,200,000 RWF".

    Every character that is not a digit or '.' is dropped before parsing, so
    thousands separators and currency suffixes disappear. Returns None when
    nothing parsable remains.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    digits = _NON_NUMERIC.sub("", clean_text(value))
    if not digits:
        return None
    try:
        return float(digits)
    except ValueError:
        return None


@dataclass(frozen=True)
class NumericRange:
    """Inclusive numeric bounds; a missing bound is open."""
    min: Optional[float] = None
    max: Optional[float] = None

    def contains(self, number: float) -> bool:
        if self.min is not None and number < self.min:
            return False
        if self.max is not None and number > self.max:
            return False
        return True


FacetValue = Union[str, NumericRange]


class FilterSpec:
    """
    Immutable facet -> constraint mapping.

    Build one from raw request input with FilterSpec.from_mapping(); direct
    construction expects already-clean Facet keys.
    """

    __slots__ = ("_constraints",)

    def __init__(self, constraints: Optional[Mapping[Facet, FacetValue]] = None) -> None:
        self._constraints = MappingProxyType(dict(constraints or {}))

    @property
    def constraints(self) -> Mapping[Facet, FacetValue]:
        return self._constraints

    def get(self, facet: Facet) -> Optional[FacetValue]:
        return self._constraints.get(facet)

    def __contains__(self, facet: object) -> bool:
        return facet in self._constraints

    def __len__(self) -> int:
        return len(self._constraints)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, FilterSpec) and dict(self._constraints) == dict(other._constraints)

    def __repr__(self) -> str:
        body = ", ".join(f"{k.value}={v!r}" for k, v in self._constraints.items())
        return f"FilterSpec({body})"

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> FilterSpec:
        """
        Parse UI / query-string input into a FilterSpec.

        Malformed constraints are dropped (with a warning), never raised:
          - unknown facet names
          - empty values
          - values outside an enumerated facet's allowed set
          - range facets whose bounds do not parse as numbers
        """
        constraints: Dict[Facet, FacetValue] = {}
        for key, value in (raw or {}).items():
            facet = _resolve_facet(key)
            if facet is None:
                logger.warning("Ignoring unknown filter facet %r", key)
                continue

            if facet in RANGE_FACETS:
                bounds = _parse_range(value)
                if bounds is None:
                    logger.warning("Ignoring unparsable range for facet %s: %r", facet.value, value)
                    continue
                if bounds.min is None and bounds.max is None:
                    continue
                constraints[facet] = bounds
                continue

            text = clean_text(value)
            if not text:
                continue
            allowed = ENUMERATED_VALUES.get(facet)
            if allowed is not None and text not in allowed:
                logger.warning("Ignoring out-of-range value for facet %s: %r", facet.value, text)
                continue
            constraints[facet] = text

        return cls(constraints)


def _resolve_facet(key: Any) -> Optional[Facet]:
    if isinstance(key, Facet):
        return key
    text = str(key).strip()
    for facet in Facet:
        if text == facet.value or text == facet.name.lower():
            return facet
    return None


def _parse_bound(value: Any) -> tuple:
    """Return (ok, number) where a blank bound is ok and open."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return True, None
    if isinstance(value, bool):
        return False, None
    if isinstance(value, (int, float)):
        if value != value:  # NaN
            return False, None
        return True, float(value)
    try:
        return True, float(str(value).strip())
    except ValueError:
        return False, None


def _parse_range(value: Any) -> Optional[NumericRange]:
    if isinstance(value, NumericRange):
        return value
    if not isinstance(value, Mapping):
        return None
    ok_min, lo = _parse_bound(value.get("min"))
    ok_max, hi = _parse_bound(value.get("max"))
    if not (ok_min and ok_max):
        return None
    return NumericRange(min=lo, max=hi)


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def district_belongs(province: str, district: str) -> bool:
    """
    True when the district is valid for the province, or when the province is
    not in the reference table (nothing to check against).
    """
    known = PROVINCE_DISTRICTS.get(province)
    if known is None:
        return True
    return district in known


def facet_matches(record: BusinessRecord, facet: Facet, constraint: FacetValue) -> bool:
    raw = FACET_EXTRACTORS[facet](record)

    if isinstance(constraint, NumericRange):
        number = extract_number(raw)
        if number is None:
            return False
        return constraint.contains(number)

    field_value = clean_text(raw)
    if not field_value:
        return False
    return field_value == constraint


def matches(record: BusinessRecord, spec: FilterSpec) -> bool:
    """
    True iff the record satisfies every facet present in the filter spec (AND).

    A district that is inconsistent with the selected province matches
    nothing; it is not an error.
    """
    province = spec.get(Facet.PROVINCE)
    district = spec.get(Facet.DISTRICT)
    if isinstance(province, str) and isinstance(district, str):
        if not district_belongs(province, district):
            return False

    for facet, constraint in spec.constraints.items():
        if not facet_matches(record, facet, constraint):
            return False
    return True


def district_options(province: Optional[str], districts: Any) -> list:
    """Restrict observed district values to those valid for a province."""
    values = sorted({clean_text(d) for d in districts if clean_text(d)})
    if not province:
        return values
    return [d for d in values if district_belongs(province, d)]
