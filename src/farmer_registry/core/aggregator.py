from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Callable, Dict, Iterable, List, Optional, Sequence

import logging
import math

import pandas as pd

from farmer_registry.config import RECENT_RECORDS, TOP_N, VALUE_CHAIN_LABEL_MAX
from farmer_registry.core.models import BusinessRecord, GraphBucket, clean_text, parse_datetime
from farmer_registry.core.normalization import (
    normalize_business_size,
    normalize_business_type,
    normalize_education,
    normalize_revenue,
    split_support,
)

logger = logging.getLogger(__name__)

MONTHS = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

# (label, lowest age, highest age) - inclusive; None means open-ended
AGE_BRACKETS = [
    ("18-25", 18, 25),
    ("26-35", 26, 35),
    ("36-45", 36, 45),
    ("46-55", 46, 55),
    ("55+", 56, None),
]


# ---------------------------------------------------------------------------
# Bucket helpers
# ---------------------------------------------------------------------------

def _tally(labels: Iterable[Optional[str]]) -> Dict[str, int]:
    """Count labels in first-seen order; None labels are skipped."""
    counts: Dict[str, int] = {}
    for label in labels:
        if label is None:
            continue
        counts[label] = counts.get(label, 0) + 1
    return counts


def _series(counts: Dict[str, int], by_value: bool, limit: Optional[int] = None) -> List[GraphBucket]:
    """
    Turn a label -> value dict into buckets.

    by_value sorts descending by value; the sort is stable so ties keep their
    first-seen order. limit truncates after sorting.
    """
    items = list(counts.items())
    if by_value:
        items.sort(key=lambda kv: kv[1], reverse=True)
    if limit is not None:
        items = items[:limit]
    return [GraphBucket(name=k, value=v) for k, v in items]


def _raw_or(value: str, placeholder: str) -> str:
    return clean_text(value) or placeholder


def buckets_to_frame(buckets: Sequence[GraphBucket]) -> pd.DataFrame:
    """Chart-ready frame (columns: name, value) for a bucket series."""
    return pd.DataFrame(
        {"name": [b.name for b in buckets], "value": [b.value for b in buckets]},
        columns=["name", "value"],
    )


# ---------------------------------------------------------------------------
# Categorical distributions
# ---------------------------------------------------------------------------

def province_distribution(records: Sequence[BusinessRecord]) -> List[GraphBucket]:
    return _series(_tally(_raw_or(r.province, "Not specified") for r in records), by_value=True)


def gender_distribution(records: Sequence[BusinessRecord]) -> List[GraphBucket]:
    return _series(_tally(_raw_or(r.gender, "Not specified") for r in records), by_value=False)


def disability_distribution(records: Sequence[BusinessRecord]) -> List[GraphBucket]:
    return _series(_tally(_raw_or(r.disability_status, "None") for r in records), by_value=False)


def ownership_distribution(records: Sequence[BusinessRecord]) -> List[GraphBucket]:
    return _series(_tally(_raw_or(r.ownership, "Other") for r in records), by_value=False)


def raw_business_type_distribution(records: Sequence[BusinessRecord]) -> List[GraphBucket]:
    return _series(_tally(_raw_or(r.business_type, "Unknown") for r in records), by_value=True)


def district_distribution(records: Sequence[BusinessRecord], limit: int = TOP_N) -> List[GraphBucket]:
    labels = (clean_text(r.district) or None for r in records)
    return _series(_tally(labels), by_value=True, limit=limit)


def _short_value_chain(value: str) -> Optional[str]:
    text = clean_text(value)
    if not text:
        return None
    if len(text) > VALUE_CHAIN_LABEL_MAX:
        return text[:VALUE_CHAIN_LABEL_MAX] + "..."
    return text


def value_chain_distribution(records: Sequence[BusinessRecord], limit: int = TOP_N) -> List[GraphBucket]:
    return _series(_tally(_short_value_chain(r.value_chain) for r in records), by_value=True, limit=limit)


# ---------------------------------------------------------------------------
# Normalized distributions
# ---------------------------------------------------------------------------

def education_distribution(records: Sequence[BusinessRecord]) -> List[GraphBucket]:
    return _series(_tally(normalize_education(r.education_level) for r in records), by_value=False)


def business_size_distribution(records: Sequence[BusinessRecord]) -> List[GraphBucket]:
    return _series(_tally(normalize_business_size(r.business_size) for r in records), by_value=True)


def business_type_distribution(records: Sequence[BusinessRecord]) -> List[GraphBucket]:
    return _series(_tally(normalize_business_type(r.business_type) for r in records), by_value=True)


def revenue_distribution(records: Sequence[BusinessRecord]) -> List[GraphBucket]:
    labels = (normalize_revenue(r.annual_income, r.revenue) for r in records)
    return _series(_tally(labels), by_value=False)


def support_distribution(records: Sequence[BusinessRecord]) -> List[GraphBucket]:
    """Multi-valued: a record counts once per support token it lists."""
    labels = (label for r in records for label in split_support(r.support_received))
    return _series(_tally(labels), by_value=True)


# ---------------------------------------------------------------------------
# Brackets and time series
# ---------------------------------------------------------------------------

def age_bracket(age: int) -> Optional[str]:
    for label, low, high in AGE_BRACKETS:
        if age >= low and (high is None or age <= high):
            return label
    return None


def age_distribution(records: Sequence[BusinessRecord]) -> List[GraphBucket]:
    counts = {label: 0 for label, _, _ in AGE_BRACKETS}
    for r in records:
        label = age_bracket(r.owner_age or 0)
        if label is None:
            logger.warning("Record %s has owner age %r outside every bracket", r.id, r.owner_age)
            continue
        counts[label] += 1
    return _series(counts, by_value=False)


def _monthly(dates: Iterable[Optional[datetime]], year: Optional[int] = None) -> List[GraphBucket]:
    counts = {m: 0 for m in MONTHS}
    for dt in dates:
        if dt is None:
            continue
        if year is not None and dt.year != year:
            continue
        counts[MONTHS[dt.month - 1]] += 1
    return _series(counts, by_value=False)


def monthly_registrations(records: Sequence[BusinessRecord], year: Optional[int] = None) -> List[GraphBucket]:
    """Registrations per month of `year` (default: current year), by creation timestamp."""
    year = year if year is not None else date.today().year
    return _monthly((r.created_at for r in records), year=year)


def commencement_growth(records: Sequence[BusinessRecord]) -> List[GraphBucket]:
    """Businesses per commencement month, across all years."""
    return _monthly(parse_datetime(r.commencement_date) for r in records)


# ---------------------------------------------------------------------------
# Grouped sums
# ---------------------------------------------------------------------------

def employees_by_province(records: Sequence[BusinessRecord]) -> List[GraphBucket]:
    sums: Dict[str, int] = {}
    for r in records:
        province = clean_text(r.province)
        if not province:
            continue
        sums[province] = sums.get(province, 0) + (r.employees or 0)
    return _series(sums, by_value=True)


# ---------------------------------------------------------------------------
# Registry + dashboard
# ---------------------------------------------------------------------------

AggregateFn = Callable[[Sequence[BusinessRecord], int], List[GraphBucket]]

AGGREGATES: Dict[str, AggregateFn] = {
    "province": lambda rs, year: province_distribution(rs),
    "gender": lambda rs, year: gender_distribution(rs),
    "disability": lambda rs, year: disability_distribution(rs),
    "ownership": lambda rs, year: ownership_distribution(rs),
    "business_type_raw": lambda rs, year: raw_business_type_distribution(rs),
    "business_type": lambda rs, year: business_type_distribution(rs),
    "business_size": lambda rs, year: business_size_distribution(rs),
    "education": lambda rs, year: education_distribution(rs),
    "revenue": lambda rs, year: revenue_distribution(rs),
    "support": lambda rs, year: support_distribution(rs),
    "age": lambda rs, year: age_distribution(rs),
    "monthly_registrations": lambda rs, year: monthly_registrations(rs, year=year),
    "commencement_growth": lambda rs, year: commencement_growth(rs),
    "employees_by_province": lambda rs, year: employees_by_province(rs),
    "district": lambda rs, year: district_distribution(rs),
    "value_chain": lambda rs, year: value_chain_distribution(rs),
}


def aggregate(
    records: Iterable[BusinessRecord],
    names: Optional[Iterable[str]] = None,
    year: Optional[int] = None,
) -> Dict[str, List[GraphBucket]]:
    """
    Compute the named bucket series (all of them by default).

    Works on any subset, e.g. the output of the filter/search stages.
    Raises KeyError for an unknown aggregate name.
    """
    snapshot = tuple(records)
    year = year if year is not None else date.today().year
    wanted = list(names) if names is not None else list(AGGREGATES)
    unknown = [n for n in wanted if n not in AGGREGATES]
    if unknown:
        raise KeyError(f"Unknown aggregate(s): {unknown}. Known: {list(AGGREGATES)}")
    return {name: AGGREGATES[name](snapshot, year) for name in wanted}


@dataclass
class SummaryStats:
    total_records: int
    youth_owned_percentage: int
    total_employees: int
    female_employees: int
    youth_employees: int
    districts_covered: int
    top_value_chain: str


@dataclass
class Dashboard:
    stats: SummaryStats
    series: Dict[str, List[GraphBucket]]
    recent: List[BusinessRecord] = field(default_factory=list)
    year: int = 0


def _round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))


def summary_stats(records: Sequence[BusinessRecord]) -> SummaryStats:
    total = len(records)
    youth_owned = sum(1 for r in records if r.ownership == "Youth-owned")
    pct = _round_half_up(youth_owned * 100 / total) if total else 0
    chains = value_chain_distribution(records)
    return SummaryStats(
        total_records=total,
        youth_owned_percentage=pct,
        total_employees=sum(r.employees or 0 for r in records),
        female_employees=sum(r.female_employees or 0 for r in records),
        youth_employees=sum(r.youth_employees or 0 for r in records),
        districts_covered=len({clean_text(r.district) for r in records if clean_text(r.district)}),
        top_value_chain=chains[0].name if chains else "N/A",
    )


def recent_records(records: Sequence[BusinessRecord], limit: int = RECENT_RECORDS) -> List[BusinessRecord]:
    ordered = sorted(records, key=lambda r: r.created_at or datetime.min, reverse=True)
    return ordered[:limit]


def compute_dashboard(records: Iterable[BusinessRecord], today: Optional[date] = None) -> Dashboard:
    """
    Everything the dashboard and analytics views render, from one snapshot.

    Pure: running it twice on the same records yields equal results.
    """
    snapshot = tuple(records)
    year = (today or date.today()).year
    logger.info("Computing dashboard over %d records (year=%s)", len(snapshot), year)
    return Dashboard(
        stats=summary_stats(snapshot),
        series=aggregate(snapshot, year=year),
        recent=recent_records(snapshot),
        year=year,
    )
