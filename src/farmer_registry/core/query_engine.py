from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

import logging

from farmer_registry.config import DEFAULT_PAGE_SIZE
from farmer_registry.core import filters as filter_eval
from farmer_registry.core import search as search_match
from farmer_registry.core.data_loader import RecordStore
from farmer_registry.core.errors import (
    PaginationError,
    QueryEngineError,
    RecordNotFoundError,
    SortSpecError,
)
from farmer_registry.core.filters import FilterSpec
from farmer_registry.core.models import BusinessRecord
from farmer_registry.core.paginator import PAGE_SIZE_ALL, normalize_page_size, paginate, total_pages
from farmer_registry.core.sorting import DEFAULT_SORT, RawSortEntry, SortSpec, build_sort_spec, sort_records

logger = logging.getLogger(__name__)

__all__ = [
    "QueryEngineError",
    "SortSpecError",
    "PaginationError",
    "RecordNotFoundError",
    "QueryParameters",
    "QueryResult",
    "select",
    "run_query",
    "list_records",
    "get_record",
]

RawFilters = Union[FilterSpec, Mapping[str, Any], None]
RawSort = Union[SortSpec, Sequence[RawSortEntry], None]


@dataclass
class QueryParameters:
    """
    One directory request.

    filters/sort may be given raw (UI or query-string shaped); run_query
    normalizes them. A caller that changes filters, search or sort should
    reset page to 1; QueryResult.page_out_of_range flags a stale page.
    """
    filters: RawFilters = None
    search: str = ""
    sort: RawSort = None
    page: int = 1
    page_size: Any = DEFAULT_PAGE_SIZE


@dataclass
class QueryResult:
    items: List[BusinessRecord]
    total_matched: int
    total_pages: int
    page: int
    page_size: int
    sort: SortSpec = field(default=DEFAULT_SORT)

    @property
    def page_out_of_range(self) -> bool:
        return self.page > self.total_pages

    @property
    def shows_all(self) -> bool:
        return self.page_size == PAGE_SIZE_ALL


def _as_filter_spec(raw: RawFilters) -> FilterSpec:
    if isinstance(raw, FilterSpec):
        return raw
    return FilterSpec.from_mapping(raw)


def _as_sort_spec(raw: RawSort) -> SortSpec:
    if raw is None:
        return DEFAULT_SORT
    return build_sort_spec(raw)


# ---------------------------------------------------------------------------
# Pipeline stages
# ---------------------------------------------------------------------------

def select(records: Iterable[BusinessRecord], filters: RawFilters = None, search: Optional[str] = None) -> List[BusinessRecord]:
    """
    Filter then search, keeping input order.

    Shared by the directory pipeline and by analytics over a filtered subset.
    """
    spec = _as_filter_spec(filters)
    pattern = search_match.compile_query(search)

    out: List[BusinessRecord] = []
    for r in records:
        if spec and not filter_eval.matches(r, spec):
            continue
        if pattern is not None and not search_match.matches_pattern(r, pattern):
            continue
        out.append(r)
    return out


def run_query(records: Iterable[BusinessRecord], params: QueryParameters) -> QueryResult:
    """
    filter -> search -> sort -> paginate over one snapshot.

    Stateless: every call recomputes from `records`. Raises SortSpecError or
    PaginationError for a structurally invalid request; records that fail a
    predicate are simply left out.
    """
    sort_spec = _as_sort_spec(params.sort)
    page_size = normalize_page_size(params.page_size)
    if isinstance(params.page, bool) or not isinstance(params.page, int) or params.page < 1:
        raise PaginationError(f"Page must be a positive integer, got {params.page!r}")

    matched = select(records, params.filters, params.search)
    ordered = sort_records(matched, sort_spec)
    items = paginate(ordered, params.page, page_size)
    pages = total_pages(len(ordered), page_size)

    logger.info(
        "Query matched %d records (page %d/%d, size=%s, search=%r)",
        len(ordered), params.page, pages, page_size, params.search or "",
    )
    if params.page > pages:
        logger.warning("Requested page %d is beyond the last page (%d)", params.page, pages)

    return QueryResult(
        items=items,
        total_matched=len(ordered),
        total_pages=pages,
        page=params.page,
        page_size=page_size,
        sort=sort_spec,
    )


# ---------------------------------------------------------------------------
# Store-facing entry points
# ---------------------------------------------------------------------------

def list_records(
    store: RecordStore,
    filters: RawFilters = None,
    search: str = "",
    sort: RawSort = None,
    page: int = 1,
    page_size: Any = DEFAULT_PAGE_SIZE,
) -> QueryResult:
    """Run the directory pipeline over a fresh snapshot of the store."""
    params = QueryParameters(filters=filters, search=search, sort=sort, page=page, page_size=page_size)
    return run_query(store.snapshot(), params)


def get_record(store: RecordStore, record_id: int) -> BusinessRecord:
    for r in store.snapshot():
        if r.id == record_id:
            return r
    raise RecordNotFoundError(record_id)
