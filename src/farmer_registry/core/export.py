from __future__ import annotations

from dataclasses import replace
from datetime import date
from enum import Enum
from pathlib import Path
from typing import IO, Any, Callable, Iterable, List, Optional, Sequence, Tuple, Union

import logging

import pandas as pd

from farmer_registry.config import EXPORT_DIR, NID_MASK
from farmer_registry.core.data_loader import RecordStore
from farmer_registry.core.models import BusinessRecord
from farmer_registry.core.paginator import PAGE_SIZE_ALL
from farmer_registry.core.query_engine import QueryParameters, RawFilters, RawSort, run_query

logger = logging.getLogger(__name__)

EXPORT_SHEET = "Businesses"


class ExportView(str, Enum):
    SUMMARY = "summary"
    DETAILED = "detailed"


def mask_record(record: BusinessRecord, reveal: bool = False) -> BusinessRecord:
    """
    Presentation copy of a record with the national id hidden unless
    `reveal` is set. The input record is never modified.
    """
    if reveal:
        return record
    return replace(record, nid=NID_MASK)


Column = Tuple[str, Callable[[BusinessRecord], Any]]

SUMMARY_COLUMNS: List[Column] = [
    ("ID", lambda r: r.id),
    ("Business Name", lambda r: r.business_name),
    ("TIN", lambda r: r.tin),
    ("Type", lambda r: r.business_type),
    ("Ownership", lambda r: r.ownership),
    ("District", lambda r: r.district),
    ("Province", lambda r: r.province),
    ("Revenue", lambda r: r.revenue),
    ("Employees", lambda r: r.employees or 0),
    ("Date Joined", lambda r: r.commencement_date),
]

DETAILED_COLUMNS: List[Column] = [
    ("ID", lambda r: r.id),
    ("Business Name", lambda r: r.business_name),
    ("Status", lambda r: r.status or "Active"),
    ("TIN", lambda r: r.tin),
    ("Owner Name", lambda r: r.owner_name),
    ("Phone", lambda r: r.phone),
    ("NID", lambda r: r.nid),
    ("Gender", lambda r: r.gender),
    ("Age", lambda r: r.owner_age),
    ("Nationality", lambda r: r.nationality or "Rwandan"),
    ("Education", lambda r: r.education_level),
    ("Disability", lambda r: r.disability_status),
    ("Business Type", lambda r: r.business_type),
    ("Participant Type", lambda r: r.participant_type),
    ("Ownership", lambda r: r.ownership),
    ("Province", lambda r: r.province),
    ("District", lambda r: r.district),
    ("Sector", lambda r: r.sector),
    ("Cell", lambda r: r.cell),
    ("Village", lambda r: r.village),
    ("Business Size", lambda r: r.business_size),
    ("Revenue", lambda r: r.revenue),
    ("Annual Income", lambda r: r.annual_income),
    ("Total Employees", lambda r: r.employees or 0),
    ("Female Employees", lambda r: r.female_employees or 0),
    ("Youth Employees", lambda r: r.youth_employees or 0),
    ("Permanent Employees", lambda r: "Yes" if r.permanent_employees else "No"),
    ("Value Chain", lambda r: r.value_chain),
    ("Crops", lambda r: ", ".join(item.name for item in r.production)),
    ("Description", lambda r: r.company_description),
    ("Support Received", lambda r: r.support_received),
    ("Date Joined", lambda r: r.commencement_date),
]

_COLUMNS_BY_VIEW = {
    ExportView.SUMMARY: SUMMARY_COLUMNS,
    ExportView.DETAILED: DETAILED_COLUMNS,
}


def _as_view(view: Union[ExportView, str]) -> ExportView:
    try:
        return ExportView(view)
    except ValueError:
        raise ValueError(f"Unknown export view {view!r}; expected 'summary' or 'detailed'") from None


def export_frame(
    records: Iterable[BusinessRecord],
    view: Union[ExportView, str] = ExportView.SUMMARY,
    reveal_nid: bool = False,
) -> pd.DataFrame:
    """One row per record, in the given order, with the view's column set."""
    columns = _COLUMNS_BY_VIEW[_as_view(view)]
    rows = []
    for r in records:
        shown = mask_record(r, reveal=reveal_nid)
        rows.append([extract(shown) for _, extract in columns])
    return pd.DataFrame(rows, columns=[header for header, _ in columns])


def export_filename(view: Union[ExportView, str], today: Optional[date] = None) -> str:
    day = (today or date.today()).isoformat()
    return f"afm_businesses_{_as_view(view).value}_{day}.xlsx"


def export_workbook(
    records: Iterable[BusinessRecord],
    target: Union[str, Path, IO[bytes], None] = None,
    view: Union[ExportView, str] = ExportView.SUMMARY,
    reveal_nid: bool = False,
) -> Union[str, Path, IO[bytes]]:
    """
    Write records to an .xlsx workbook (openpyxl engine).

    target defaults to EXPORT_DIR/<dated filename>; file-like targets
    (e.g. io.BytesIO for a download button) are written in place.
    """
    df = export_frame(records, view=view, reveal_nid=reveal_nid)
    if target is None:
        EXPORT_DIR.mkdir(parents=True, exist_ok=True)
        target = EXPORT_DIR / export_filename(view)

    with pd.ExcelWriter(target, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=EXPORT_SHEET, index=False)

    logger.info("Exported %d records (%s view, nid %s)", len(df), _as_view(view).value,
                "revealed" if reveal_nid else "masked")
    return target


def select_for_export(
    records: Sequence[BusinessRecord],
    filters: RawFilters = None,
    search: str = "",
    sort: RawSort = None,
) -> List[BusinessRecord]:
    """The whole filtered/searched/sorted set of one snapshot, never a single page."""
    params = QueryParameters(filters=filters, search=search, sort=sort, page=1, page_size=PAGE_SIZE_ALL)
    return run_query(records, params).items


def export_records(
    store: RecordStore,
    filters: RawFilters = None,
    search: str = "",
    sort: RawSort = None,
    view: Union[ExportView, str] = ExportView.SUMMARY,
    reveal_nid: bool = False,
) -> pd.DataFrame:
    """Export frame for the query over a fresh store snapshot."""
    selected = select_for_export(store.snapshot(), filters=filters, search=search, sort=sort)
    return export_frame(selected, view=view, reveal_nid=reveal_nid)
