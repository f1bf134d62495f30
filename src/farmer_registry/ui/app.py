from __future__ import annotations

import io
import time
import traceback
from typing import Any, Dict, List, Sequence

import pandas as pd
import streamlit as st

from farmer_registry.config import (
    APP_NAME,
    APP_VERSION,
    DEFAULT_PAGE_SIZE,
    GENDER_VALUES,
    MAX_SORT_KEYS,
    OWNERSHIP_VALUES,
    PAGE_SIZE_OPTIONS,
    PROVINCE_DISTRICTS,
    STATUS_VALUES,
)
from farmer_registry.core.aggregator import buckets_to_frame, compute_dashboard
from farmer_registry.core.data_loader import DataLoaderError, RecordStore, is_writable, load_store
from farmer_registry.core.export import ExportView, export_filename, export_frame, export_workbook, select_for_export
from farmer_registry.core.filters import Facet, district_options
from farmer_registry.core.importer import ImportFileError, import_batch, read_import_workbook, write_import_template
from farmer_registry.core.models import NO_TIN, clean_text
from farmer_registry.core.paginator import PAGE_SIZE_ALL
from farmer_registry.core.query_engine import QueryEngineError, QueryParameters, QueryResult, run_query
from farmer_registry.core.search import Span, highlight
from farmer_registry.core.sorting import Direction, SortKey

ANY = "(any)"

SORT_LABELS = {
    SortKey.DATE: "Commencement date",
    SortKey.NAME: "Business name",
    SortKey.OWNER_NAME: "Owner name",
    SortKey.AGE: "Owner age",
    SortKey.EMPLOYEES: "Employees",
    SortKey.FEMALE_EMPLOYEES: "Female employees",
    SortKey.YOUTH_EMPLOYEES: "Youth employees",
    SortKey.PERMANENT_EMPLOYEES: "Permanent employees",
    SortKey.DISTRICT: "District",
    SortKey.REVENUE: "Revenue bracket",
}

# (title, aggregate name, chart kind)
DASHBOARD_CHARTS = [
    ("Registrations this year", "monthly_registrations", "line"),
    ("Businesses by province", "province", "bar"),
    ("Ownership", "ownership", "bar"),
    ("Gender", "gender", "bar"),
    ("Owner age", "age", "bar"),
    ("Education", "education", "bar"),
    ("Business type", "business_type", "bar"),
    ("Business size", "business_size", "bar"),
    ("Revenue", "revenue", "bar"),
    ("Support received", "support", "bar"),
    ("Top districts", "district", "bar"),
    ("Top value chains", "value_chain", "bar"),
    ("Employees by province", "employees_by_province", "bar"),
    ("Commencement month", "commencement_growth", "line"),
]


# ---------------------------------------------------------------------------
# Pure helpers (no Streamlit calls)
# ---------------------------------------------------------------------------

def _escape_markdown(text: str) -> str:
    for ch in ("\\", "*", "_", "`", "[", "]", "|"):
        text = text.replace(ch, "\\" + ch)
    return text


def spans_to_markdown(spans: Sequence[Span]) -> str:
    """Render highlight spans with matched segments in bold."""
    parts = []
    for span in spans:
        text = _escape_markdown(span.text)
        parts.append(f"**{text}**" if span.matched else text)
    return "".join(parts)


def highlighted(text: str, query: str) -> str:
    return spans_to_markdown(highlight(text, query)) or "-"


def tin_cell(tin: str, query: str) -> str:
    """TIN column; the no-TIN placeholder is shown as-is, never highlighted."""
    if tin.casefold() == NO_TIN.casefold():
        return NO_TIN
    return highlighted(tin, query)


def directory_caption(result: QueryResult, registry_size: int) -> str:
    head = f"{result.total_matched} of {registry_size} businesses."
    if result.shows_all:
        return f"{head} Showing all."
    return f"{head} Page {result.page} of {result.total_pages}."


def build_filter_input(selected: Dict[str, Any]) -> Dict[str, Any]:
    """Turn widget values into the raw mapping FilterSpec.from_mapping() takes."""
    raw: Dict[str, Any] = {}
    for key, value in selected.items():
        if isinstance(value, dict):
            if value.get("min") is not None or value.get("max") is not None:
                raw[key] = value
        elif value and value != ANY:
            raw[key] = value
    return raw


def observed_values(records: Sequence[Any], attr: str) -> List[str]:
    return sorted({clean_text(getattr(r, attr)) for r in records if clean_text(getattr(r, attr))})


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

@st.cache_resource(show_spinner=False)
def _get_store() -> RecordStore:
    return load_store()


def _render_store_status(store: RecordStore) -> None:
    with st.sidebar.expander("Record store", expanded=False):
        st.write(type(store).__name__)
        if st.button("Refresh snapshot", key="refresh_store_btn"):
            _get_store.clear()
            st.rerun()


# ---------------------------------------------------------------------------
# Directory
# ---------------------------------------------------------------------------

def _reset_page() -> None:
    st.session_state["directory_page"] = 1


def _render_filters(records: Sequence[Any]) -> Dict[str, Any]:
    st.sidebar.subheader("Filters")
    sel: Dict[str, Any] = {}

    def pick(label: str, facet: Facet, options: Sequence[str]) -> None:
        sel[facet.value] = st.sidebar.selectbox(
            label, [ANY] + list(options), key=f"f_{facet.value}", on_change=_reset_page
        )

    pick("Status", Facet.STATUS, STATUS_VALUES)
    pick("Ownership", Facet.OWNERSHIP, OWNERSHIP_VALUES)
    pick("Gender", Facet.GENDER, GENDER_VALUES)

    provinces = sorted(set(observed_values(records, "province")) | {"Kigali", "Northern", "Southern", "Eastern", "Western"})
    pick("Province", Facet.PROVINCE, provinces)
    province = sel[Facet.PROVINCE.value]
    known = [d for ds in PROVINCE_DISTRICTS.values() for d in ds]
    pool = observed_values(records, "district") + known
    pick("District", Facet.DISTRICT, district_options(None if province == ANY else province, pool))

    pick("Business type", Facet.BUSINESS_TYPE, observed_values(records, "business_type"))
    pick("Business size", Facet.BUSINESS_SIZE, observed_values(records, "business_size"))
    pick("Education level", Facet.EDUCATION_LEVEL, observed_values(records, "education_level"))
    pick("Disability status", Facet.DISABILITY_STATUS, observed_values(records, "disability_status"))
    pick("Value chain", Facet.VALUE_CHAIN, observed_values(records, "value_chain"))

    with st.sidebar.expander("Ranges"):
        a1, a2 = st.columns(2)
        age_min = a1.number_input("Age from", min_value=0, value=None, step=1, on_change=_reset_page)
        age_max = a2.number_input("Age to", min_value=0, value=None, step=1, on_change=_reset_page)
        sel[Facet.AGE.value] = {"min": age_min, "max": age_max}
        i1, i2 = st.columns(2)
        inc_min = i1.number_input("Income from", min_value=0, value=None, step=100_000, on_change=_reset_page)
        inc_max = i2.number_input("Income to", min_value=0, value=None, step=100_000, on_change=_reset_page)
        sel[Facet.ANNUAL_INCOME.value] = {"min": inc_min, "max": inc_max}

    return build_filter_input(sel)


def _render_sort_controls() -> List[Dict[str, str]]:
    keys = st.multiselect(
        "Sort by (in priority order)",
        options=list(SORT_LABELS),
        default=[SortKey.DATE],
        format_func=lambda k: SORT_LABELS[k],
        max_selections=MAX_SORT_KEYS,
        on_change=_reset_page,
    )
    entries = []
    cols = st.columns(max(len(keys), 1))
    for col, key in zip(cols, keys):
        default_desc = key is SortKey.DATE
        desc = col.toggle(f"{SORT_LABELS[key]} desc", value=default_desc, key=f"sort_dir_{key.value}", on_change=_reset_page)
        entries.append({"field": key.value, "dir": (Direction.DESC if desc else Direction.ASC).value})
    return entries


def _results_table(result: QueryResult, query: str) -> None:
    lines = ["| ID | Business | Owner | Phone | TIN | District | Employees |", "|---|---|---|---|---|---|---|"]
    for r in result.items:
        lines.append(
            f"| {r.id} | {highlighted(r.business_name, query)} | {highlighted(r.owner_name, query)} "
            f"| {highlighted(r.phone, query)} | {tin_cell(r.tin, query)} | {_escape_markdown(r.district) or '-'} "
            f"| {r.employees} |"
        )
    st.markdown("\n".join(lines))


def _render_directory(store: RecordStore) -> None:
    records = store.snapshot()
    raw_filters = _render_filters(records)

    query = st.text_input("Search name, owner, TIN, phone or crop", key="directory_search", on_change=_reset_page)
    sort_entries = _render_sort_controls()

    c1, c2 = st.columns([1, 3])
    size_label = c1.selectbox("Page size", [str(s) for s in PAGE_SIZE_OPTIONS] + ["All"],
                              index=PAGE_SIZE_OPTIONS.index(DEFAULT_PAGE_SIZE), on_change=_reset_page)
    page_size: Any = PAGE_SIZE_ALL if size_label == "All" else int(size_label)
    page = int(st.session_state.get("directory_page", 1))

    sort = sort_entries or None
    try:
        result = run_query(records, QueryParameters(filters=raw_filters, search=query, sort=sort,
                                                     page=page, page_size=page_size))
    except QueryEngineError as qerr:
        st.error(f"Query failed: {qerr}")
        return

    if result.page_out_of_range:
        _reset_page()
        st.rerun()

    c2.write(directory_caption(result, len(records)))
    _results_table(result, query)

    p1, p2, _ = st.columns([1, 1, 6])
    if p1.button("Previous", disabled=result.page <= 1):
        st.session_state["directory_page"] = result.page - 1
        st.rerun()
    if p2.button("Next", disabled=result.page >= result.total_pages):
        st.session_state["directory_page"] = result.page + 1
        st.rerun()

    with st.expander("Export"):
        view = st.radio("Columns", [v.value for v in ExportView], horizontal=True)
        reveal = st.checkbox("Include full national IDs", value=False)
        if not st.button("Prepare export", key="prepare_export_btn"):
            return
        # same snapshot as the page above
        everything = select_for_export(records, filters=raw_filters, search=query, sort=sort)
        buf = io.BytesIO()
        export_workbook(everything, buf, view=view, reveal_nid=reveal)
        st.download_button(
            "Download Excel",
            data=buf.getvalue(),
            file_name=export_filename(view),
            mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )
        st.caption(f"{len(everything)} rows; first 20 shown.")
        st.dataframe(export_frame(everything[:20], view=view, reveal_nid=reveal), use_container_width=True)


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------

def _render_dashboard(store: RecordStore) -> None:
    t0 = time.perf_counter()
    dash = compute_dashboard(store.snapshot())
    stats = dash.stats

    m = st.columns(4)
    m[0].metric("Businesses", stats.total_records)
    m[1].metric("Youth-owned", f"{stats.youth_owned_percentage}%")
    m[2].metric("Employees", stats.total_employees)
    m[3].metric("Districts covered", stats.districts_covered)
    n = st.columns(3)
    n[0].metric("Female employees", stats.female_employees)
    n[1].metric("Youth employees", stats.youth_employees)
    n[2].metric("Top value chain", stats.top_value_chain)

    left, right = st.columns(2)
    for i, (title, name, kind) in enumerate(DASHBOARD_CHARTS):
        target = left if i % 2 == 0 else right
        frame = buckets_to_frame(dash.series[name]).set_index("name")
        target.caption(title if name != "monthly_registrations" else f"{title} ({dash.year})")
        if frame.empty:
            target.info("No data")
        elif kind == "line":
            target.line_chart(frame)
        else:
            target.bar_chart(frame)

    st.subheader("Recent registrations")
    recent = pd.DataFrame(
        [{"ID": r.id, "Business": r.business_name, "Owner": r.owner_name, "District": r.district,
          "Registered": r.created_at} for r in dash.recent]
    )
    st.dataframe(recent, use_container_width=True)
    st.caption(f"Computed in {time.perf_counter() - t0:0.2f}s")


# ---------------------------------------------------------------------------
# Bulk import
# ---------------------------------------------------------------------------

def _render_import(store: RecordStore) -> None:
    buf = io.BytesIO()
    write_import_template(buf)
    st.download_button(
        "Download import template",
        data=buf.getvalue(),
        file_name="business_import_template.xlsx",
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )

    if not is_writable(store):
        st.info("The configured record store is read-only; bulk import is disabled.")
        return

    upload = st.file_uploader("Upload filled template", type=["xlsx", "xls"])
    if upload is None or not st.button("Import rows", key="import_rows_btn"):
        return

    status = st.status("Reading workbook...", expanded=True)
    try:
        rows = read_import_workbook(upload)
        status.update(label="Validating and importing rows...", state="running")
        report = import_batch(store, rows)
    except ImportFileError as ferr:
        status.update(label="Import failed.", state="error")
        st.error(str(ferr))
        return
    except Exception as e:
        status.update(label="Unexpected error.", state="error")
        st.error("Unexpected error while importing.")
        st.code(repr(e))
        st.text_area("Traceback", value=traceback.format_exc(), height=280)
        return

    status.update(label="Done.", state="complete")
    st.success(
        f"Imported {report.imported_count} of {report.total_rows} rows; "
        f"{report.duplicate_count} duplicates, {report.error_count} with errors."
    )
    if report.errors:
        st.write("Rows with errors:")
        st.dataframe(pd.DataFrame([{"Row": e.row, "Errors": "; ".join(e.errors)} for e in report.errors]),
                     use_container_width=True)
    if report.duplicates:
        st.write("Skipped duplicates:")
        st.dataframe(pd.DataFrame([{"Row": d.row, "Reason": d.reason} for d in report.duplicates]),
                     use_container_width=True)


def run_app() -> None:
    st.set_page_config(page_title=APP_NAME, page_icon="🌱", layout="wide")
    st.title(APP_NAME)
    st.caption(f"Version {APP_VERSION}")

    try:
        store = _get_store()
    except DataLoaderError as derr:
        st.error(f"Could not load records: {derr}")
        return

    _render_store_status(store)
    view = st.sidebar.radio("View", ["Directory", "Dashboard", "Bulk import"], key="view")

    try:
        if view == "Directory":
            _render_directory(store)
        elif view == "Dashboard":
            _render_dashboard(store)
        else:
            _render_import(store)
    except DataLoaderError as derr:
        st.error(f"Record store error: {derr}")
