"""
Directory pipeline: filter -> search -> sort -> paginate over a store snapshot.
"""

from __future__ import annotations

import pytest

from farmer_registry.core.errors import PaginationError, RecordNotFoundError, SortSpecError
from farmer_registry.core.filters import FilterSpec, matches
from farmer_registry.core.paginator import PAGE_SIZE_ALL
from farmer_registry.core.query_engine import (
    QueryParameters,
    get_record,
    list_records,
    run_query,
    select,
)
from farmer_registry.core.search import matches as search_matches


def _ids(result):
    return [r.id for r in result.items]


class TestRunQuery:
    def test_defaults_sort_newest_commencement_first(self, sample_records):
        result = run_query(sample_records, QueryParameters())
        assert _ids(result) == [3, 1, 4, 2]
        assert result.total_matched == 4
        assert result.total_pages == 1

    def test_filter_and_search_compose(self, sample_records):
        result = run_query(sample_records, QueryParameters(filters={"ownership": "Youth-owned"}, search="agro"))
        assert _ids(result) == [1]

    def test_every_result_satisfies_filters_and_search(self, sample_records):
        raw = {"province": "Kigali"}
        result = run_query(sample_records, QueryParameters(filters=raw, search="a", page_size=PAGE_SIZE_ALL))
        spec = FilterSpec.from_mapping(raw)
        assert result.items
        for r in result.items:
            assert matches(r, spec)
            assert search_matches(r, "a")

    def test_date_desc_then_name_asc_examples(self, make_record):
        beta = make_record(1, business_name="Beta", commencement_date="2024-03-01")
        alpha = make_record(2, business_name="Alpha", commencement_date="2024-01-01")
        by_date = run_query([beta, alpha], QueryParameters(sort=[{"field": "date", "dir": "desc"}]))
        by_name = run_query([beta, alpha], QueryParameters(sort=[{"field": "businessName", "dir": "asc"}]))
        assert [r.business_name for r in by_date.items] == ["Beta", "Alpha"]
        assert [r.business_name for r in by_name.items] == ["Alpha", "Beta"]

    def test_reversing_directions_reverses_untied_order(self, make_record):
        records = [make_record(i, employees=e) for i, e in enumerate([4, 9, 1, 7], start=1)]
        asc = run_query(records, QueryParameters(sort=[("employees", "asc")]))
        desc = run_query(records, QueryParameters(sort=[("employees", "desc")]))
        assert _ids(asc) == list(reversed(_ids(desc)))

    def test_pages_concatenate_to_full_result(self, make_record):
        records = [make_record(i, employees=i % 4) for i in range(1, 18)]
        params = dict(sort=[("employees", "desc"), ("name", "asc")], page_size=5)
        full = run_query(records, QueryParameters(sort=params["sort"], page_size=PAGE_SIZE_ALL))
        first = run_query(records, QueryParameters(**params))
        joined = []
        for page in range(1, first.total_pages + 1):
            joined += _ids(run_query(records, QueryParameters(page=page, **params)))
        assert first.total_pages == 4
        assert joined == _ids(full)
        assert len(set(joined)) == 17

    def test_page_beyond_last_is_detectable(self, sample_records):
        result = run_query(sample_records, QueryParameters(page=3, page_size=2))
        assert result.items == []
        assert result.page_out_of_range

    def test_show_all_past_page_one_is_empty_and_out_of_range(self, sample_records):
        result = run_query(sample_records, QueryParameters(page=2, page_size=PAGE_SIZE_ALL))
        assert result.items == []
        assert result.total_pages == 1
        assert result.page_out_of_range
        assert result.shows_all

    def test_invalid_page_raises(self, sample_records):
        with pytest.raises(PaginationError):
            run_query(sample_records, QueryParameters(page=0))

    def test_invalid_sort_raises(self, sample_records):
        with pytest.raises(SortSpecError):
            run_query(sample_records, QueryParameters(sort=[]))

    def test_malformed_filter_is_ignored_not_raised(self, sample_records):
        result = run_query(sample_records, QueryParameters(filters={"age": {"min": "old"}}))
        assert result.total_matched == 4

    def test_records_are_not_mutated(self, sample_records):
        before = [r.to_dict() for r in sample_records]
        run_query(sample_records, QueryParameters(filters={"province": "Kigali"}, search="a", sort=[("age", "desc")]))
        assert [r.to_dict() for r in sample_records] == before

    def test_select_keeps_input_order(self, sample_records):
        assert [r.id for r in select(sample_records, {"gender": "Female"})] == [2, 4]


class TestStoreEntryPoints:
    def test_list_records_reads_a_fresh_snapshot(self, store):
        assert list_records(store).total_matched == 4
        store.add({"businessName": "Epsilon", "ownerName": "New Owner"})
        assert list_records(store, search="epsilon").total_matched == 1

    def test_get_record(self, store):
        assert get_record(store, 2).business_name == "Beta Foods"

    def test_get_record_missing_is_distinct_error(self, store):
        with pytest.raises(RecordNotFoundError) as exc:
            get_record(store, 999)
        assert exc.value.record_id == 999
