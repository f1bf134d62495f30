"""
Facet filtering: filter spec parsing, categorical and range predicates.
"""

from __future__ import annotations

from farmer_registry.core.filters import (
    Facet,
    FilterSpec,
    NumericRange,
    district_belongs,
    district_options,
    extract_number,
    matches,
)


def _select(records, raw):
    spec = FilterSpec.from_mapping(raw)
    return [r.id for r in records if matches(r, spec)]


class TestFilterSpecParsing:
    def test_unknown_facets_are_dropped(self):
        spec = FilterSpec.from_mapping({"colour": "green", "province": "Kigali"})
        assert list(spec.constraints) == [Facet.PROVINCE]

    def test_empty_values_mean_no_constraint(self):
        assert len(FilterSpec.from_mapping({"gender": "", "age": {"min": None, "max": ""}})) == 0

    def test_out_of_enum_value_is_dropped(self):
        spec = FilterSpec.from_mapping({"ownership": "Elder-owned"})
        assert Facet.OWNERSHIP not in spec

    def test_unparsable_range_bound_drops_the_facet(self):
        spec = FilterSpec.from_mapping({"age": {"min": "twenty", "max": 40}})
        assert Facet.AGE not in spec

    def test_range_bounds_are_parsed(self):
        spec = FilterSpec.from_mapping({"annualIncome": {"min": "1000", "max": None}})
        assert spec.get(Facet.ANNUAL_INCOME) == NumericRange(min=1000.0, max=None)

    def test_facet_names_resolve_by_enum_name(self):
        spec = FilterSpec.from_mapping({"business_type": "Cooperative"})
        assert spec.get(Facet.BUSINESS_TYPE) == "Cooperative"

    def test_constraints_are_read_only(self):
        spec = FilterSpec.from_mapping({"province": "Kigali"})
        try:
            spec.constraints[Facet.GENDER] = "Male"  # type: ignore[index]
        except TypeError:
            pass
        assert Facet.GENDER not in spec


class TestCategoricalFacets:
    def test_exact_case_sensitive_equality(self, sample_records):
        assert _select(sample_records, {"province": "Kigali"}) == [1, 4]
        assert _select(sample_records, {"province": "kigali"}) == []

    def test_facets_combine_with_and(self, sample_records):
        assert _select(sample_records, {"province": "Kigali", "gender": "Female"}) == [4]

    def test_empty_record_field_never_matches(self, make_record):
        record = make_record(1, gender="")
        assert not matches(record, FilterSpec.from_mapping({"gender": "Female"}))

    def test_empty_spec_matches_everything(self, sample_records):
        assert _select(sample_records, {}) == [1, 2, 3, 4]

    def test_inconsistent_province_and_district_match_nothing(self, sample_records):
        assert _select(sample_records, {"province": "Kigali", "district": "Huye"}) == []

    def test_consistent_province_and_district(self, sample_records):
        assert _select(sample_records, {"province": "Southern", "district": "Huye"}) == [2]


class TestRangeFacets:
    def test_age_bounds_are_inclusive(self, sample_records):
        assert _select(sample_records, {"age": {"min": 24, "max": 41}}) == [1, 2, 3]

    def test_open_upper_bound(self, sample_records):
        assert _select(sample_records, {"age": {"min": 41}}) == [2, 4]

    def test_income_extracted_from_free_text(self, sample_records):
        # "1,200,000 RWF" -> 1200000, "3,000,000" -> 3000000, "" -> excluded
        assert _select(sample_records, {"annualIncome": {"min": 1_000_000}}) == [1, 4]

    def test_unparsable_income_excludes_record_for_that_facet_only(self, make_record):
        record = make_record(1, annual_income="unknown")
        assert not matches(record, FilterSpec.from_mapping({"annualIncome": {"max": 10}}))
        assert matches(record, FilterSpec.from_mapping({"province": "Kigali"}))

    def test_extract_number(self):
        assert extract_number("1,200,000 RWF") == 1200000.0
        assert extract_number("n/a") is None
        assert extract_number(42) == 42.0


class TestDistricts:
    def test_district_belongs(self):
        assert district_belongs("Kigali", "Gasabo")
        assert not district_belongs("Kigali", "Huye")
        assert district_belongs("West", "Rubavu")

    def test_unknown_province_accepts_any_district(self):
        assert district_belongs("Atlantis", "Huye")

    def test_district_options_restricted_by_province(self):
        pool = ["Huye", "Gasabo", "Kicukiro", "", "Gasabo"]
        assert district_options("Kigali", pool) == ["Gasabo", "Kicukiro"]
        assert district_options(None, pool) == ["Gasabo", "Huye", "Kicukiro"]
