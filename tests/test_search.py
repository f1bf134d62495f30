"""
Free-text search and highlight agreement.
"""

from __future__ import annotations

from farmer_registry.core.models import NO_TIN
from farmer_registry.core.search import Span, highlight, matches


class TestSearchMatching:
    def test_matches_business_name_case_insensitively(self, make_record):
        assert matches(make_record(1, business_name="Kigali AGRO Hub"), "agro")

    def test_matches_owner_tin_phone_and_crop(self, make_record):
        record = make_record(1, owner_name="Aline", tin="123456", phone="0788123456", production=["Cassava"])
        for query in ("aline", "3456", "0788", "cassava"):
            assert matches(record, query)

    def test_missing_tin_placeholder_is_not_searchable(self, make_record):
        record = make_record(1, business_name="Imena Farm", owner_name="Diane", tin=NO_TIN, phone="0788000001")
        for query in ("one", "no", "None"):
            assert not matches(record, query)

    def test_non_searchable_fields_are_ignored(self, make_record):
        record = make_record(1, district="Nyagatare")
        assert not matches(record, "Nyagatare")

    def test_blank_query_matches_all(self, make_record):
        assert matches(make_record(1), "")
        assert matches(make_record(1), "   ")
        assert matches(make_record(1), None)

    def test_query_is_trimmed(self, make_record):
        assert matches(make_record(1, business_name="Agro"), "  agro  ")

    def test_regex_metacharacters_are_literal(self, make_record):
        assert matches(make_record(1, business_name="A+ Farms (Ltd)"), "a+ farms (")
        assert not matches(make_record(1, business_name="Aaa Farms"), "a+")


class TestHighlight:
    def test_alternating_spans(self):
        spans = highlight("Agro and agro", "AGRO")
        assert spans == [Span("Agro", True), Span(" and ", False), Span("agro", True)]

    def test_concatenation_reproduces_text(self):
        text = "Youth Agro-processing Coop"
        assert "".join(s.text for s in highlight(text, "o")) == text

    def test_no_match_is_single_unmatched_span(self):
        assert highlight("Coffee", "tea") == [Span("Coffee", False)]

    def test_empty_query_and_empty_text(self):
        assert highlight("Coffee", "") == [Span("Coffee", False)]
        assert highlight("", "x") == []

    def test_highlight_agrees_with_matching(self, make_record):
        record = make_record(1, business_name="Imbuto (Seeds) Ltd", owner_name="x", tin="", phone="")
        for query in ("seeds", "(seeds)", "ltd.", "Imbuto"):
            has_hit = any(s.matched for s in highlight(record.business_name, query))
            assert has_hit == matches(record, query)
