"""
Pagination slices, page counts and the show-all sentinel.
"""

from __future__ import annotations

import pytest

from farmer_registry.core.errors import PaginationError
from farmer_registry.core.paginator import PAGE_SIZE_ALL, normalize_page_size, paginate, total_pages

ITEMS = list(range(1, 24))  # 23 items


class TestPaginate:
    def test_first_and_last_page(self):
        assert paginate(ITEMS, 1, 10) == list(range(1, 11))
        assert paginate(ITEMS, 3, 10) == [21, 22, 23]

    def test_page_beyond_last_is_empty(self):
        assert paginate(ITEMS, 4, 10) == []

    def test_show_all_sentinel(self):
        assert paginate(ITEMS, 1, PAGE_SIZE_ALL) == ITEMS
        assert paginate(ITEMS, 1, "all") == ITEMS

    def test_show_all_has_nothing_past_page_one(self):
        assert paginate(ITEMS, 2, PAGE_SIZE_ALL) == []
        assert paginate(ITEMS, 3, "all") == []

    def test_pages_concatenate_to_the_whole(self):
        size = 4
        pages = total_pages(len(ITEMS), size)
        joined = [x for p in range(1, pages + 1) for x in paginate(ITEMS, p, size)]
        assert joined == ITEMS

    @pytest.mark.parametrize("page", [0, -1])
    def test_non_positive_page_is_rejected(self, page):
        with pytest.raises(PaginationError):
            paginate(ITEMS, page, 10)

    @pytest.mark.parametrize("size", [0, -5, "ten", 2.5])
    def test_invalid_page_size_is_rejected(self, size):
        with pytest.raises(PaginationError):
            paginate(ITEMS, 1, size)


class TestTotalPages:
    def test_rounds_up(self):
        assert total_pages(23, 10) == 3
        assert total_pages(20, 10) == 2

    def test_minimum_one(self):
        assert total_pages(0, 10) == 1

    def test_show_all_is_one_page(self):
        assert total_pages(500, PAGE_SIZE_ALL) == 1

    def test_numeric_string_page_size(self):
        assert normalize_page_size(" 25 ") == 25
