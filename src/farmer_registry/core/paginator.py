from __future__ import annotations

from typing import Any, List, Sequence, TypeVar

import math

from farmer_registry.core.errors import PaginationError

T = TypeVar("T")

# Reserved page size meaning "everything on one page" (directory "All", exports)
PAGE_SIZE_ALL = -1


def normalize_page_size(page_size: Any) -> int:
    """Accept an int, a numeric string, or 'all' / -1 for PAGE_SIZE_ALL."""
    if isinstance(page_size, str):
        text = page_size.strip().lower()
        if text == "all":
            return PAGE_SIZE_ALL
        try:
            page_size = int(text)
        except ValueError:
            raise PaginationError(f"Invalid page size: {page_size!r}") from None
    if isinstance(page_size, bool) or not isinstance(page_size, int):
        raise PaginationError(f"Invalid page size: {page_size!r}")
    if page_size == PAGE_SIZE_ALL:
        return PAGE_SIZE_ALL
    if page_size < 1:
        raise PaginationError(f"Page size must be >= 1 (or 'all'), got {page_size}")
    return page_size


def _check_page(page: int) -> None:
    if isinstance(page, bool) or not isinstance(page, int) or page < 1:
        raise PaginationError(f"Page must be a positive integer, got {page!r}")


def total_pages(total: int, page_size: Any) -> int:
    size = normalize_page_size(page_size)
    if size == PAGE_SIZE_ALL:
        return 1
    return max(1, math.ceil(total / size))


def paginate(records: Sequence[T], page: int, page_size: Any) -> List[T]:
    """
    Slice one page out of an ordered sequence.

    A page past the end yields an empty list rather than an error; callers can
    compare `page` with total_pages() to detect that. PAGE_SIZE_ALL is a single
    page, so only page 1 carries records.
    """
    _check_page(page)
    size = normalize_page_size(page_size)
    if size == PAGE_SIZE_ALL:
        return list(records) if page == 1 else []
    start = (page - 1) * size
    return list(records[start:start + size])
