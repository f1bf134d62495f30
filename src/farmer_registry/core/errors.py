from __future__ import annotations


class QueryEngineError(Exception):
    """Custom exception for structurally invalid query pipeline calls."""


class SortSpecError(QueryEngineError):
    """Empty or oversized sort spec, repeated field, unknown field or direction."""


class PaginationError(QueryEngineError):
    """Page number below 1 or an unusable page size."""


class RecordNotFoundError(QueryEngineError):
    """A lookup by id matched no record."""

    def __init__(self, record_id: int) -> None:
        super().__init__(f"No business record with id={record_id}")
        self.record_id = record_id
