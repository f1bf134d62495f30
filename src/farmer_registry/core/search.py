from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional, Pattern

import re

from farmer_registry.core.models import NO_TIN, BusinessRecord


@dataclass(frozen=True)
class Span:
    text: str
    matched: bool


def compile_query(query: Optional[str]) -> Optional[Pattern[str]]:
    """
    Compile a search query into the one pattern used for both matching and
    highlighting. Returns None for an empty / whitespace-only query.
    """
    q = (query or "").strip()
    if not q:
        return None
    return re.compile(re.escape(q), re.IGNORECASE)


def searchable_values(record: BusinessRecord) -> Iterator[str]:
    yield record.business_name
    yield record.owner_name
    if record.tin.casefold() != NO_TIN.casefold():
        yield record.tin
    yield record.phone
    for item in record.production:
        yield item.name


def matches(record: BusinessRecord, query: Optional[str]) -> bool:
    """Case-insensitive substring match over the searchable fields (OR)."""
    pattern = compile_query(query)
    if pattern is None:
        return True
    return matches_pattern(record, pattern)


def matches_pattern(record: BusinessRecord, pattern: Pattern[str]) -> bool:
    return any(value and pattern.search(value) for value in searchable_values(record))


def highlight(text: Optional[str], query: Optional[str]) -> List[Span]:
    """
    Split a display value into alternating unmatched / matched spans.

    Joining the span texts gives back the input. A value yields at least one
    matched span exactly when matches() would accept it for that field.
    """
    text = text or ""
    pattern = compile_query(query)
    if pattern is None or not text:
        return [Span(text, False)] if text else []

    spans: List[Span] = []
    pos = 0
    for m in pattern.finditer(text):
        if m.start() > pos:
            spans.append(Span(text[pos:m.start()], False))
        spans.append(Span(m.group(0), True))
        pos = m.end()
    if pos < len(text):
        spans.append(Span(text[pos:], False))
    return spans
