"""
Sort resolver: logical sort keys -> ORDER BY terms.

The sortable table is separate from the filter registry; a field can be
filterable without being sortable.
"""
from __future__ import annotations

from typing import Iterable, List

from .filters import SortSpec

RELEVANCE_KEY = "relevance"
RELEVANCE_ALIAS = "relevance"
DEFAULT_ORDER_TERM = "a.created_at DESC"
TIEBREAK_TERM = "a.id DESC"

SORT_COLUMNS = {
    "createdAt": "a.created_at",
    "updatedAt": "a.updated_at",
    "capturedAt": "a.captured_at",
    "rating": "a.rating",
    "name": "a.title",
    "title": "a.title",
    "sizeBytes": "af.size_bytes",
}


def _direction(spec: SortSpec) -> str:
    return "ASC" if str(spec.direction).lower() == "asc" else "DESC"


def build_order(sort_specs: Iterable[SortSpec], has_free_text: bool) -> List[str]:
    """
    Resolve sort specs into ORDER BY terms.

    Unknown keys are skipped and `relevance` only counts when free text was
    supplied. Creation time (descending) is appended unless the caller
    already sorted on it, and `a.id DESC` always comes last so equal keys
    page deterministically.
    """
    terms: List[str] = []
    seen: set[str] = set()
    for spec in sort_specs or ():
        if spec.field == RELEVANCE_KEY:
            if not has_free_text:
                continue
            column = RELEVANCE_ALIAS
        else:
            column = SORT_COLUMNS.get(spec.field)
            if column is None:
                continue
        if column in seen:
            continue
        seen.add(column)
        terms.append(f"{column} {_direction(spec)}")
    if "a.created_at" not in seen:
        terms.append(DEFAULT_ORDER_TERM)
    terms.append(TIEBREAK_TERM)
    return terms


def build_order_sql(sort_specs: Iterable[SortSpec], has_free_text: bool) -> str:
    return "ORDER BY " + ", ".join(build_order(sort_specs, has_free_text))
