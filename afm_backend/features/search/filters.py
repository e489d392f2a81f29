"""
Search request model: filter expression tree, sort/facet specs and the
boundary parser that turns a decoded JSON body into typed values.

The compiler only ever sees the typed tree produced here.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Sequence, Tuple, Union

from ...config import (
    SEARCH_DEFAULT_PER_PAGE,
    SEARCH_FACET_DEFAULT_LIMIT,
    SEARCH_FACET_MAX_LIMIT,
    SEARCH_MAX_FACETS,
    SEARCH_MAX_FILTER_DEPTH,
    SEARCH_MAX_FILTER_NODES,
    SEARCH_MAX_PAGE,
    SEARCH_MAX_PER_PAGE,
    SEARCH_MAX_QUERY_LENGTH,
    SEARCH_MAX_SORT_KEYS,
)
from ...shared import get_logger
from ...utils import clamp, coerce_int

logger = get_logger(__name__)


class Operator(str, Enum):
    EQ = "eq"
    IN = "in"
    RANGE = "range"
    EXISTS = "exists"
    PREFIX = "prefix"
    FUZZY = "fuzzy"
    CONTAINS_ANY = "containsAny"
    CONTAINS_ALL = "containsAll"


class Logic(str, Enum):
    AND = "AND"
    OR = "OR"


SortDirection = Literal["asc", "desc"]


class FilterValidationError(ValueError):
    """Raised in strict mode when a filter cannot be honored as written."""


@dataclass(frozen=True)
class FilterLeaf:
    field: str
    op: Operator
    value: Any = None


@dataclass(frozen=True)
class FilterGroup:
    logic: Logic
    children: Tuple["Filter", ...] = ()


Filter = Union[FilterLeaf, FilterGroup]


@dataclass(frozen=True)
class SortSpec:
    field: str
    direction: SortDirection = "desc"


@dataclass(frozen=True)
class FacetSpec:
    field: str
    limit: int = SEARCH_FACET_DEFAULT_LIMIT


@dataclass(frozen=True)
class SearchRequest:
    free_text: Optional[str] = None
    filters: Optional[Filter] = None
    sort: Tuple[SortSpec, ...] = ()
    page: int = 1
    per_page: int = SEARCH_DEFAULT_PER_PAGE
    facets: Tuple[FacetSpec, ...] = ()

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.per_page

    @property
    def has_free_text(self) -> bool:
        return bool(self.free_text and self.free_text.strip())


@dataclass(frozen=True)
class FacetBucket:
    value: Any
    count: int

    def to_dict(self) -> Dict[str, Any]:
        return {"value": self.value, "count": self.count}


@dataclass
class SearchResponse:
    items: List[Dict[str, Any]]
    total: int
    page: int
    per_page: int
    facets: Optional[Dict[str, List[FacetBucket]]] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """JSON wire shape (camelCase keys, `facets` omitted when not requested)."""
        payload: Dict[str, Any] = {
            "items": self.items,
            "total": self.total,
            "page": self.page,
            "perPage": self.per_page,
        }
        if self.facets is not None:
            payload["facets"] = {name: [b.to_dict() for b in buckets] for name, buckets in self.facets.items()}
        return payload


_OPERATORS = {op.value: op for op in Operator}
_SCALAR_TYPES = (str, int, float, bool)


def normalize_request(request: SearchRequest) -> SearchRequest:
    """Clamp pagination and facet bounds on an already-typed request."""
    page = clamp(coerce_int(request.page, 1), 1, SEARCH_MAX_PAGE)
    per_page = clamp(coerce_int(request.per_page, SEARCH_DEFAULT_PER_PAGE), 1, SEARCH_MAX_PER_PAGE)
    free_text = _normalize_free_text(request.free_text)
    facets = _dedupe_facets(
        FacetSpec(f.field, clamp(coerce_int(f.limit, SEARCH_FACET_DEFAULT_LIMIT), 1, SEARCH_FACET_MAX_LIMIT))
        for f in request.facets
    )
    return SearchRequest(
        free_text=free_text,
        filters=request.filters,
        sort=tuple(request.sort[:SEARCH_MAX_SORT_KEYS]),
        page=page,
        per_page=per_page,
        facets=facets,
    )


def _normalize_free_text(value: Any) -> Optional[str]:
    if value is None or not isinstance(value, str):
        return None
    text = value.strip()
    if not text:
        return None
    return text[:SEARCH_MAX_QUERY_LENGTH]


def _dedupe_facets(facets) -> Tuple[FacetSpec, ...]:
    out: List[FacetSpec] = []
    seen: set[str] = set()
    for facet in facets:
        if facet.field in seen:
            continue
        seen.add(facet.field)
        out.append(facet)
        if len(out) >= SEARCH_MAX_FACETS:
            break
    return tuple(out)


class _NodeBudget:
    def __init__(self, limit: int):
        self.remaining = limit

    def take(self) -> bool:
        if self.remaining <= 0:
            return False
        self.remaining -= 1
        return True


def _reject(strict: bool, message: str) -> None:
    if strict:
        raise FilterValidationError(message)
    logger.debug("Dropping filter node: %s", message)


def _parse_value(raw: Any) -> Any:
    if raw is None or isinstance(raw, _SCALAR_TYPES):
        return raw
    if isinstance(raw, (list, tuple)):
        if all(v is None or isinstance(v, _SCALAR_TYPES) for v in raw):
            return list(raw)
    # Objects and nested arrays have no meaning for any operator.
    return None


def _parse_node(raw: Any, depth: int, budget: _NodeBudget, strict: bool) -> Optional[Filter]:
    if depth > SEARCH_MAX_FILTER_DEPTH:
        _reject(strict, f"filter nesting deeper than {SEARCH_MAX_FILTER_DEPTH}")
        return None
    if not budget.take():
        _reject(strict, f"more than {SEARCH_MAX_FILTER_NODES} filter nodes")
        return None
    if isinstance(raw, (list, tuple)):
        return _parse_group(Logic.AND, raw, depth, budget, strict)
    if not isinstance(raw, dict):
        _reject(strict, f"filter node must be an object, got {type(raw).__name__}")
        return None

    if "logic" in raw or "filters" in raw or "children" in raw:
        logic_raw = str(raw.get("logic") or "AND").strip().upper()
        if logic_raw not in (Logic.AND.value, Logic.OR.value):
            _reject(strict, f"unknown group logic {logic_raw!r}")
            return None
        children = raw.get("filters", raw.get("children"))
        if not isinstance(children, (list, tuple)):
            _reject(strict, "group children must be an array")
            return None
        return _parse_group(Logic(logic_raw), children, depth, budget, strict)

    field_name = raw.get("field")
    if not isinstance(field_name, str) or not field_name.strip():
        _reject(strict, "filter leaf is missing a field")
        return None
    op_raw = raw.get("op", raw.get("operator"))
    op = _OPERATORS.get(op_raw) if isinstance(op_raw, str) else None
    if op is None:
        _reject(strict, f"unknown operator {op_raw!r} for field {field_name!r}")
        return None
    return FilterLeaf(field=field_name.strip(), op=op, value=_parse_value(raw.get("value")))


def _parse_group(logic: Logic, children: Sequence[Any], depth: int, budget: _NodeBudget, strict: bool) -> FilterGroup:
    parsed: List[Filter] = []
    for child in children:
        node = _parse_node(child, depth + 1, budget, strict)
        if node is not None:
            parsed.append(node)
    return FilterGroup(logic=logic, children=tuple(parsed))


def parse_filter(raw: Any, *, strict: bool = False) -> Optional[Filter]:
    """
    Validate a decoded JSON filter (object, or array meaning AND) into a typed tree.

    Malformed nodes are dropped unless `strict` is set, in which case
    `FilterValidationError` is raised.
    """
    if raw is None:
        return None
    return _parse_node(raw, 1, _NodeBudget(SEARCH_MAX_FILTER_NODES), strict)


def _parse_sort(raw: Any) -> Tuple[SortSpec, ...]:
    if not isinstance(raw, (list, tuple)):
        return ()
    specs: List[SortSpec] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        name = item.get("field")
        if not isinstance(name, str) or not name.strip():
            continue
        direction = str(item.get("dir", item.get("direction")) or "").strip().lower()
        specs.append(SortSpec(field=name.strip(), direction="asc" if direction == "asc" else "desc"))
    return tuple(specs)


def _parse_facets(raw: Any) -> Tuple[FacetSpec, ...]:
    if not isinstance(raw, (list, tuple)):
        return ()
    specs: List[FacetSpec] = []
    for item in raw:
        if isinstance(item, str):
            item = {"field": item}
        if not isinstance(item, dict):
            continue
        name = item.get("field")
        if not isinstance(name, str) or not name.strip():
            continue
        specs.append(FacetSpec(field=name.strip(), limit=coerce_int(item.get("limit"), SEARCH_FACET_DEFAULT_LIMIT)))
    return tuple(specs)


def parse_search_request(payload: Any, *, strict: bool = False) -> SearchRequest:
    """
    Build a normalized `SearchRequest` from a decoded JSON body.

    Accepts the wire names `q`/`freeText`, `filters`, `sort`, `page`,
    `perPage`, `facets`. Bounds are clamped, never rejected.
    """
    body = payload if isinstance(payload, dict) else {}
    raw_text = body.get("q", body.get("freeText"))
    request = SearchRequest(
        free_text=raw_text if isinstance(raw_text, str) else None,
        filters=parse_filter(body.get("filters"), strict=strict),
        sort=_parse_sort(body.get("sort")),
        page=coerce_int(body.get("page"), 1),
        per_page=coerce_int(body.get("perPage", body.get("per_page")), SEARCH_DEFAULT_PER_PAGE),
        facets=_parse_facets(body.get("facets")),
    )
    return normalize_request(request)
