"""
Structured asset search: filter model, field registry, compiler, ordering,
facets and the searcher that runs them.
"""
from .compiler import CompiledQuery, QueryCompiler, compile_filters
from .facets import FACET_REGISTRY, FacetField, resolve_facet
from .filters import (
    FacetBucket,
    FacetSpec,
    Filter,
    FilterGroup,
    FilterLeaf,
    FilterValidationError,
    Logic,
    Operator,
    SearchRequest,
    SearchResponse,
    SortSpec,
    normalize_request,
    parse_filter,
    parse_search_request,
)
from .registry import FIELD_REGISTRY, FieldRegistry, FieldRegistryEntry, resolve
from .searcher import AssetSearcher, SearchPlan
from .sorting import build_order, build_order_sql

__all__ = [
    "AssetSearcher",
    "SearchPlan",
    "CompiledQuery",
    "QueryCompiler",
    "compile_filters",
    "FACET_REGISTRY",
    "FacetField",
    "resolve_facet",
    "FacetBucket",
    "FacetSpec",
    "Filter",
    "FilterGroup",
    "FilterLeaf",
    "FilterValidationError",
    "Logic",
    "Operator",
    "SearchRequest",
    "SearchResponse",
    "SortSpec",
    "normalize_request",
    "parse_filter",
    "parse_search_request",
    "FIELD_REGISTRY",
    "FieldRegistry",
    "FieldRegistryEntry",
    "resolve",
    "build_order",
    "build_order_sql",
]
