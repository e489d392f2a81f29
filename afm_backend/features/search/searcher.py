"""
Asset searcher - composes the compiled filter, tenant scope, free text,
ordering, pagination and facets into SQL and runs the queries concurrently.
"""
from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from ...adapters.db.functions import build_fts_query
from ...shared import ErrorCode, Result, get_logger
from ...utils import coerce_int
from .compiler import CompiledQuery, QueryCompiler
from .facets import resolve_facet
from .filters import FacetBucket, FilterValidationError, SearchRequest, SearchResponse, normalize_request
from .registry import PRIMARY_FILE_JOIN
from .sorting import RELEVANCE_ALIAS, build_order_sql

logger = get_logger(__name__)

# Joins every listing needs, independent of the filters.
BASE_JOINS: Tuple[str, ...] = (PRIMARY_FILE_JOIN,)

LIST_COLUMNS = (
    "a.id, a.type, a.title, a.description, a.folder_id, a.created_at, a.captured_at, "
    "af.id AS file_id, af.mime_type AS mime_type, af.size_bytes AS size_bytes"
)


@dataclass
class QuerySpec:
    sql: str
    params: Tuple[Any, ...]


@dataclass
class SearchPlan:
    """Everything needed to execute one search; all queries share `compiled`."""

    request: SearchRequest
    compiled: CompiledQuery
    listing: QuerySpec
    count: QuerySpec
    facets: Dict[str, QuerySpec] = field(default_factory=dict)


def _free_text_clause(compiled: CompiledQuery, text: str) -> str:
    """
    Add the free-text match to `compiled` and return the relevance expression.

    One parameter serves every branch: the FTS join, the title prefix match
    and the prefix match on the title without its extension.
    """
    ph = compiled.bind(text)
    branches: List[str] = []
    relevance = "0.0"
    if build_fts_query(text):
        compiled.add_join(
            "LEFT JOIN (SELECT rowid AS fts_id, -bm25(assets_fts) AS fts_rank FROM assets_fts "
            f"WHERE assets_fts MATCH afm_fts_query({ph})) fts ON fts.fts_id = a.id"
        )
        branches.append("fts.fts_id IS NOT NULL")
        relevance = "COALESCE(fts.fts_rank, 0.0)"
    branches.append(f"afm_fold(COALESCE(a.title, '')) LIKE afm_like_prefix({ph}) ESCAPE '\\'")
    branches.append(f"afm_fold(afm_strip_ext(COALESCE(a.title, ''))) LIKE afm_like_prefix({ph}) ESCAPE '\\'")
    compiled.add_predicate("(" + " OR ".join(branches) + ")")
    return relevance


def _normalize_tenant(tenant_scope: Any) -> Optional[int]:
    tenant = coerce_int(tenant_scope, 0)
    return tenant if tenant > 0 else None


def _hydrate_item(row: Dict[str, Any], include_relevance: bool) -> Dict[str, Any]:
    item: Dict[str, Any] = {
        "id": int(row["id"]),
        "fileId": int(row["file_id"]) if row.get("file_id") is not None else None,
        "folderId": int(row["folder_id"]) if row.get("folder_id") is not None else None,
        "type": row.get("type"),
        "title": row.get("title"),
        "description": row.get("description"),
        "mimeType": row.get("mime_type"),
        "sizeBytes": int(row["size_bytes"]) if row.get("size_bytes") is not None else None,
        "createdAt": row.get("created_at"),
        "capturedAt": row.get("captured_at"),
    }
    if include_relevance:
        item["relevance"] = float(row.get(RELEVANCE_ALIAS) or 0.0)
    return item


def _hydrate_buckets(rows: List[Dict[str, Any]]) -> List[FacetBucket]:
    return [FacetBucket(value=row["facet_value"], count=int(row["facet_count"] or 0)) for row in rows]


class AssetSearcher:
    """
    Runs faceted, paginated asset searches for one tenant at a time.

    The listing, count and facet queries of a request run concurrently on
    separate pooled connections. They share one compiled WHERE clause and one
    parameter snapshot. No transaction is taken: the path is read-only and a
    row changing between the queries is an accepted inconsistency.
    """

    def __init__(self, db, compiler: Optional[QueryCompiler] = None):
        self.db = db
        self.compiler = compiler or QueryCompiler()

    def build_plan(self, request: SearchRequest, tenant_id: int) -> SearchPlan:
        """Compile `request` into SQL. Raises FilterValidationError in strict mode."""
        compiled = CompiledQuery()
        for join in BASE_JOINS:
            compiled.add_join(join)
        self.compiler.compile(request.filters, into=compiled)

        compiled.add_predicate(f"a.team_id = {compiled.bind(tenant_id)}")
        compiled.add_predicate("a.deleted_at IS NULL")

        relevance = "0.0"
        if request.has_free_text:
            relevance = _free_text_clause(compiled, request.free_text or "")

        from_sql = f"FROM assets a\n{compiled.join_sql()}\n{compiled.where_sql()}"

        listing_q = compiled.copy()
        limit_ph = listing_q.bind(request.per_page)
        offset_ph = listing_q.bind(request.offset)
        listing = QuerySpec(
            sql=(
                f"SELECT {LIST_COLUMNS}, {relevance} AS {RELEVANCE_ALIAS}\n{from_sql}\n"
                f"{build_order_sql(request.sort, request.has_free_text)}\n"
                f"LIMIT {limit_ph} OFFSET {offset_ph}"
            ),
            params=listing_q.bound_parameters(),
        )
        count = QuerySpec(
            sql=f"SELECT COUNT(*) AS total\n{from_sql}",
            params=compiled.bound_parameters(),
        )

        facets: Dict[str, QuerySpec] = {}
        for spec in request.facets:
            facet = resolve_facet(spec.field)
            if facet is None:
                logger.debug("Skipping unknown facet: %s", spec.field)
                continue
            facet_q = compiled.copy()
            for join in facet.joins:
                facet_q.add_join(join)
            limit_ph = facet_q.bind(spec.limit)
            expr = facet.value_expression
            facets[facet.name] = QuerySpec(
                sql=(
                    f"SELECT {expr} AS facet_value, COUNT(*) AS facet_count\n"
                    f"FROM assets a\n{facet_q.join_sql()}\n{facet_q.where_sql()}\n"
                    f"GROUP BY {expr}\nHAVING {expr} IS NOT NULL\n"
                    f"ORDER BY facet_count DESC, facet_value ASC\nLIMIT {limit_ph}"
                ),
                params=facet_q.bound_parameters(),
            )

        return SearchPlan(request=request, compiled=compiled, listing=listing, count=count, facets=facets)

    async def search(self, request: SearchRequest, tenant_scope: Any) -> Result[SearchResponse]:
        """
        Search assets visible to `tenant_scope`.

        Args:
            request: Typed search request (bounds are re-clamped here)
            tenant_scope: Team id supplied by the caller, never by the payload

        Returns:
            Result with a SearchResponse; any failing query fails the request.
        """
        tenant_id = _normalize_tenant(tenant_scope)
        if tenant_id is None:
            return Result.Err(ErrorCode.INVALID_INPUT, "Missing or invalid tenant scope")

        request = normalize_request(request)
        try:
            plan = self.build_plan(request, tenant_id)
        except FilterValidationError as exc:
            return Result.Err(ErrorCode.INVALID_INPUT, f"Invalid filter: {exc}")

        started = time.perf_counter()
        queries: Dict[str, QuerySpec] = {"items": plan.listing, "total": plan.count}
        for name, spec in plan.facets.items():
            queries[f"facet:{name}"] = spec

        rows_res = await self._run_concurrently(queries)
        if not rows_res.ok:
            return Result.Err(rows_res.code or ErrorCode.SEARCH_FAILED, rows_res.error or "Search query failed")
        rows = rows_res.data or {}

        include_relevance = request.has_free_text
        items = [_hydrate_item(r, include_relevance) for r in rows.get("items") or []]
        count_rows = rows.get("total") or []
        total = int(count_rows[0]["total"] or 0) if count_rows else 0

        facets: Optional[Dict[str, List[FacetBucket]]] = None
        if request.facets:
            facets = {name: _hydrate_buckets(rows.get(f"facet:{name}") or []) for name in plan.facets}

        logger.debug(
            "Search tenant=%s items=%d total=%d facets=%d ignored=%d in %.1fms",
            tenant_id,
            len(items),
            total,
            len(plan.facets),
            len(plan.compiled.ignored),
            (time.perf_counter() - started) * 1000.0,
        )
        meta: Dict[str, Any] = {}
        if plan.compiled.ignored:
            meta["ignored_filters"] = [{"field": f, "op": op, "reason": why} for f, op, why in plan.compiled.ignored]
        return Result.Ok(
            SearchResponse(
                items=items,
                total=total,
                page=request.page,
                per_page=request.per_page,
                facets=facets,
                meta=meta,
            )
        )

    async def _run_concurrently(self, queries: Dict[str, QuerySpec]) -> Result[Dict[str, List[Dict[str, Any]]]]:
        """
        Run all queries at once; the first failure cancels the rest.

        Cancellation of the caller propagates to every in-flight query.
        """
        tasks = {
            asyncio.ensure_future(self.db.aquery(spec.sql, spec.params)): name
            for name, spec in queries.items()
        }
        out: Dict[str, List[Dict[str, Any]]] = {}
        pending = set(tasks)
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    name = tasks[task]
                    try:
                        res = task.result()
                    except Exception as exc:
                        logger.error("Search query %s raised: %s", name, exc)
                        return Result.Err(ErrorCode.DB_ERROR, f"Search query failed: {exc}")
                    if not res.ok:
                        logger.warning("Search query %s failed: %s", name, res.error)
                        return Result.Err(res.code or ErrorCode.DB_ERROR, res.error or "Search query failed")
                    out[name] = res.data or []
            return Result.Ok(out)
        finally:
            if pending:
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
