import asyncio
import re

import pytest

from afm_backend.features.search import searcher as m
from afm_backend.features.search.compiler import QueryCompiler
from afm_backend.features.search.filters import (
    FacetSpec,
    FilterGroup,
    FilterLeaf,
    Logic,
    Operator,
    SearchRequest,
    SortSpec,
)
from afm_backend.shared import Result


class _DB:
    """Answers by query kind and records every call."""

    def __init__(self, items=None, total=0, facets=None, fail=None, hang=None):
        self.items = list(items or [])
        self.total = total
        self.facets = dict(facets or {})
        self.fail = fail
        self.hang = hang
        self.calls = []
        self.cancelled = []

    @staticmethod
    def _kind(sql):
        if "COUNT(*) AS total" in sql:
            return "total"
        if "facet_value" in sql:
            return "facet"
        return "items"

    async def aquery(self, sql, params=()):
        kind = self._kind(sql)
        self.calls.append((kind, sql, tuple(params)))
        if kind == self.hang:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled.append(kind)
                raise
        if kind == self.fail:
            return Result.Err("DB_ERROR", f"{kind} exploded")
        if kind == "total":
            return Result.Ok([{"total": self.total}])
        if kind == "facet":
            name = "tags" if "ft.name" in sql else "other"
            return Result.Ok(self.facets.get(name, []))
        return Result.Ok(self.items)


def _row(asset_id, **extra):
    row = {
        "id": asset_id,
        "type": "image",
        "title": f"asset {asset_id}",
        "description": None,
        "folder_id": None,
        "created_at": "2024-01-01T00:00:00.000Z",
        "captured_at": None,
        "file_id": None,
        "mime_type": None,
        "size_bytes": None,
        "relevance": 0.0,
    }
    row.update(extra)
    return row


def _assert_bindings_match(sql, params):
    indexes = [int(n) for n in re.findall(r"\?(\d+)", sql)]
    assert indexes, sql
    assert max(indexes) == len(params)
    assert set(indexes) == set(range(1, len(params) + 1))


@pytest.mark.asyncio
@pytest.mark.parametrize("tenant", [None, 0, -3, "abc", True])
async def test_invalid_tenant_is_rejected_before_any_query(tenant):
    db = _DB()
    res = await m.AssetSearcher(db).search(SearchRequest(), tenant)
    assert not res.ok
    assert res.code == "INVALID_INPUT"
    assert db.calls == []


@pytest.mark.asyncio
async def test_listing_and_count_share_predicates_and_tenant():
    db = _DB(items=[_row(2), _row(1)], total=2)
    req = SearchRequest(filters=FilterLeaf("type", Operator.EQ, "image"), page=1, per_page=10)
    res = await m.AssetSearcher(db).search(req, 7)

    assert res.ok, res.error
    assert res.data.total == 2
    assert [item["id"] for item in res.data.items] == [2, 1]
    assert "relevance" not in res.data.items[0]
    assert res.data.facets is None

    kinds = sorted(kind for kind, _, _ in db.calls)
    assert kinds == ["items", "total"]
    for _kind, sql, params in db.calls:
        assert "a.team_id = ?2" in sql
        assert "a.deleted_at IS NULL" in sql
        assert params[:2] == ("image", 7)
        _assert_bindings_match(sql, params)

    listing = next(c for c in db.calls if c[0] == "items")
    assert listing[2][-2:] == (10, 0)
    assert "ORDER BY a.created_at DESC, a.id DESC" in listing[1]


@pytest.mark.asyncio
async def test_base_join_precedes_filter_joins():
    db = _DB()
    req = SearchRequest(filters=FilterLeaf("channel", Operator.EQ, "social"))
    plan = m.AssetSearcher(db).build_plan(req, 1)
    assert plan.compiled.joins[0] == m.PRIMARY_FILE_JOIN
    assert plan.compiled.joins[1].startswith("LEFT JOIN asset_business")


@pytest.mark.asyncio
async def test_free_text_reuses_one_parameter():
    db = _DB(items=[_row(1, relevance=1.5)], total=1)
    req = SearchRequest(free_text="vacation photo")
    res = await m.AssetSearcher(db).search(req, 1)
    assert res.ok
    assert res.data.items[0]["relevance"] == 1.5

    _kind, sql, params = next(c for c in db.calls if c[0] == "items")
    assert params.count("vacation photo") == 1
    ph = f"?{params.index('vacation photo') + 1}"
    assert f"afm_fts_query({ph})" in sql
    assert sql.count(f"afm_like_prefix({ph})") == 2
    assert "afm_strip_ext(" in sql
    _assert_bindings_match(sql, params)


@pytest.mark.asyncio
async def test_punctuation_only_text_drops_fts_branch():
    db = _DB()
    plan = m.AssetSearcher(db).build_plan(SearchRequest(free_text="!!! ---"), 1)
    assert "assets_fts" not in plan.listing.sql
    assert "afm_like_prefix" in plan.listing.sql
    assert "0.0 AS relevance" in plan.listing.sql


@pytest.mark.asyncio
async def test_relevance_sort_applies_only_with_free_text():
    searcher = m.AssetSearcher(_DB())
    sort = (SortSpec("relevance", "desc"),)
    with_text = searcher.build_plan(SearchRequest(free_text="sun", sort=sort), 1)
    without = searcher.build_plan(SearchRequest(sort=sort), 1)
    assert "ORDER BY relevance DESC" in with_text.listing.sql
    assert "relevance DESC" not in without.listing.sql


@pytest.mark.asyncio
async def test_facets_extend_a_copy_of_the_joins():
    db = _DB(total=8, facets={"tags": [{"facet_value": "a", "facet_count": 5}, {"facet_value": "b", "facet_count": 3}]})
    req = SearchRequest(
        filters=FilterGroup(Logic.AND, (FilterLeaf("tags", Operator.CONTAINS_ANY, ["a", "b"]),)),
        facets=(FacetSpec("tags", 2), FacetSpec("channel", 5), FacetSpec("nope", 5)),
    )
    searcher = m.AssetSearcher(db)
    plan = searcher.build_plan(req, 3)
    assert set(plan.facets) == {"tags", "channel"}
    assert "JOIN asset_tags fat" not in plan.listing.sql
    assert "JOIN asset_tags fat" not in plan.count.sql
    tags_sql = plan.facets["tags"].sql
    assert "JOIN asset_tags fat" in tags_sql
    assert "HAVING ft.name IS NOT NULL" in tags_sql
    assert "ORDER BY facet_count DESC, facet_value ASC" in tags_sql
    assert plan.facets["tags"].params[-1] == 2
    _assert_bindings_match(tags_sql, plan.facets["tags"].params)

    res = await searcher.search(req, 3)
    assert res.ok
    assert [b.to_dict() for b in res.data.facets["tags"]] == [{"value": "a", "count": 5}, {"value": "b", "count": 3}]
    assert res.data.facets["channel"] == []
    assert "nope" not in res.data.facets
    assert len(db.calls) == 4


@pytest.mark.asyncio
async def test_first_failure_cancels_in_flight_queries():
    db = _DB(fail="total", hang="items")
    res = await asyncio.wait_for(m.AssetSearcher(db).search(SearchRequest(), 1), timeout=5)
    assert not res.ok
    assert res.code == "DB_ERROR"
    assert "total exploded" in res.error
    assert db.cancelled == ["items"]


@pytest.mark.asyncio
async def test_exception_from_store_becomes_error_result():
    class _Boom(_DB):
        async def aquery(self, sql, params=()):
            raise RuntimeError("socket gone")

    res = await m.AssetSearcher(_Boom()).search(SearchRequest(), 1)
    assert not res.ok
    assert res.code == "DB_ERROR"


@pytest.mark.asyncio
async def test_strict_compiler_turns_bad_filter_into_invalid_input():
    db = _DB()
    searcher = m.AssetSearcher(db, QueryCompiler(strict=True))
    res = await searcher.search(SearchRequest(filters=FilterLeaf("nope", Operator.EQ, 1)), 1)
    assert not res.ok
    assert res.code == "INVALID_INPUT"
    assert db.calls == []


@pytest.mark.asyncio
async def test_ignored_filters_are_reported_in_meta():
    res = await m.AssetSearcher(_DB()).search(SearchRequest(filters=FilterLeaf("title", Operator.RANGE, [1, 2])), 1)
    assert res.ok
    assert res.data.meta["ignored_filters"] == [{"field": "title", "op": "range", "reason": "operator not allowed"}]


@pytest.mark.asyncio
async def test_request_bounds_are_clamped_by_searcher():
    db = _DB()
    await m.AssetSearcher(db).search(SearchRequest(page=0, per_page=10_000), 1)
    _kind, sql, params = next(c for c in db.calls if c[0] == "items")
    assert re.search(r"LIMIT \?\d+ OFFSET \?\d+$", sql)
    assert params[-2:] == (m.normalize_request(SearchRequest(per_page=10_000)).per_page, 0)
