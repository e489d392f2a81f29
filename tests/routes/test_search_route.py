import json

import pytest
from aiohttp import web
from aiohttp.test_utils import make_mocked_request

from afm_backend.features.search import SearchResponse
from afm_backend.routes.core import request_json
from afm_backend.routes.core.response import _json_response
from afm_backend.routes.handlers import search as search_mod
from afm_backend.shared import Result


def _app():
    app = web.Application()
    routes = web.RouteTableDef()
    search_mod.register_search_routes(routes)
    app.add_routes(routes)
    return app


async def _call(app, tenant=None):
    req = make_mocked_request("POST", "/api/search", app=app)
    if tenant is not None:
        req["tenant_id"] = tenant
    match = await app.router.resolve(req)
    resp = await match.handler(req)
    return resp.status, json.loads(resp.text)


def _body(payload):
    async def _read_json(_request):
        return Result.Ok(payload)

    return _read_json


class _Searcher:
    def __init__(self, result=None):
        self.result = result
        self.calls = []

    async def search(self, request, tenant_scope):
        self.calls.append((request, tenant_scope))
        if self.result is not None:
            return self.result
        return Result.Ok(SearchResponse(items=[{"id": 1}], total=1, page=request.page, per_page=request.per_page))


def _services(searcher):
    async def _require_services():
        return {"searcher": searcher}, None

    return _require_services


@pytest.mark.asyncio
async def test_search_requires_tenant(monkeypatch):
    searcher = _Searcher()
    monkeypatch.setattr(search_mod, "_require_services", _services(searcher))
    status, payload = await _call(_app())
    assert status == 200
    assert payload["ok"] is False
    assert payload["code"] == "AUTH_REQUIRED"
    assert searcher.calls == []


@pytest.mark.asyncio
async def test_search_passes_body_and_tenant(monkeypatch):
    searcher = _Searcher()
    monkeypatch.setattr(search_mod, "_read_json", _body({"q": "sun", "perPage": 5, "teamId": 99}))
    monkeypatch.setattr(search_mod, "_require_services", _services(searcher))

    status, payload = await _call(_app(), tenant=4)
    assert status == 200
    assert payload["ok"] is True
    assert payload["data"] == {"items": [{"id": 1}], "total": 1, "page": 1, "perPage": 5}

    request, tenant = searcher.calls[0]
    assert tenant == 4
    assert request.free_text == "sun"


@pytest.mark.asyncio
async def test_invalid_json_is_reported(monkeypatch):
    async def _bad(_request):
        return Result.Err("INVALID_JSON", "Invalid JSON body")

    monkeypatch.setattr(search_mod, "_read_json", _bad)
    _status, payload = await _call(_app(), tenant=1)
    assert payload["ok"] is False
    assert payload["code"] == "INVALID_JSON"


@pytest.mark.asyncio
async def test_strict_mode_rejects_malformed_filters(monkeypatch):
    searcher = _Searcher()
    monkeypatch.setattr(search_mod, "SEARCH_STRICT_FILTERS", True)
    monkeypatch.setattr(search_mod, "_read_json", _body({"filters": [{"field": "type", "op": "like"}]}))
    monkeypatch.setattr(search_mod, "_require_services", _services(searcher))

    _status, payload = await _call(_app(), tenant=1)
    assert payload["code"] == "INVALID_INPUT"
    assert searcher.calls == []


@pytest.mark.asyncio
async def test_services_unavailable(monkeypatch):
    async def _down():
        return None, Result.Err("SERVICE_UNAVAILABLE", "Services are unavailable")

    monkeypatch.setattr(search_mod, "_read_json", _body({}))
    monkeypatch.setattr(search_mod, "_require_services", _down)
    _status, payload = await _call(_app(), tenant=1)
    assert payload["code"] == "SERVICE_UNAVAILABLE"


@pytest.mark.asyncio
async def test_store_errors_are_sanitized(monkeypatch):
    searcher = _Searcher(Result.Err("DB_ERROR", 'Operational error: near "SELEC": syntax error in /srv/db/assets.sqlite'))
    monkeypatch.setattr(search_mod, "_read_json", _body({}))
    monkeypatch.setattr(search_mod, "_require_services", _services(searcher))

    _status, payload = await _call(_app(), tenant=1)
    assert payload["ok"] is False
    assert payload["code"] == "DB_ERROR"
    assert "SELEC" not in payload["error"]
    assert "/srv/db" not in payload["error"]


@pytest.mark.asyncio
async def test_search_route_end_to_end(monkeypatch, services):
    db = services["db"]
    assert (await db.aexecute("INSERT INTO assets (team_id, title) VALUES (1, 'harbour at dusk')")).ok
    assert (await db.aexecute("INSERT INTO assets (team_id, title) VALUES (2, 'harbour at dawn')")).ok

    async def _require_services():
        return services, None

    monkeypatch.setattr(search_mod, "_read_json", _body({"q": "harbour", "facets": ["type"]}))
    monkeypatch.setattr(search_mod, "_require_services", _require_services)

    _status, payload = await _call(_app(), tenant=1)
    assert payload["ok"] is True, payload
    data = payload["data"]
    assert data["total"] == 1
    assert data["items"][0]["title"] == "harbour at dusk"
    assert data["facets"] == {"type": [{"value": "image", "count": 1}]}


def test_json_response_replaces_non_finite_floats():
    resp = _json_response(Result.Ok({"score": float("nan"), "items": ({"r": float("inf")},)}))
    payload = json.loads(resp.text)
    assert payload["data"] == {"score": None, "items": [{"r": None}]}


def test_parse_json_object_requires_object():
    assert request_json._parse_json_object(b"").data == {}
    assert request_json._parse_json_object(b'{"q": "x"}').data == {"q": "x"}
    assert request_json._parse_json_object(b"[1, 2]").code == "INVALID_JSON"
    assert request_json._parse_json_object(b"{oops").code == "INVALID_JSON"
    assert request_json._parse_json_object(b"\xff\xfe").code == "INVALID_JSON"
