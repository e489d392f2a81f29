"""
Structured search endpoint.
"""
import logging

from aiohttp import web

from ...config import SEARCH_STRICT_FILTERS
from ...features.search import FilterValidationError, parse_search_request
from ...shared import ErrorCode, Result, get_logger, log_structured, request_id_var, sanitize_error_message
from ..core import _json_response, _read_json, _require_services

logger = get_logger(__name__)

# Key under which upstream auth middleware stores the caller's team id.
TENANT_KEY = "tenant_id"
REQUEST_ID_HEADER = "X-Request-ID"


def register_search_routes(routes: web.RouteTableDef) -> None:
    """Register the search routes on `routes`."""

    @routes.post("/api/search")
    async def search_assets(request: web.Request) -> web.Response:
        """
        Run a structured asset search for the authenticated tenant.

        Body: {q, filters, sort, page, perPage, facets}
        """
        token = request_id_var.set(str(request.headers.get(REQUEST_ID_HEADER) or "")[:64])
        try:
            return await _search(request)
        finally:
            request_id_var.reset(token)


async def _search(request: web.Request) -> web.Response:
    tenant_id = request.get(TENANT_KEY)
    if tenant_id is None:
        return _json_response(Result.Err(ErrorCode.AUTH_REQUIRED, "Authentication required"))

    body = await _read_json(request)
    if not body.ok:
        return _json_response(body)

    try:
        search_request = parse_search_request(body.data, strict=SEARCH_STRICT_FILTERS)
    except FilterValidationError as exc:
        return _json_response(Result.Err(ErrorCode.INVALID_INPUT, f"Invalid filter: {exc}"))

    svc, error_result = await _require_services()
    if error_result:
        return _json_response(error_result)

    result = await svc["searcher"].search(search_request, tenant_id)
    if not result.ok:
        if result.code != ErrorCode.INVALID_INPUT.value:
            log_structured(logger, logging.WARNING, "search_failed", tenant=tenant_id, code=result.code, error=result.error)
        return _json_response(
            Result.Err(result.code, sanitize_error_message(result.error, "Search failed"), **result.meta)
        )
    return _json_response(Result.Ok(result.data.to_dict(), **(result.data.meta or {})))
