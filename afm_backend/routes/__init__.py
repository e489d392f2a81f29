"""
HTTP routes for the asset search service.
Importing this package is side-effect free; route registration is explicit.
"""
from aiohttp import web

from .core import _dispose_services
from .handlers import register_search_routes


def register_routes(app: web.Application) -> web.RouteTableDef:
    """Register every route on `app` and close the services on app cleanup."""
    routes = web.RouteTableDef()
    register_search_routes(routes)
    app.add_routes(routes)
    app.on_cleanup.append(_on_cleanup)
    return routes


async def _on_cleanup(_app: web.Application) -> None:
    await _dispose_services()


def create_app(middlewares=()) -> web.Application:
    """
    Build an aiohttp application serving the search API.

    Authentication is expected to come from `middlewares`, which must set
    `request["tenant_id"]`.
    """
    app = web.Application(middlewares=list(middlewares))
    register_routes(app)
    return app


__all__ = ["create_app", "register_routes", "register_search_routes"]
