"""Route handlers."""
from .search import register_search_routes

__all__ = ["register_search_routes"]
