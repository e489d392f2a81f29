"""Database adapters."""
from .schema import init_schema, rebuild_fts
from .sqlite import Sqlite

__all__ = ["Sqlite", "init_schema", "rebuild_fts"]
