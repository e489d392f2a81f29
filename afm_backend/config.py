"""
Configuration for the asset search backend.

Every value can be overridden through environment variables; invalid values
fall back to the default and out-of-range values are clamped.
"""
import logging
import os
from pathlib import Path

from .utils import env_bool

logger = logging.getLogger(__name__)


def _env_raw(*names: str, default: str | None = None) -> str | None:
    for name in names:
        if not name:
            continue
        val = os.getenv(name)
        if val is not None and str(val).strip() != "":
            return str(val).strip()
    return default


def _env_int(default: int, *names: str, min_value: int | None = None, max_value: int | None = None) -> int:
    raw = _env_raw(*names)
    if raw is None:
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid integer for %s=%r, using default=%s", names[0] if names else "<unknown>", raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("Value too small for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, min_value)
        value = min_value
    if max_value is not None and value > max_value:
        logger.warning("Value too large for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, max_value)
        value = max_value
    return value


def _env_float(default: float, *names: str, min_value: float | None = None, max_value: float | None = None) -> float:
    raw = _env_raw(*names)
    if raw is None:
        return default
    try:
        value = float(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid float for %s=%r, using default=%s", names[0] if names else "<unknown>", raw, default)
        return default
    if min_value is not None and value < min_value:
        logger.warning("Value too small for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, min_value)
        value = min_value
    if max_value is not None and value > max_value:
        logger.warning("Value too large for %s=%s, clamped to %s", names[0] if names else "<unknown>", value, max_value)
        value = max_value
    return value


# Database
DATA_DIR = Path(_env_raw("AFM_DATA_DIR", default=str(Path.cwd() / "data")) or "data")
DB_PATH = _env_raw("AFM_DB_PATH", default=str(DATA_DIR / "assets.sqlite"))
DB_TIMEOUT = _env_float(30.0, "AFM_DB_TIMEOUT", min_value=1.0, max_value=300.0)
DB_MAX_CONNECTIONS = _env_int(8, "AFM_DB_MAX_CONNECTIONS", min_value=1, max_value=64)
# 0 disables the per-query timeout.
DB_QUERY_TIMEOUT = _env_float(30.0, "AFM_DB_QUERY_TIMEOUT", min_value=0.0, max_value=600.0)

# Search request bounds
SEARCH_DEFAULT_PER_PAGE = _env_int(24, "AFM_SEARCH_DEFAULT_PER_PAGE", min_value=1, max_value=1000)
SEARCH_MAX_PER_PAGE = _env_int(100, "AFM_SEARCH_MAX_PER_PAGE", min_value=1, max_value=1000)
SEARCH_MAX_PAGE = _env_int(10_000, "AFM_SEARCH_MAX_PAGE", min_value=1, max_value=1_000_000)
SEARCH_MAX_QUERY_LENGTH = _env_int(512, "AFM_SEARCH_MAX_QUERY_LENGTH", min_value=16, max_value=8192)
SEARCH_MAX_FILTER_DEPTH = _env_int(8, "AFM_SEARCH_MAX_FILTER_DEPTH", min_value=1, max_value=64)
SEARCH_MAX_FILTER_NODES = _env_int(200, "AFM_SEARCH_MAX_FILTER_NODES", min_value=1, max_value=10_000)
SEARCH_MAX_SORT_KEYS = _env_int(5, "AFM_SEARCH_MAX_SORT_KEYS", min_value=1, max_value=32)

# Facets
SEARCH_MAX_FACETS = _env_int(10, "AFM_SEARCH_MAX_FACETS", min_value=1, max_value=50)
SEARCH_FACET_DEFAULT_LIMIT = _env_int(20, "AFM_SEARCH_FACET_DEFAULT_LIMIT", min_value=1, max_value=1000)
SEARCH_FACET_MAX_LIMIT = _env_int(100, "AFM_SEARCH_FACET_MAX_LIMIT", min_value=1, max_value=1000)

# Matching
SEARCH_FUZZY_THRESHOLD = _env_float(0.3, "AFM_SEARCH_FUZZY_THRESHOLD", min_value=0.0, max_value=1.0)
SEARCH_STRICT_FILTERS = env_bool("AFM_SEARCH_STRICT_FILTERS", False)

# HTTP
MAX_JSON_BYTES = _env_int(1024 * 1024, "AFM_MAX_JSON_BYTES", min_value=1024, max_value=64 * 1024 * 1024)
