"""
Dependency injection - builds services.
Simple, debug-friendly DI without framework magic.
"""
from pathlib import Path

from .adapters.db.schema import init_schema
from .adapters.db.sqlite import Sqlite
from .config import DB_MAX_CONNECTIONS, DB_PATH, DB_QUERY_TIMEOUT, DB_TIMEOUT
from .features.search import AssetSearcher, QueryCompiler
from .shared import ErrorCode, Result, get_logger, log_success

logger = get_logger(__name__)


def _resolve_db_path(db_path: str | None) -> str:
    return db_path if db_path is not None else DB_PATH


def _init_db_or_error(db_path: str) -> Result[Sqlite]:
    logger.info("Initializing database: %s", db_path)
    try:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return Result.Ok(
            Sqlite(
                db_path,
                max_connections=DB_MAX_CONNECTIONS,
                timeout=DB_TIMEOUT,
                query_timeout=DB_QUERY_TIMEOUT,
            )
        )
    except Exception as exc:
        logger.error("Failed to initialize database: %s", exc)
        return Result.Err(ErrorCode.DB_ERROR, f"Failed to initialize database: {exc}")


async def _init_schema_or_error(db: Sqlite) -> Result[bool]:
    schema_result = await init_schema(db)
    if not schema_result.ok:
        logger.error("Schema initialization failed: %s", schema_result.error)
        return Result.Err(
            schema_result.code or ErrorCode.DB_ERROR,
            f"Failed to initialize database: {schema_result.error}",
        )
    return Result.Ok(True)


async def build_services(db_path: str | None = None) -> Result[dict]:
    """
    Build all services (DI container).

    Args:
        db_path: Path to SQLite database (default: from config.DB_PATH)

    Returns:
        Result[dict] with `db` and `searcher`
    """
    logger.info("Building services...")
    db_res = _init_db_or_error(_resolve_db_path(db_path))
    if not db_res.ok or db_res.data is None:
        return Result.Err(db_res.code or ErrorCode.DB_ERROR, db_res.error or "Failed to initialize database")
    db = db_res.data

    schema_res = await _init_schema_or_error(db)
    if not schema_res.ok:
        await db.aclose()
        return Result.Err(schema_res.code, schema_res.error or "Failed to initialize database")

    services = {
        "db": db,
        "searcher": AssetSearcher(db, QueryCompiler()),
    }
    log_success(logger, "All services initialized")
    return Result.Ok(services)
