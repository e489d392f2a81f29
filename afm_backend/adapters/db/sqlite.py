"""
SQLite connection pool (aiosqlite-backed).

Critical guarantee:
- The adapter never raises to callers; it returns `Result(...)`.
  Cancellation is the only exception that crosses this boundary, so a caller
  that abandons a request interrupts its in-flight statements.
"""

from __future__ import annotations

import asyncio
import sqlite3
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import aiosqlite

from ...config import DB_MAX_CONNECTIONS, DB_QUERY_TIMEOUT, DB_TIMEOUT
from ...shared import ErrorCode, Result, get_logger
from .functions import SQL_FUNCTIONS

logger = get_logger(__name__)

SQLITE_BUSY_TIMEOUT_MS = max(1000, int(float(DB_TIMEOUT) * 1000))
# Negative cache_size is in KiB. -64000 ~= 64 MiB cache.
SQLITE_CACHE_SIZE_KIB = -64000


def _is_locked_error(exc: Exception) -> bool:
    msg = str(exc).lower()
    return "database is locked" in msg or "database is busy" in msg


class Sqlite:
    """
    Bounded pool of aiosqlite connections.

    Each concurrent query checks out its own connection; the semaphore caps
    how many are open at once. Connections are created lazily.
    """

    def __init__(
        self,
        db_path: str,
        max_connections: Optional[int] = None,
        timeout: float = DB_TIMEOUT,
        query_timeout: Optional[float] = None,
    ):
        self.db_path = Path(db_path)
        self._max_conn_limit = max(1, int(max_connections if max_connections is not None else DB_MAX_CONNECTIONS))
        self._timeout = float(timeout)
        self._query_timeout = float(query_timeout if query_timeout is not None else DB_QUERY_TIMEOUT)
        self._idle: List[aiosqlite.Connection] = []
        self._active_conns: set[aiosqlite.Connection] = set()
        self._sem: Optional[asyncio.Semaphore] = None
        self._closed = False
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def get_runtime_status(self) -> Dict[str, Any]:
        """Return lightweight runtime counters for diagnostics."""
        return {
            "active_connections": len(self._active_conns),
            "pooled_connections": len(self._idle),
            "max_connections": int(self._max_conn_limit),
            "query_timeout_s": float(self._query_timeout),
            "busy_timeout_ms": int(SQLITE_BUSY_TIMEOUT_MS),
        }

    async def _apply_connection_pragmas(self, conn: aiosqlite.Connection) -> None:
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
        await conn.execute(f"PRAGMA cache_size={SQLITE_CACHE_SIZE_KIB}")
        await conn.execute("PRAGMA temp_store=MEMORY")
        await conn.execute(f"PRAGMA busy_timeout = {SQLITE_BUSY_TIMEOUT_MS}")
        await conn.execute("PRAGMA foreign_keys=ON")

    async def _register_functions(self, conn: aiosqlite.Connection) -> None:
        for name, (arity, fn) in SQL_FUNCTIONS.items():
            await conn.create_function(name, arity, fn, deterministic=True)

    async def _create_connection(self) -> aiosqlite.Connection:
        # Autocommit mode; the search path is read-only and takes no explicit transaction.
        conn = await aiosqlite.connect(str(self.db_path), timeout=self._timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        await self._apply_connection_pragmas(conn)
        await self._register_functions(conn)
        return conn

    async def _acquire_connection_async(self) -> aiosqlite.Connection:
        if self._closed:
            raise RuntimeError("Database is closed - connection rejected")
        if self._sem is None:
            self._sem = asyncio.Semaphore(self._max_conn_limit)
        sem = self._sem
        await sem.acquire()
        try:
            conn = self._idle.pop() if self._idle else await self._create_connection()
            self._active_conns.add(conn)
            return conn
        except BaseException:
            sem.release()
            raise

    async def _release_connection_async(self, conn: aiosqlite.Connection, *, discard: bool = False) -> None:
        try:
            self._active_conns.discard(conn)
            if discard or self._closed or len(self._idle) >= self._max_conn_limit:
                try:
                    await conn.close()
                except Exception as exc:
                    logger.debug("Ignoring error while closing connection: %s", exc)
                return
            self._idle.append(conn)
        finally:
            if self._sem is not None:
                self._sem.release()

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """
        Check out one pooled connection for the duration of the block.

        If the block is cancelled, the connection's running statement is
        interrupted before the connection goes back to the pool.
        """
        conn = await self._acquire_connection_async()
        try:
            yield conn
        except asyncio.CancelledError:
            try:
                await conn.interrupt()
            except Exception as exc:
                logger.debug("Interrupt after cancellation failed: %s", exc)
            raise
        finally:
            await self._release_connection_async(conn)

    @staticmethod
    def _rows_to_dicts(rows: Any) -> List[Dict[str, Any]]:
        if not rows:
            return []
        return [dict(r) for r in rows]

    async def _with_query_timeout(self, coro, conn: Optional[aiosqlite.Connection] = None):
        timeout = float(self._query_timeout or 0)
        if timeout <= 0:
            return await coro
        try:
            return await asyncio.wait_for(coro, timeout=timeout)
        except asyncio.TimeoutError:
            if conn is not None:
                try:
                    await conn.interrupt()
                except Exception as exc:
                    logger.debug("Interrupt after timeout failed: %s", exc)
            return Result.Err(ErrorCode.TIMEOUT, "Database operation timed out")

    async def _execute_on_conn(
        self,
        conn: aiosqlite.Connection,
        query: str,
        params: Optional[Sequence[Any]],
        fetch: bool,
    ) -> Result[Any]:
        try:
            cursor = await conn.execute(query, tuple(params or ()))
            try:
                if fetch:
                    rows = await cursor.fetchall()
                    return Result.Ok(self._rows_to_dicts(rows))
                last_id = getattr(cursor, "lastrowid", None)
                if last_id:
                    return Result.Ok(last_id)
                rowcount = getattr(cursor, "rowcount", None)
                return Result.Ok(rowcount if rowcount is not None else 0)
            finally:
                await cursor.close()
        except sqlite3.IntegrityError as exc:
            logger.warning("Integrity error: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, f"Integrity error: {exc}")
        except sqlite3.OperationalError as exc:
            if "interrupted" in str(exc).lower():
                return Result.Err(ErrorCode.TIMEOUT, "Database operation interrupted")
            if _is_locked_error(exc):
                logger.warning("Database locked: %s", exc)
            else:
                logger.error("Operational error: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, f"Operational error: {exc}")
        except OverflowError as exc:
            logger.warning("Parameter out of range: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, f"Parameter out of range: {exc}")
        except sqlite3.Error as exc:
            logger.error("Database error: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, str(exc))

    async def aexecute(self, query: str, params: Optional[Sequence[Any]] = None, fetch: bool = False) -> Result[Any]:
        """Execute one statement on a pooled connection."""
        try:
            async with self.connection() as conn:
                return await self._with_query_timeout(self._execute_on_conn(conn, query, params, fetch), conn)
        except RuntimeError as exc:
            return Result.Err(ErrorCode.SERVICE_UNAVAILABLE, str(exc))
        except (OSError, sqlite3.Error) as exc:
            logger.error("Failed to open database connection: %s", exc)
            return Result.Err(ErrorCode.DB_ERROR, f"Connection failed: {exc}")

    async def aquery(self, sql: str, params: Optional[Sequence[Any]] = None) -> Result[List[Dict[str, Any]]]:
        """Execute a SELECT query and return rows as dicts."""
        return await self.aexecute(sql, params, fetch=True)

    async def aexecutescript(self, script: str) -> Result[bool]:
        """Run a multi-statement script (schema bootstrap)."""
        try:
            async with self.connection() as conn:
                try:
                    await conn.executescript(script)
                    return Result.Ok(True)
                except sqlite3.Error as exc:
                    logger.error("Script execution failed: %s", exc)
                    return Result.Err(ErrorCode.DB_ERROR, str(exc))
        except RuntimeError as exc:
            return Result.Err(ErrorCode.SERVICE_UNAVAILABLE, str(exc))

    async def aclose(self) -> None:
        """Close idle and checked-out connections; further queries are rejected."""
        self._closed = True
        conns = list(self._idle) + list(self._active_conns)
        self._idle.clear()
        self._active_conns.clear()
        for conn in conns:
            try:
                await conn.close()
            except Exception as exc:
                logger.debug("Ignoring error while closing connection: %s", exc)
        self._sem = None
