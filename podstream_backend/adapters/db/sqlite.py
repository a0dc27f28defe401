"""
SQLite database connection manager (aiosqlite-backed).

Guarantees:
- The adapter never raises to callers; it returns `Result(...)`.
- Writes are serialized through one asyncio write lock, always acquired before a
  pooled connection, so a transaction holder can never wait on a connection that
  a queued writer is holding.
- "database is locked" errors (another process holding the file) are retried with
  bounded exponential backoff; exhaustion is reported as CONFLICT_RETRY_EXHAUSTED.
- A statement that fails inside `atransaction()` marks the transaction
  rollback-only: the block's writes are rolled back and the transaction Result
  carries the failure.
"""

from __future__ import annotations

import asyncio
import contextvars
import random
import sqlite3
import threading
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from queue import Empty, Queue
from typing import Any, AsyncIterator, Dict, List, Optional

import aiosqlite

from ...config import DB_LOCK_RETRIES, DB_MAX_CONNECTIONS, DB_QUERY_TIMEOUT, DB_TIMEOUT
from ...shared import ErrorCode, Result, get_logger

logger = get_logger(__name__)

# Negative cache_size is in KiB. -16000 ~= 16 MiB cache.
SQLITE_CACHE_SIZE_KIB = -16000
KEY_LOCKS_MAX = 10_000
KEY_LOCKS_TTL_S = 600.0


@dataclass
class _TxState:
    conn: aiosqlite.Connection
    result: Result[bool]
    rollback_only: bool = False


class _LockRetryExhausted(Exception):
    """Raised internally when a locked database never frees up within the retry budget."""


class Sqlite:
    """
    Connection pool manager for SQLite.

    All public methods are async and return `Result`.
    """

    def __init__(
        self,
        db_path: str,
        max_connections: Optional[int] = None,
        timeout: float = DB_TIMEOUT,
        query_timeout: Optional[float] = None,
        lock_retries: Optional[int] = None,
    ):
        self.db_path = Path(db_path)
        self._max_conn_limit = max(1, int(max_connections if max_connections is not None else DB_MAX_CONNECTIONS))
        self._pool: "Queue[aiosqlite.Connection]" = Queue(maxsize=self._max_conn_limit)
        self._active_conns: set[aiosqlite.Connection] = set()
        self._async_sem: Optional[asyncio.Semaphore] = None
        self._write_lock: Optional[asyncio.Lock] = None
        self._init_lock: Optional[asyncio.Lock] = None
        self._initialized = False
        self._closed = False

        self._timeout = float(timeout)
        self._busy_timeout_ms = max(1, int(self._timeout * 1000))
        self._query_timeout = float(query_timeout if query_timeout is not None else DB_QUERY_TIMEOUT)
        self._lock_retry_attempts = max(0, int(lock_retries if lock_retries is not None else DB_LOCK_RETRIES))
        self._lock_retry_base_seconds = 0.05
        self._lock_retry_max_seconds = 0.75

        # Per-instance so a transaction on one database never leaks into another.
        self._tx_state: contextvars.ContextVar[Optional[_TxState]] = contextvars.ContextVar(
            f"podstream_db_tx_{id(self)}", default=None
        )
        self._key_locks: Dict[str, Dict[str, Any]] = {}
        self._key_locks_lock = threading.Lock()
        self._diag_lock = threading.Lock()
        self._diag: Dict[str, Any] = {
            "locked_events": 0,
            "last_locked_error": None,
            "last_locked_at": None,
            "retry_exhausted": 0,
            "rollbacks": 0,
        }

        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    # --- diagnostics -----------------------------------------------------

    @staticmethod
    def _is_locked_error(exc: Exception) -> bool:
        msg = str(exc).lower()
        return (
            "database is locked" in msg
            or "database table is locked" in msg
            or "database schema is locked" in msg
            or "busy" in msg
        )

    def _mark_locked_event(self, exc: Exception) -> None:
        with self._diag_lock:
            self._diag["locked_events"] = int(self._diag["locked_events"]) + 1
            self._diag["last_locked_at"] = time.time()
            self._diag["last_locked_error"] = str(exc)

    def _bump_diag(self, key: str) -> None:
        with self._diag_lock:
            self._diag[key] = int(self._diag.get(key) or 0) + 1

    def get_diagnostics(self) -> Dict[str, Any]:
        with self._diag_lock:
            return dict(self._diag)

    def get_runtime_status(self) -> Dict[str, Any]:
        """Return lightweight runtime counters for diagnostics/health."""
        return {
            "active_connections": len(self._active_conns),
            "pooled_connections": int(self._pool.qsize()),
            "max_connections": int(self._max_conn_limit),
            "query_timeout_s": float(self._query_timeout),
            "busy_timeout_ms": int(self._busy_timeout_ms),
            "lock_retry_attempts": int(self._lock_retry_attempts),
        }

    async def _sleep_backoff(self, attempt: int) -> None:
        base = float(self._lock_retry_base_seconds)
        max_s = float(self._lock_retry_max_seconds)
        delay = min(max_s, base * (2 ** max(0, attempt)))
        delay = delay + (random.random() * 0.03)
        logger.debug("DB lock backoff: attempt=%d delay=%.3fs", int(attempt), float(delay))
        await asyncio.sleep(delay)

    async def _retry_locked(self, op):
        """Run `op()` and retry on locked-database errors with bounded backoff."""
        for attempt in range(self._lock_retry_attempts + 1):
            try:
                return await op()
            except sqlite3.OperationalError as exc:
                if not self._is_locked_error(exc):
                    raise
                self._mark_locked_event(exc)
                if attempt >= self._lock_retry_attempts:
                    self._bump_diag("retry_exhausted")
                    raise _LockRetryExhausted(str(exc)) from exc
                await self._sleep_backoff(attempt)
        raise _LockRetryExhausted("retry budget is zero")

    # --- connections -------------------------------------------------------

    async def _apply_connection_pragmas(self, conn: aiosqlite.Connection) -> None:
        await conn.execute("PRAGMA journal_mode=WAL")
        await conn.execute("PRAGMA synchronous=NORMAL")
        await conn.execute(f"PRAGMA cache_size={SQLITE_CACHE_SIZE_KIB}")
        await conn.execute("PRAGMA temp_store=MEMORY")
        await conn.execute(f"PRAGMA busy_timeout = {self._busy_timeout_ms}")
        await conn.execute("PRAGMA foreign_keys=ON")

    async def _create_connection(self) -> aiosqlite.Connection:
        # Autocommit mode; transactions are managed explicitly (BEGIN/COMMIT).
        conn = await aiosqlite.connect(str(self.db_path), timeout=self._timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        await self._apply_connection_pragmas(conn)
        return conn

    async def _acquire_connection(self) -> aiosqlite.Connection:
        if self._closed:
            raise RuntimeError("Database is closed - connection rejected")
        if self._async_sem is None:
            self._async_sem = asyncio.Semaphore(self._max_conn_limit)
        sem = self._async_sem
        await sem.acquire()
        try:
            try:
                conn = self._pool.get_nowait()
            except Empty:
                conn = await self._create_connection()
            self._active_conns.add(conn)
            return conn
        except BaseException:
            sem.release()
            raise

    async def _release_connection(self, conn: aiosqlite.Connection) -> None:
        try:
            self._active_conns.discard(conn)
            if not self._closed and not self._pool.full():
                self._pool.put_nowait(conn)
            else:
                await conn.close()
        finally:
            if self._async_sem is not None:
                self._async_sem.release()

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        async with self._init_lock:
            if self._initialized:
                return
            conn = await self._acquire_connection()
            try:
                await self._apply_connection_pragmas(conn)
            finally:
                await self._release_connection(conn)
            if self._write_lock is None:
                self._write_lock = asyncio.Lock()
            self._initialized = True
            logger.info("Database initialized: %s", self.db_path)

    def _get_write_lock(self) -> asyncio.Lock:
        if self._write_lock is None:
            self._write_lock = asyncio.Lock()
        return self._write_lock

    # --- per-key locks -----------------------------------------------------

    def _prune_key_locks_locked(self, now: float) -> None:
        cutoff = now - float(KEY_LOCKS_TTL_S)
        for key, entry in list(self._key_locks.items()):
            if entry["last"] < cutoff and not entry["lock"].locked():
                self._key_locks.pop(key, None)
        if len(self._key_locks) <= KEY_LOCKS_MAX:
            return
        items = sorted(self._key_locks.items(), key=lambda kv: kv[1]["last"])
        for key, entry in items[: max(0, len(items) - KEY_LOCKS_MAX)]:
            if not entry["lock"].locked():
                self._key_locks.pop(key, None)

    def _get_or_create_key_lock(self, key: str) -> asyncio.Lock:
        now = time.time()
        with self._key_locks_lock:
            entry = self._key_locks.get(key)
            if entry:
                entry["last"] = now
                return entry["lock"]
            lock = asyncio.Lock()
            self._key_locks[key] = {"lock": lock, "last": now}
            self._prune_key_locks_locked(now)
            return lock

    @asynccontextmanager
    async def lock_for_key(self, key: Any) -> AsyncIterator[None]:
        """
        Async context manager that serializes work per logical record (e.g. "user:<id>").
        """
        lock = self._get_or_create_key_lock(str(key))
        await lock.acquire()
        try:
            yield
        finally:
            lock.release()

    # --- statement execution ---------------------------------------------

    @staticmethod
    def _is_write_sql(query: str) -> bool:
        q = str(query or "").lstrip()
        if not q:
            return False
        head = q.split(None, 1)[0].upper()
        return head not in ("SELECT", "PRAGMA", "WITH", "EXPLAIN")

    @staticmethod
    def _rows_to_dicts(rows: Any) -> List[Dict[str, Any]]:
        if not rows:
            return []
        return [dict(r) for r in rows]

    @staticmethod
    def _cursor_write_result(cursor: Any) -> Result[Any]:
        rowcount = getattr(cursor, "rowcount", None)
        return Result.Ok(int(rowcount if rowcount is not None else 0), lastrowid=getattr(cursor, "lastrowid", None))

    async def _with_query_timeout(self, coro):
        timeout = float(self._query_timeout or 0)
        if timeout > 0:
            try:
                return await asyncio.wait_for(coro, timeout=timeout)
            except asyncio.TimeoutError:
                return Result.Err(ErrorCode.TIMEOUT, "Database operation timed out")
        return await coro

    async def _run_statement(self, conn: aiosqlite.Connection, query: str, params: Optional[tuple], fetch: bool) -> Result[Any]:
        async def _once() -> Result[Any]:
            cursor = await conn.execute(query, params or ())
            try:
                if fetch:
                    rows = await cursor.fetchall()
                    return Result.Ok(self._rows_to_dicts(rows))
                return self._cursor_write_result(cursor)
            finally:
                await cursor.close()

        return await self._retry_locked(_once)

    def _error_result(self, exc: Exception) -> Result[Any]:
        if isinstance(exc, _LockRetryExhausted):
            logger.error("Database stayed locked after %d retries: %s", self._lock_retry_attempts, exc)
            return Result.Err(ErrorCode.CONFLICT_RETRY_EXHAUSTED, f"Database busy after retries: {exc}")
        if isinstance(exc, sqlite3.IntegrityError):
            logger.warning("Integrity error: %s", exc)
            return Result.Err(ErrorCode.CONFLICT, f"Integrity error: {exc}")
        if isinstance(exc, sqlite3.OperationalError) and "interrupted" in str(exc).lower():
            return Result.Err(ErrorCode.TIMEOUT, "Database operation interrupted (query timeout)")
        if isinstance(exc, (sqlite3.Error, OSError, ValueError, RuntimeError)):
            logger.error("Database error: %s", exc)
            return Result.Err(ErrorCode.STORAGE_FAILURE, f"Database error: {exc}")
        logger.error("Unexpected database error: %s", exc)
        return Result.Err(ErrorCode.STORAGE_FAILURE, str(exc))

    async def _execute_in_tx(self, state: _TxState, query: str, params: Optional[tuple], fetch: bool) -> Result[Any]:
        if state.rollback_only:
            return Result.Err(state.result.code, f"Transaction already failed: {state.result.error}")
        try:
            res = await self._with_query_timeout(self._run_statement(state.conn, query, params, fetch))
        except Exception as exc:
            res = self._error_result(exc)
        if not res.ok:
            self._mark_rollback_only(state, res)
        return res

    async def _execute(self, query: str, params: Optional[tuple], fetch: bool) -> Result[Any]:
        try:
            await self._ensure_initialized()
        except Exception as exc:
            return self._error_result(exc)

        state = self._tx_state.get()
        if state is not None:
            return await self._execute_in_tx(state, query, params, fetch)

        try:
            if self._is_write_sql(query):
                async with self._get_write_lock():
                    return await self._execute_pooled(query, params, fetch)
            return await self._execute_pooled(query, params, fetch)
        except Exception as exc:
            return self._error_result(exc)

    async def _execute_pooled(self, query: str, params: Optional[tuple], fetch: bool) -> Result[Any]:
        conn = await self._acquire_connection()
        try:
            return await self._with_query_timeout(self._run_statement(conn, query, params, fetch))
        finally:
            await self._release_connection(conn)

    async def aexecute(self, query: str, params: Optional[tuple] = None, fetch: bool = False) -> Result[Any]:
        """Execute one SQL statement; joins the caller's transaction when inside `atransaction()`."""
        return await self._execute(query, params, fetch)

    async def aquery(self, sql: str, params: Optional[tuple] = None) -> Result[List[Dict[str, Any]]]:
        """Execute a SELECT query and return rows."""
        return await self.aexecute(sql, params, fetch=True)

    async def aquery_one(self, sql: str, params: Optional[tuple] = None) -> Result[Optional[Dict[str, Any]]]:
        """Execute a SELECT query and return the first row (or None)."""
        res = await self.aquery(sql, params)
        if not res.ok:
            return Result.Err(res.code, res.error or "Query failed")
        rows = res.data or []
        return Result.Ok(rows[0] if rows else None)

    async def aexecutescript(self, script: str) -> Result[bool]:
        """Execute a multi-statement SQL script (schema setup)."""
        try:
            await self._ensure_initialized()
            async with self._get_write_lock():
                conn = await self._acquire_connection()
                try:
                    async def _once() -> Result[bool]:
                        await conn.executescript(script)
                        return Result.Ok(True)

                    return await self._retry_locked(_once)
                finally:
                    await self._release_connection(conn)
        except Exception as exc:
            return self._error_result(exc)

    async def ahas_table(self, table_name: str) -> bool:
        """Return True if `table_name` exists in sqlite_master."""
        result = await self.aquery(
            "SELECT name FROM sqlite_master WHERE type='table' AND name = ?",
            (table_name,),
        )
        return bool(result.ok and result.data)

    async def aget_schema_version(self) -> int:
        """Get the schema version from the `metadata` table (0 if missing)."""
        if not await self.ahas_table("metadata"):
            return 0
        result = await self.aquery("SELECT value FROM metadata WHERE key = 'schema_version'")
        if result.ok and result.data:
            try:
                return int(result.data[0]["value"])
            except (ValueError, KeyError, TypeError):
                logger.warning("Invalid schema_version value in database")
        return 0

    async def aset_schema_version(self, version: int) -> Result[Any]:
        """Set the schema version in the `metadata` table."""
        return await self.aexecute(
            "INSERT OR REPLACE INTO metadata (key, value) VALUES ('schema_version', ?)",
            (str(version),),
        )

    # --- transactions ------------------------------------------------------

    def _mark_rollback_only(self, state: _TxState, failure: Result[Any]) -> None:
        if state.rollback_only:
            return
        state.rollback_only = True
        state.result.ok = False
        state.result.code = str(failure.code or ErrorCode.STORAGE_FAILURE.value)
        state.result.error = str(failure.error or "Statement failed inside transaction")

    def fail_transaction(self, code: ErrorCode | str, error: str) -> None:
        """Mark the current transaction rollback-only for a business-level failure."""
        state = self._tx_state.get()
        if state is None:
            return
        self._mark_rollback_only(state, Result.Err(code, error))

    @staticmethod
    def _begin_stmt_for_mode(mode: str) -> str:
        if isinstance(mode, str) and mode.lower() in ("deferred", "immediate", "exclusive"):
            return f"BEGIN {mode.upper()}"
        return "BEGIN IMMEDIATE"

    async def _begin(self, mode: str) -> tuple[Optional[aiosqlite.Connection], Result[bool]]:
        try:
            await self._ensure_initialized()
        except Exception as exc:
            return None, self._error_result(exc)
        lock = self._get_write_lock()
        await lock.acquire()
        try:
            conn = await self._acquire_connection()
        except Exception as exc:
            lock.release()
            return None, self._error_result(exc)
        except BaseException:
            lock.release()
            raise
        begin_stmt = self._begin_stmt_for_mode(mode)
        begun = False
        try:
            async def _once() -> None:
                await conn.execute(begin_stmt)

            await self._retry_locked(_once)
            begun = True
            return conn, Result.Ok(True)
        except Exception as exc:
            return None, self._error_result(exc)
        finally:
            # Also runs on cancellation: the lock and connection must never stay checked out.
            if not begun:
                await self._abort_begin(conn, lock)

    async def _abort_begin(self, conn: aiosqlite.Connection, lock: asyncio.Lock) -> None:
        try:
            # A cancelled BEGIN may still run on the connection thread; roll it back
            # before the connection returns to the pool.
            await conn.rollback()
        except sqlite3.Error as exc:
            logger.warning("Rollback after failed BEGIN failed: %s", exc)
        finally:
            try:
                await self._release_connection(conn)
            finally:
                lock.release()

    async def _finish(self, state: _TxState, *, commit: bool) -> None:
        conn = state.conn
        try:
            if commit and not state.rollback_only:
                try:
                    await self._retry_locked(conn.commit)
                    return
                except Exception as exc:
                    self._mark_rollback_only(state, self._error_result(exc))
            self._bump_diag("rollbacks")
            try:
                await conn.rollback()
            except sqlite3.Error as exc:
                logger.warning("Rollback failed: %s", exc)
        finally:
            try:
                await self._release_connection(conn)
            finally:
                self._get_write_lock().release()

    @asynccontextmanager
    async def atransaction(self, mode: str = "immediate") -> AsyncIterator[Result[bool]]:
        """
        Async context manager for a DB transaction.

        Yields a Result describing the transaction state. Callers check `tx.ok`
        at the start of the block (begin may fail) and again after it (commit may
        fail, or a statement inside marked the transaction rollback-only).
        Nested use joins the outer transaction.
        """
        outer = self._tx_state.get()
        if outer is not None:
            yield outer.result
            return

        conn, begin_res = await self._begin(mode)
        if conn is None:
            yield Result.Err(begin_res.code, str(begin_res.error or "Failed to begin transaction"))
            return

        state = _TxState(conn=conn, result=Result.Ok(True))
        token = self._tx_state.set(state)
        try:
            yield state.result
        except BaseException:
            self._tx_state.reset(token)
            await self._finish(state, commit=False)
            raise
        self._tx_state.reset(token)
        await self._finish(state, commit=True)

    # --- shutdown ----------------------------------------------------------

    async def aclose(self) -> None:
        """Close every pooled and checked-out connection."""
        self._closed = True
        while True:
            try:
                conn = self._pool.get_nowait()
            except Empty:
                break
            try:
                await conn.close()
            except sqlite3.Error as exc:
                logger.debug("Ignoring close error: %s", exc)
        for conn in list(self._active_conns):
            try:
                await conn.close()
            except sqlite3.Error as exc:
                logger.debug("Ignoring close error: %s", exc)
        self._active_conns.clear()
        self._async_sem = None
