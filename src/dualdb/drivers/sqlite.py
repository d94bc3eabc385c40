"""SQLite driver: one shared connection, every statement serialized."""

from __future__ import annotations

import asyncio
import re
import sqlite3
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

from dualdb.dialect import check_identifier
from dualdb.drivers.base import DatabaseDriver, DriverState
from dualdb.engine import EngineKind
from dualdb.errors import (
    ConstraintViolationError,
    DatabaseConnectionError,
    LifecycleError,
    StatementError,
    TransactionError,
)
from dualdb.logging import get_logger
from dualdb.schema import AddColumn
from dualdb.settings import DatabaseSettings
from dualdb.types import Params, Row, StatementOutcome, TransactionHandle

logger = get_logger(__name__)

T = TypeVar("T")

# Leading keyword after any comments; a WITH clause is looked through
_LEADING_COMMENTS_RE = re.compile(r"\A(?:\s+|--[^\n]*(?:\n|\Z)|/\*.*?\*/)*", re.DOTALL)
_INSERT_VERB_RE = re.compile(r"\b(INSERT|REPLACE)\b", re.IGNORECASE)


def inserts_rows(sql: str) -> bool:
    """True when ``sql`` is an INSERT or REPLACE (optionally behind a WITH clause)."""
    body = sql[_LEADING_COMMENTS_RE.match(sql).end() :]
    verb = body[:7].upper()
    if verb.startswith(("INSERT", "REPLACE")):
        return True
    return verb.startswith("WITH") and _INSERT_VERB_RE.search(body) is not None


def _fetch_all(conn: sqlite3.Connection, sql: str, params: Params) -> list[Row]:
    cursor = conn.execute(sql, params)
    try:
        return [dict(row) for row in cursor.fetchall()]
    finally:
        cursor.close()


def _fetch_one(conn: sqlite3.Connection, sql: str, params: Params) -> Row | None:
    cursor = conn.execute(sql, params)
    try:
        row = cursor.fetchone()
        return dict(row) if row is not None else None
    finally:
        cursor.close()


def _run(conn: sqlite3.Connection, sql: str, params: Params) -> StatementOutcome:
    cursor = conn.execute(sql, params)
    try:
        # RETURNING rows must be consumed before rowcount is final
        rows = [dict(row) for row in cursor.fetchall()] if cursor.description else []
        # lastrowid keeps the previous INSERT's id across UPDATE and DELETE
        lastrowid = cursor.lastrowid if cursor.rowcount > 0 and inserts_rows(sql) else None
        return StatementOutcome(rows=rows, rowcount=cursor.rowcount, lastrowid=lastrowid)
    finally:
        cursor.close()


class SQLiteDriver(DatabaseDriver):
    """
    Embedded engine driver.

    All callers share one ``sqlite3.Connection``. An ``asyncio.Lock`` admits
    one statement at a time and each statement runs on a worker thread, so
    the event loop never blocks on file I/O.

    Transactions are plain ``BEGIN``/``COMMIT``/``ROLLBACK`` statements on the
    shared connection. Two transactions opened concurrently are NOT isolated:
    their statements interleave on the same connection, and the second
    ``BEGIN`` fails while the first is open.
    """

    engine = EngineKind.EMBEDDED

    def __init__(self, settings: DatabaseSettings, *, timeout: float = 5.0):
        super().__init__(settings)
        self._path = settings.path
        self._timeout = timeout
        self._conn: sqlite3.Connection | None = None
        self._lock = asyncio.Lock()

    @property
    def path(self) -> str:
        return self._path

    # -- Lifecycle -------------------------------------------------------------

    def _open(self) -> sqlite3.Connection:
        path = self._path
        uri = path.startswith("file:")
        if path != ":memory:" and not uri:
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        conn = sqlite3.connect(
            path,
            timeout=self._timeout,
            check_same_thread=False,
            isolation_level=None,
            uri=uri,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    async def connect(self) -> None:
        if self._conn is not None:
            return
        try:
            self._conn = await asyncio.to_thread(self._open)
        except (sqlite3.Error, OSError) as e:
            raise DatabaseConnectionError(
                f"Failed to connect to SQLite: {e}",
                cause=e,
            ).with_context(engine=self.engine.value, path=self._path) from e

        self._state = DriverState.CONNECTED
        logger.info("connected", engine=self.engine.value, path=self._path)

    async def close(self) -> None:
        if self._conn is None:
            return
        async with self._lock:
            conn, self._conn = self._conn, None
            await asyncio.to_thread(conn.close)
        self._state = DriverState.DISCONNECTED
        logger.info("connection_closed", engine=self.engine.value)

    # -- Dispatch --------------------------------------------------------------

    def _statement_error(self, exc: sqlite3.Error, sql: str) -> StatementError:
        error_cls = ConstraintViolationError if isinstance(exc, sqlite3.IntegrityError) else StatementError
        return error_cls(str(exc), cause=exc).with_context(engine=self.engine.value, sql=sql)

    async def _call(
        self,
        fn: Callable[[sqlite3.Connection, str, Params], T],
        sql: str,
        params: Params,
        handle: TransactionHandle | None,
    ) -> T:
        if handle is not None:
            handle.ensure_open()
        async with self._lock:
            conn = self._conn
            if conn is None:
                raise LifecycleError("sqlite driver is not connected")
            try:
                return await asyncio.to_thread(fn, conn, sql, tuple(params))
            except sqlite3.Error as exc:
                raise self._statement_error(exc, sql) from exc

    async def query(self, sql: str, params: Params = (), handle: TransactionHandle | None = None) -> list[Row]:
        return await self._call(_fetch_all, sql, params, handle)

    async def execute(self, sql: str, params: Params = (), handle: TransactionHandle | None = None) -> StatementOutcome:
        return await self._call(_run, sql, params, handle)

    async def get(self, sql: str, params: Params = (), handle: TransactionHandle | None = None) -> Row | None:
        return await self._call(_fetch_one, sql, params, handle)

    # -- Transactions ------------------------------------------------------------

    async def _control(self, statement: str) -> None:
        try:
            await self.execute(statement)
        except StatementError as exc:
            raise TransactionError(
                f"{statement} failed: {exc.message}",
                cause=exc.cause or exc,
            ).with_context(engine=self.engine.value) from exc

    async def begin(self) -> TransactionHandle:
        self._require_connected()
        await self._control("BEGIN TRANSACTION")
        handle = TransactionHandle(self.engine, self._conn)
        logger.debug("transaction_started", engine=self.engine.value, transaction=handle.id)
        return handle

    async def commit(self, handle: TransactionHandle) -> None:
        handle.ensure_open()
        try:
            await self._control("COMMIT")
        except TransactionError:
            # a failed COMMIT (e.g. deferred foreign key) leaves the transaction open
            if self._conn is not None and self._conn.in_transaction:
                await self._control("ROLLBACK")
            raise
        finally:
            handle.close()
        logger.debug("transaction_committed", engine=self.engine.value, transaction=handle.id)

    async def rollback(self, handle: TransactionHandle) -> None:
        handle.ensure_open()
        try:
            await self._control("ROLLBACK")
        finally:
            handle.close()
        logger.debug("transaction_rolled_back", engine=self.engine.value, transaction=handle.id)

    # -- Schema ------------------------------------------------------------------

    async def _run_script(self, script: str) -> None:
        self._require_connected()
        async with self._lock:
            try:
                await asyncio.to_thread(self._conn.executescript, script)
            except sqlite3.Error as exc:
                raise self._statement_error(exc, "<schema script>") from exc

    async def _add_column(self, migration: AddColumn) -> bool:
        # "duplicate column name" surfaces as StatementError and is classified
        # as already applied by the caller
        sql = self._dialect.add_column_sql(migration.table, migration.column, migration.column_type(self.engine))
        await self.execute(sql)
        return True

    # -- Introspection -------------------------------------------------------------

    async def stats(self, tables: list[str]) -> dict[str, Any]:
        counts: dict[str, int] = {}
        for table in tables:
            row = await self.get(f"SELECT COUNT(*) AS count FROM {check_identifier(table)}")
            counts[table] = int(row["count"]) if row else 0

        page_count = await self.get("PRAGMA page_count")
        page_size = await self.get("PRAGMA page_size")
        size = int(page_count["page_count"]) * int(page_size["page_size"])
        return {
            "engine": self.engine.value,
            "path": self._path,
            "tables": counts,
            "database_size": size,
        }


__all__ = [
    "SQLiteDriver",
]
