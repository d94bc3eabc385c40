"""
PostgreSQL driver on an asyncpg connection pool.

Manifesto:
    Connections are expensive; leases are cheap. Every statement outside a
    transaction borrows a pooled connection for exactly one round trip. A
    transaction pins its connection until commit or rollback, and the
    connection goes back to the pool on every exit path.

Architecture:
    ::

        query/execute/get (no handle)        begin() -> TransactionHandle
        ┌──────────────────────────┐         ┌────────────────────────────┐
        │ async with pool.acquire()│         │ conn = await pool.acquire()│
        │     run statement        │         │ tx = conn.transaction()    │
        │ (released on exit)       │         │ await tx.start()           │
        └──────────────────────────┘         │   ... statements on conn   │
                                             │ commit()/rollback()        │
                                             │ finally: pool.release(conn)│
                                             └────────────────────────────┘

Guardrails:
    - Statements arrive with native ``$n`` markers; conversion is the facade's job
    - ``execute`` goes through a prepared statement so ``RETURNING`` rows and
      the command-status row count are both available
    - NEVER keep a reference to a handle's connection after commit/rollback
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncpg

from dualdb.dialect import check_identifier
from dualdb.drivers.base import DatabaseDriver, DriverState
from dualdb.engine import EngineKind
from dualdb.errors import (
    ConstraintViolationError,
    DatabaseConnectionError,
    DualDBError,
    LifecycleError,
    StatementError,
    TransactionError,
)
from dualdb.logging import get_logger
from dualdb.schema import AddColumn
from dualdb.settings import DatabaseSettings
from dualdb.types import Params, Row, StatementOutcome, TransactionHandle

logger = get_logger(__name__)


def parse_rowcount(status: str | None) -> int:
    """Row count from an asyncpg command status (``'INSERT 0 3'`` -> 3)."""
    if not status:
        return 0
    last = status.rsplit(" ", 1)[-1]
    return int(last) if last.isdigit() else 0


class PostgreSQLDriver(DatabaseDriver):
    """
    Pooled engine driver.

    Pool sizing and timeouts come from ``DatabaseSettings``; millisecond
    settings are converted to the seconds asyncpg expects.
    """

    engine = EngineKind.CLIENT_SERVER

    def __init__(self, settings: DatabaseSettings):
        super().__init__(settings)
        self._pool: asyncpg.Pool | None = None

    @property
    def pool(self) -> asyncpg.Pool:
        if self._pool is None:
            raise LifecycleError("postgresql driver is not connected")
        return self._pool

    # -- Lifecycle -------------------------------------------------------------

    async def connect(self) -> None:
        if self._pool is not None:
            return

        settings = self._settings
        logger.info(
            "creating_pool",
            engine=self.engine.value,
            host=settings.host,
            min_size=settings.pool_min,
            max_size=settings.pool_max,
        )
        try:
            pool = await asyncpg.create_pool(
                settings.dsn(),
                min_size=min(settings.pool_min, settings.pool_max),
                max_size=settings.pool_max,
                command_timeout=settings.command_timeout,
                max_inactive_connection_lifetime=settings.pool_idle_timeout / 1000,
                ssl=settings.ssl,
                timeout=settings.pool_connection_timeout / 1000,
            )
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise DatabaseConnectionError(
                f"Failed to connect to PostgreSQL: {e}",
                cause=e,
            ).with_context(engine=self.engine.value, host=settings.host) from e

        try:
            async with pool.acquire() as conn:
                version = await conn.fetchval("SELECT version()")
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            await pool.close()
            raise DatabaseConnectionError(
                f"PostgreSQL connection probe failed: {e}",
                cause=e,
            ).with_context(engine=self.engine.value, host=settings.host) from e

        self._pool = pool
        self._state = DriverState.CONNECTED
        logger.info("connected", engine=self.engine.value, version=str(version)[:60])

    async def close(self) -> None:
        if self._pool is None:
            return
        pool, self._pool = self._pool, None
        await pool.close()
        self._state = DriverState.DISCONNECTED
        logger.info("pool_closed", engine=self.engine.value)

    # -- Dispatch --------------------------------------------------------------

    def _translate(self, exc: Exception, sql: str) -> DualDBError:
        if isinstance(exc, TimeoutError):
            return StatementError(f"Statement timed out: {exc}", retryable=True, cause=exc).with_context(
                engine=self.engine.value, sql=sql
            )
        if isinstance(exc, (OSError, asyncpg.PostgresConnectionError)):
            return DatabaseConnectionError(str(exc), cause=exc).with_context(engine=self.engine.value, sql=sql)
        if isinstance(exc, asyncpg.IntegrityConstraintViolationError):
            return ConstraintViolationError(str(exc), cause=exc).with_context(engine=self.engine.value, sql=sql)
        return StatementError(str(exc), cause=exc).with_context(engine=self.engine.value, sql=sql)

    @asynccontextmanager
    async def _connection(self, handle: TransactionHandle | None) -> AsyncIterator[asyncpg.Connection]:
        if handle is not None:
            yield handle.connection
            return
        async with self.pool.acquire() as conn:
            yield conn

    async def query(self, sql: str, params: Params = (), handle: TransactionHandle | None = None) -> list[Row]:
        async with self._connection(handle) as conn:
            try:
                records = await conn.fetch(sql, *params)
            except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
                raise self._translate(exc, sql) from exc
        return [dict(record) for record in records]

    async def get(self, sql: str, params: Params = (), handle: TransactionHandle | None = None) -> Row | None:
        async with self._connection(handle) as conn:
            try:
                record = await conn.fetchrow(sql, *params)
            except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
                raise self._translate(exc, sql) from exc
        return dict(record) if record is not None else None

    async def execute(self, sql: str, params: Params = (), handle: TransactionHandle | None = None) -> StatementOutcome:
        async with self._connection(handle) as conn:
            try:
                stmt = await conn.prepare(sql)
                records = await stmt.fetch(*params)
                status = stmt.get_statusmsg()
            except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
                raise self._translate(exc, sql) from exc
        return StatementOutcome(rows=[dict(r) for r in records], rowcount=parse_rowcount(status))

    # -- Transactions ------------------------------------------------------------

    async def begin(self) -> TransactionHandle:
        self._require_connected()
        pool = self.pool
        try:
            conn = await pool.acquire()
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise DatabaseConnectionError(f"Could not lease a connection: {e}", cause=e).with_context(
                engine=self.engine.value
            ) from e

        try:
            tx = conn.transaction()
            await tx.start()
        except BaseException as e:
            await pool.release(conn)
            if isinstance(e, (OSError, asyncpg.PostgresError, asyncpg.InterfaceError)):
                raise TransactionError(f"BEGIN failed: {e}", cause=e).with_context(engine=self.engine.value) from e
            raise

        handle = TransactionHandle(self.engine, conn, tx, source=pool)
        logger.debug("transaction_started", engine=self.engine.value, transaction=handle.id)
        return handle

    async def _finish(self, handle: TransactionHandle, action: str) -> None:
        handle.ensure_open()
        conn = handle.connection
        pool = handle.source
        try:
            if action == "COMMIT":
                await handle.transaction.commit()
            else:
                await handle.transaction.rollback()
        except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            raise TransactionError(f"{action} failed: {e}", cause=e).with_context(
                engine=self.engine.value, transaction=handle.id
            ) from e
        finally:
            handle.close()
            # release() resets a connection left inside a failed transaction;
            # it goes back to the pool it was leased from even after close()
            await pool.release(conn)

    async def commit(self, handle: TransactionHandle) -> None:
        await self._finish(handle, "COMMIT")
        logger.debug("transaction_committed", engine=self.engine.value, transaction=handle.id)

    async def rollback(self, handle: TransactionHandle) -> None:
        await self._finish(handle, "ROLLBACK")
        logger.debug("transaction_rolled_back", engine=self.engine.value, transaction=handle.id)

    # -- Schema ------------------------------------------------------------------

    async def _run_script(self, script: str) -> None:
        async with self.pool.acquire() as conn:
            try:
                await conn.execute(script)
            except (OSError, asyncpg.PostgresError, asyncpg.InterfaceError) as exc:
                raise self._translate(exc, "<schema script>") from exc

    async def _add_column(self, migration: AddColumn) -> bool:
        exists = await self.get(self._dialect.column_exists_query(), (migration.table, migration.column))
        if exists:
            return False
        sql = self._dialect.add_column_sql(migration.table, migration.column, migration.column_type(self.engine))
        await self.execute(sql)
        return True

    # -- Introspection -------------------------------------------------------------

    async def stats(self, tables: list[str]) -> dict[str, Any]:
        counts: dict[str, int] = {}
        for table in tables:
            row = await self.get(f"SELECT COUNT(*) AS count FROM {check_identifier(table)}")
            counts[table] = int(row["count"]) if row else 0

        size = await self.get("SELECT pg_size_pretty(pg_database_size(current_database())) AS size")
        return {
            "engine": self.engine.value,
            "tables": counts,
            "database_size": size["size"] if size else None,
            "pool": self.pool_status(),
        }

    def pool_status(self) -> dict[str, int]:
        """Current pool occupancy."""
        pool = self.pool
        return {
            "size": pool.get_size(),
            "idle": pool.get_idle_size(),
            "min": pool.get_min_size(),
            "max": pool.get_max_size(),
        }


__all__ = [
    "PostgreSQLDriver",
    "parse_rowcount",
]
