"""
Data access facade: the one surface the rest of an application calls.

Calling code writes ``?`` markers and receives the same shapes from either
engine: a list of dicts from ``query``, a dict or None from ``get`` and a
``WriteResult`` from ``execute``. Placeholders are converted once, right
before dispatch.

Examples:
    Plain statements::

        async with create_database() as db:
            result = await db.execute("INSERT INTO users (email) VALUES (?) RETURNING id", [email])
            user = await db.get("SELECT * FROM users WHERE id = ?", [result.id])

    A unit of work::

        async def move_stock(tx):
            await tx.execute("UPDATE stock SET qty = qty - ? WHERE sku = ?", [n, src])
            await tx.execute("UPDATE stock SET qty = qty + ? WHERE sku = ?", [n, dst])

        await db.transaction(move_stock)

        async with db.atomic() as tx:
            await tx.execute(...)

Guardrails:
    ❌ DON'T: Run ``db.query`` inside a transaction callback and expect it
       to see uncommitted writes on PostgreSQL; use the ``tx`` argument
    ✅ DO: Route every statement of a unit of work through its ``Transaction``
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any, TypeVar

from dualdb.adapter import handle_transaction, rollback_after_failure
from dualdb.dialect import Dialect
from dualdb.drivers.base import DatabaseDriver, MigrationReport
from dualdb.engine import EngineKind
from dualdb.health import HealthReport
from dualdb.logging import get_logger
from dualdb.manager import EngineManager
from dualdb.schema import SchemaDefinition
from dualdb.settings import DatabaseSettings
from dualdb.types import Operation, Params, Row, TransactionHandle, WriteResult

logger = get_logger(__name__)

T = TypeVar("T")


class Transaction:
    """Statements bound to one open transaction.

    Offers the facade's ``query``/``execute``/``get`` with the same
    placeholder conversion, on the transaction's connection.
    """

    def __init__(self, database: Database, handle: TransactionHandle):
        self._database = database
        self._handle = handle

    @property
    def handle(self) -> TransactionHandle:
        return self._handle

    @property
    def closed(self) -> bool:
        return self._handle.closed

    async def query(self, sql: str, params: Params = ()) -> list[Row]:
        return await self._database._dispatch("query", sql, params, self._handle)

    async def execute(self, sql: str, params: Params = ()) -> WriteResult:
        return await self._database._dispatch("execute", sql, params, self._handle)

    async def get(self, sql: str, params: Params = ()) -> Row | None:
        return await self._database._dispatch("get", sql, params, self._handle)

    def __repr__(self) -> str:
        return f"Transaction({self._handle!r})"


class Database:
    """
    Engine-neutral data access.

    Every operation before ``initialize()`` raises ``LifecycleError``.
    """

    def __init__(self, manager: EngineManager):
        self._manager = manager

    @property
    def manager(self) -> EngineManager:
        return self._manager

    @property
    def engine(self) -> EngineKind:
        return self._manager.engine

    @property
    def dialect(self) -> Dialect:
        return self._manager.dialect

    @property
    def driver(self) -> DatabaseDriver:
        return self._manager.driver

    # -- Lifecycle -------------------------------------------------------------

    async def initialize(self, schema: SchemaDefinition | None = None) -> MigrationReport:
        return await self._manager.initialize(schema)

    async def close(self) -> None:
        await self._manager.close()

    async def __aenter__(self) -> Database:
        if not self._manager.initialized:
            await self._manager.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # -- Statements ------------------------------------------------------------

    async def _dispatch(self, operation: Operation, sql: str, params: Params, handle: TransactionHandle | None) -> Any:
        driver = self._manager.driver
        dialect = self._manager.dialect
        native = dialect.convert_placeholders(sql)
        params = tuple(params or ())
        logger.debug(
            "statement_dispatched",
            engine=self.engine.value,
            operation=operation,
            params=len(params),
            transaction=handle.id if handle else None,
        )

        if operation == "query":
            raw = await driver.query(native, params, handle)
        elif operation == "get":
            raw = await driver.get(native, params, handle)
        else:
            raw = await driver.execute(native, params, handle)
        return dialect.convert_result(raw, operation)

    async def query(self, sql: str, params: Params = ()) -> list[Row]:
        """Run a read; every row as a dict (empty list when nothing matches)."""
        return await self._dispatch("query", sql, params, None)

    async def execute(self, sql: str, params: Params = ()) -> WriteResult:
        """Run a write.

        ``id`` is the generated key: ``lastrowid`` on SQLite, the ``id`` column
        of the first ``RETURNING`` row on PostgreSQL, else None.
        """
        return await self._dispatch("execute", sql, params, None)

    async def get(self, sql: str, params: Params = ()) -> Row | None:
        """Run a read; the first row, or None."""
        return await self._dispatch("get", sql, params, None)

    # -- Transactions ----------------------------------------------------------

    async def begin_transaction(self) -> Transaction:
        handle = await self._manager.driver.begin()
        return Transaction(self, handle)

    async def commit(self, tx: Transaction) -> None:
        await self._manager.driver.commit(tx.handle)

    async def rollback(self, tx: Transaction) -> None:
        await self._manager.driver.rollback(tx.handle)

    async def transaction(self, callback: Callable[[Transaction], Awaitable[T]]) -> T:
        """Run ``callback(tx)`` atomically and return its result.

        Any exception raised by the callback rolls back and propagates as is.
        """

        async def bound(handle: TransactionHandle) -> T:
            return await callback(Transaction(self, handle))

        return await handle_transaction(self._manager.driver, bound)

    @asynccontextmanager
    async def atomic(self) -> AsyncIterator[Transaction]:
        """Context-manager form of ``transaction()``."""
        driver = self._manager.driver
        tx = Transaction(self, await driver.begin())
        try:
            yield tx
        except BaseException:
            await rollback_after_failure(driver, tx.handle)
            raise
        if not tx.closed:
            await driver.commit(tx.handle)

    # -- Fragments / introspection ---------------------------------------------

    def limit_clause(self, limit_index: int = 1, offset_index: int = 2) -> str:
        return self.dialect.limit_clause(limit_index, offset_index)

    def like_clause(self, column: str, param_index: int = 1, *, case_insensitive: bool = False) -> str:
        return self.dialect.like_clause(column, param_index, case_insensitive=case_insensitive)

    async def health_check(self) -> HealthReport:
        return await self._manager.health_check()

    async def stats(self, tables: list[str]) -> dict[str, Any]:
        return await self._manager.stats(tables)


def create_database(settings: DatabaseSettings | None = None, *, driver: DatabaseDriver | None = None) -> Database:
    """Build a manager and facade from settings (environment when omitted)."""
    return Database(EngineManager(settings, driver=driver))


__all__ = [
    "Database",
    "Transaction",
    "create_database",
]
