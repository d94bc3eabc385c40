"""Driver base class.

Manifesto:
    Both engines share one lifecycle (connect → schema → serve → close) and
    one request/result contract. The abstract base class fixes that contract
    so the manager and facade never depend on a specific engine.

Features:
    - Abstract ``connect()``, ``close()``, ``query()``, ``execute()``, ``get()``
    - Transaction handles from ``begin()``; ``commit()``/``rollback()`` close them
    - Shared ``initialize_schema()`` driving engine-specific migration steps
    - ``DriverState`` introspection

Tags:
    dualdb, database, abstract-base, driver
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from dualdb.dialect import Dialect, get_dialect
from dualdb.engine import EngineKind
from dualdb.errors import LifecycleError, MigrationError, StatementError
from dualdb.logging import get_logger
from dualdb.schema import AddColumn, AddIndex, Migration, SchemaDefinition, is_already_applied
from dualdb.settings import DatabaseSettings
from dualdb.types import Params, Row, StatementOutcome, TransactionHandle

logger = get_logger(__name__)


class DriverState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    SCHEMA_READY = "schema_ready"


@dataclass
class MigrationReport:
    """Outcome of one migration pass."""

    applied: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors


class DatabaseDriver(ABC):
    """
    Abstract base class for engine drivers.

    Statements reaching a driver are already in the engine's native marker
    style; placeholder conversion happens in the facade.
    """

    engine: EngineKind

    def __init__(self, settings: DatabaseSettings):
        self._settings = settings
        self._state = DriverState.DISCONNECTED
        self._dialect: Dialect = get_dialect(self.engine)
        self.last_migration_report: MigrationReport | None = None

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    @property
    def state(self) -> DriverState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state is not DriverState.DISCONNECTED

    def _require_connected(self) -> None:
        if self._state is DriverState.DISCONNECTED:
            raise LifecycleError(f"{self.engine.value} driver is not connected")

    # -- Lifecycle -----------------------------------------------------------

    @abstractmethod
    async def connect(self) -> None:
        """Open the engine connection (or pool)."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release every engine resource. Safe to call when not connected."""
        ...

    async def initialize_schema(self, schema: SchemaDefinition | None = None) -> MigrationReport:
        """Apply the DDL script, then every additive migration.

        DDL failures propagate as ``StatementError``. Migrations that are
        already in place are skipped; any other migration failure is collected
        and re-surfaced as one ``MigrationError`` after the whole pass.
        """
        self._require_connected()
        report = MigrationReport()
        if schema is not None:
            ddl = schema.ddl_for(self.engine)
            if ddl and ddl.strip():
                await self._run_script(ddl)
                logger.info("schema_applied", engine=self.engine.value)
            for migration in schema.migrations:
                await self._apply_migration(migration, report)

        self._state = DriverState.SCHEMA_READY
        self.last_migration_report = report

        if not report.success:
            failed = ", ".join(report.errors)
            raise MigrationError(
                f"{len(report.errors)} migration(s) failed: {failed}",
                migration=failed,
            ).with_context(engine=self.engine.value, errors=report.errors)
        return report

    async def _apply_migration(self, migration: Migration, report: MigrationReport) -> None:
        name = migration.describe()
        try:
            if isinstance(migration, AddColumn):
                applied = await self._add_column(migration)
            elif isinstance(migration, AddIndex):
                applied = await self._add_index(migration)
            else:
                raise TypeError(f"Unsupported migration: {migration!r}")
        except StatementError as exc:
            if is_already_applied(exc):
                logger.info("migration_already_applied", engine=self.engine.value, migration=name)
                report.skipped.append(name)
                return
            logger.warning("migration_failed", engine=self.engine.value, migration=name, error=str(exc))
            report.errors[name] = str(exc)
            return

        if applied:
            logger.info("migration_applied", engine=self.engine.value, migration=name)
            report.applied.append(name)
        else:
            logger.info("migration_already_applied", engine=self.engine.value, migration=name)
            report.skipped.append(name)

    @abstractmethod
    async def _run_script(self, script: str) -> None:
        """Run a multi-statement DDL script."""
        ...

    @abstractmethod
    async def _add_column(self, migration: AddColumn) -> bool:
        """Apply one column migration; False when it was already present."""
        ...

    async def _add_index(self, migration: AddIndex) -> bool:
        exists = await self.get(self._dialect.index_exists_query(), (migration.name,))
        if exists:
            return False
        sql = self._dialect.create_index_sql(
            migration.name, migration.table, migration.columns, unique=migration.unique
        )
        await self.execute(sql)
        return True

    # -- Statements ------------------------------------------------------------

    @abstractmethod
    async def query(self, sql: str, params: Params = (), handle: TransactionHandle | None = None) -> list[Row]:
        """Run a read and return every row as a dict."""
        ...

    @abstractmethod
    async def execute(self, sql: str, params: Params = (), handle: TransactionHandle | None = None) -> StatementOutcome:
        """Run a write and return the raw outcome."""
        ...

    @abstractmethod
    async def get(self, sql: str, params: Params = (), handle: TransactionHandle | None = None) -> Row | None:
        """Run a read and return the first row, or None."""
        ...

    # -- Transactions ----------------------------------------------------------

    @abstractmethod
    async def begin(self) -> TransactionHandle:
        ...

    @abstractmethod
    async def commit(self, handle: TransactionHandle) -> None:
        ...

    @abstractmethod
    async def rollback(self, handle: TransactionHandle) -> None:
        ...

    # -- Introspection ---------------------------------------------------------

    @abstractmethod
    async def stats(self, tables: list[str]) -> dict[str, Any]:
        """Row counts for ``tables`` plus engine-reported database size."""
        ...


__all__ = [
    "DatabaseDriver",
    "DriverState",
    "MigrationReport",
]
