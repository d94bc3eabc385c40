"""
Engine manager: owns the one driver and dialect selected for this process.

Manifesto:
    Engine identity is decided exactly once, from configuration, when the
    manager is constructed. After that the manager only sequences the
    lifecycle (connect → schema → migrations → serve → close) and hands the
    driver to the facade. Nothing is global; callers construct and inject.

Features:
    - Alias resolution at construction (``InvalidConfigError`` on unknown client)
    - Driver built through the registry, or injected for tests
    - ``initialize()`` with strict or lenient migration handling
    - ``health_check()`` that never raises

Examples:
    >>> manager = EngineManager(DatabaseSettings(client="sqlite", path=":memory:"))
    >>> manager.engine
    <EngineKind.EMBEDDED: 'sqlite'>

Tags:
    dualdb, lifecycle, manager, dependency-injection
"""

from __future__ import annotations

from typing import Any

from dualdb.dialect import Dialect, get_dialect
from dualdb.drivers.base import DatabaseDriver, MigrationReport
from dualdb.drivers.registry import create_driver
from dualdb.engine import EngineKind, resolve_engine
from dualdb.errors import ConfigError, LifecycleError, MigrationError
from dualdb.health import HealthReport, check_driver, not_initialized
from dualdb.logging import get_logger
from dualdb.schema import SchemaDefinition
from dualdb.settings import DatabaseSettings

logger = get_logger(__name__)


class EngineManager:
    """
    Lifecycle owner for one engine.

    Args:
        settings: Configuration; read from the environment when omitted
        driver: Pre-built driver (test doubles); must match the configured engine
    """

    def __init__(self, settings: DatabaseSettings | None = None, *, driver: DatabaseDriver | None = None):
        self._settings = settings or DatabaseSettings()
        self._engine = resolve_engine(self._settings.client)
        if driver is not None and driver.engine is not self._engine:
            raise ConfigError(
                f"Injected {driver.engine.value} driver does not match configured engine {self._engine.value}"
            )
        self._driver = driver or create_driver(self._engine, self._settings)
        self._dialect = get_dialect(self._engine)
        self._initialized = False

    @property
    def settings(self) -> DatabaseSettings:
        return self._settings

    @property
    def engine(self) -> EngineKind:
        return self._engine

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def driver(self) -> DatabaseDriver:
        if not self._initialized:
            raise LifecycleError("Database not initialized. Call initialize() first.")
        return self._driver

    async def initialize(self, schema: SchemaDefinition | None = None) -> MigrationReport:
        """Connect, apply the schema, run migrations.

        Without an explicit ``schema`` the DDL at ``settings.schema_path`` is
        used, if configured.

        Raises:
            LifecycleError: Already initialized
            DatabaseConnectionError: Engine unreachable
            StatementError: The DDL script failed
            MigrationError: A migration failed and ``strict_migrations`` is set
        """
        if self._initialized:
            raise LifecycleError("Database already initialized").with_context(engine=self._engine.value)

        if schema is None and self._settings.schema_path is not None:
            schema = SchemaDefinition.from_file(self._settings.schema_path, self._engine)

        await self._driver.connect()
        try:
            report = await self._driver.initialize_schema(schema)
        except MigrationError as exc:
            if self._settings.strict_migrations:
                await self._driver.close()
                raise
            logger.warning("migrations_incomplete", engine=self._engine.value, error=exc.message)
            report = self._driver.last_migration_report or MigrationReport()
        except BaseException:
            await self._driver.close()
            raise

        self._initialized = True
        logger.info(
            "database_initialized",
            engine=self._engine.value,
            applied=len(report.applied),
            skipped=len(report.skipped),
        )
        return report

    async def health_check(self) -> HealthReport:
        if not self._initialized:
            return not_initialized(self._engine.value)
        return await check_driver(self._driver)

    async def stats(self, tables: list[str]) -> dict[str, Any]:
        return await self.driver.stats(tables)

    async def close(self) -> None:
        """Release the engine. Safe to call repeatedly or before ``initialize()``."""
        if not self._initialized and not self._driver.is_connected:
            return
        await self._driver.close()
        self._initialized = False
        logger.info("database_closed", engine=self._engine.value)


__all__ = [
    "EngineManager",
]
