"""Driver registry and factory.

Manifesto:
    The manager never hard-codes driver class names. The registry maps each
    ``EngineKind`` to a driver class and ``create_driver()`` builds an
    unconnected instance from settings.

Features:
    - ``DriverRegistry`` with the two built-in drivers pre-registered
    - ``register()`` for instrumented drivers and test doubles
    - ``create_driver()`` factory: engine + settings → driver

Tags:
    dualdb, database, registry, factory
"""

from __future__ import annotations

from dualdb.engine import EngineKind, resolve_engine
from dualdb.errors import ConfigError
from dualdb.settings import DatabaseSettings

from .base import DatabaseDriver
from .postgresql import PostgreSQLDriver
from .sqlite import SQLiteDriver


class DriverRegistry:
    """
    Registry of driver classes keyed by engine.

    Pre-registered drivers:
    - ``EngineKind.EMBEDDED`` — :class:`SQLiteDriver`
    - ``EngineKind.CLIENT_SERVER`` — :class:`PostgreSQLDriver`
    """

    def __init__(self):
        self._factories: dict[EngineKind, type[DatabaseDriver]] = {}
        self._register_defaults()

    def _register_defaults(self) -> None:
        self._factories[EngineKind.EMBEDDED] = SQLiteDriver
        self._factories[EngineKind.CLIENT_SERVER] = PostgreSQLDriver

    def register(self, engine: EngineKind, driver_class: type[DatabaseDriver]) -> None:
        """Register (or replace) the driver class for ``engine``."""
        self._factories[engine] = driver_class

    def create(self, engine: EngineKind | str, settings: DatabaseSettings) -> DatabaseDriver:
        kind = resolve_engine(engine)
        if kind not in self._factories:
            registered = ", ".join(self.list_engines()) or "none"
            raise ConfigError(f"No driver registered for engine: {kind.value} (registered: {registered})")
        return self._factories[kind](settings)

    def list_engines(self) -> list[str]:
        """Engine values with a registered driver, sorted."""
        return sorted(kind.value for kind in self._factories)


driver_registry = DriverRegistry()


def create_driver(engine: EngineKind | str, settings: DatabaseSettings) -> DatabaseDriver:
    """
    Build an unconnected driver for ``engine``.

    Usage:
        driver = create_driver("pg", DatabaseSettings(name="shop"))
    """
    return driver_registry.create(engine, settings)


__all__ = [
    "DriverRegistry",
    "driver_registry",
    "create_driver",
]
