"""
Engine drivers.

One driver per engine behind the ``DatabaseDriver`` contract:

- ``SQLiteDriver`` — one shared ``sqlite3`` connection, serialized
- ``PostgreSQLDriver`` — asyncpg pool, per-operation leases

Usage:
    from dualdb.drivers import create_driver

    driver = create_driver("sqlite", settings)
    await driver.connect()
"""

from .base import DatabaseDriver, DriverState, MigrationReport
from .postgresql import PostgreSQLDriver
from .registry import DriverRegistry, create_driver, driver_registry
from .sqlite import SQLiteDriver

__all__ = [
    "DatabaseDriver",
    "DriverState",
    "MigrationReport",
    "SQLiteDriver",
    "PostgreSQLDriver",
    "DriverRegistry",
    "driver_registry",
    "create_driver",
]
