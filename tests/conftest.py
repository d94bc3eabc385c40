"""
Shared pytest fixtures for dualdb tests.

This module provides:
- Environment isolation (no DB_* variable or .env file leaks into a test)
- SQLite settings backed by a file under ``tmp_path``
- A small schema used across driver, manager and facade tests
- Fake asyncpg pool/connection builders for PostgreSQL driver tests

Usage:
    async def test_something(sqlite_settings, schema):
        async with create_database(sqlite_settings) as db:
            ...
"""

import os
import sys
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

# Ensure dualdb is importable without installation
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from dualdb.schema import AddColumn, AddIndex, SchemaDefinition
from dualdb.settings import DatabaseSettings

SQLITE_DDL = """
CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,
    name TEXT
);

CREATE TABLE IF NOT EXISTS orders (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id INTEGER NOT NULL REFERENCES users(id),
    total REAL NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
"""

POSTGRES_DDL = """
CREATE TABLE IF NOT EXISTS users (
    id SERIAL PRIMARY KEY,
    email TEXT NOT NULL UNIQUE,
    name TEXT
);

CREATE TABLE IF NOT EXISTS orders (
    id SERIAL PRIMARY KEY,
    user_id INTEGER NOT NULL REFERENCES users(id),
    total NUMERIC NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Environment isolation
# =============================================================================


@pytest.fixture(autouse=True)
def clean_db_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Strip DB_* variables and run from an empty directory (no .env pickup)."""
    for key in list(os.environ):
        if key.startswith("DB_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    yield


# =============================================================================
# Settings / schema fixtures
# =============================================================================


@pytest.fixture
def sqlite_path(tmp_path: Path) -> str:
    return str(tmp_path / "data" / "test.db")


@pytest.fixture
def sqlite_settings(sqlite_path: str) -> DatabaseSettings:
    return DatabaseSettings(client="sqlite3", path=sqlite_path)


@pytest.fixture
def pg_settings() -> DatabaseSettings:
    return DatabaseSettings(client="pg", host="db.internal", name="shop", user="app", pool_max=5)


@pytest.fixture
def schema() -> SchemaDefinition:
    return SchemaDefinition(
        sqlite_ddl=SQLITE_DDL,
        postgresql_ddl=POSTGRES_DDL,
        migrations=[
            AddColumn("users", "specifications", sqlite_type="TEXT", postgresql_type="JSONB"),
            AddIndex("idx_orders_user", "orders", ["user_id"]),
        ],
    )


@pytest.fixture
def schema_file(tmp_path: Path) -> Path:
    path = tmp_path / "schema.sql"
    path.write_text(SQLITE_DDL, encoding="utf-8")
    return path


# =============================================================================
# Fake asyncpg objects
# =============================================================================


def make_pg_connection(
    *,
    rows: list[dict[str, Any]] | None = None,
    status: str = "SELECT 0",
) -> MagicMock:
    """Connection double whose reads return ``rows`` and whose prepared
    statements report ``status``."""
    rows = rows or []
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=rows)
    conn.fetchrow = AsyncMock(return_value=rows[0] if rows else None)
    conn.fetchval = AsyncMock(return_value="PostgreSQL 16.2 on x86_64-pc-linux-gnu")
    conn.execute = AsyncMock(return_value="CREATE TABLE")

    stmt = MagicMock()
    stmt.fetch = AsyncMock(return_value=rows)
    stmt.get_statusmsg = MagicMock(return_value=status)
    conn.prepare = AsyncMock(return_value=stmt)

    tx = MagicMock()
    tx.start = AsyncMock()
    tx.commit = AsyncMock()
    tx.rollback = AsyncMock()
    conn.transaction = MagicMock(return_value=tx)
    return conn


class FakeLease:
    """Stands in for asyncpg's ``PoolAcquireContext``: awaitable and an
    async context manager. Counts exits so tests can assert release."""

    def __init__(self, conn: MagicMock):
        self.conn = conn
        self.entered = 0
        self.exited = 0

    def __await__(self):
        return _resolve(self.conn).__await__()

    async def __aenter__(self) -> MagicMock:
        self.entered += 1
        return self.conn

    async def __aexit__(self, *exc_info: Any) -> bool:
        self.exited += 1
        return False


async def _resolve(value: Any) -> Any:
    return value


def make_pg_pool(conn: MagicMock) -> MagicMock:
    """Pool double handing out ``conn``; ``pool.lease`` records context-manager use."""
    pool = MagicMock()
    pool.lease = FakeLease(conn)
    pool.acquire = MagicMock(return_value=pool.lease)
    pool.release = AsyncMock()
    pool.close = AsyncMock()
    pool.get_size.return_value = 2
    pool.get_idle_size.return_value = 1
    pool.get_min_size.return_value = 1
    pool.get_max_size.return_value = 5
    return pool


@pytest.fixture
def pg_connection_factory():
    return make_pg_connection


@pytest.fixture
def pg_lease_factory():
    return FakeLease


@pytest.fixture
def pg_conn() -> MagicMock:
    return make_pg_connection()


@pytest.fixture
def pg_pool(pg_conn: MagicMock) -> MagicMock:
    return make_pg_pool(pg_conn)
