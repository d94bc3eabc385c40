"""Tests for ``dualdb.drivers.postgresql`` — pooled asyncpg driver (mocked pool)."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import asyncpg
import pytest

from dualdb.drivers.base import DriverState
from dualdb.drivers.postgresql import PostgreSQLDriver, parse_rowcount
from dualdb.errors import (
    ConstraintViolationError,
    DatabaseConnectionError,
    LifecycleError,
    MigrationError,
    StatementError,
    TransactionError,
)
from dualdb.schema import AddColumn, AddIndex, SchemaDefinition


async def _connected(settings, pool) -> PostgreSQLDriver:
    driver = PostgreSQLDriver(settings)
    with patch("asyncpg.create_pool", new=AsyncMock(return_value=pool)):
        await driver.connect()
    return driver


class TestParseRowcount:
    @pytest.mark.parametrize(
        ("status", "expected"),
        [
            ("INSERT 0 3", 3),
            ("UPDATE 2", 2),
            ("DELETE 0", 0),
            ("SELECT 5", 5),
            ("CREATE TABLE", 0),
            ("", 0),
            (None, 0),
        ],
    )
    def test_parse(self, status, expected):
        assert parse_rowcount(status) == expected


class TestPostgreSQLDriverConnect:
    @pytest.mark.asyncio
    @patch("asyncpg.create_pool", new_callable=AsyncMock)
    async def test_pool_settings(self, mock_create_pool, pg_settings, pg_pool, pg_conn):
        mock_create_pool.return_value = pg_pool
        driver = PostgreSQLDriver(pg_settings)

        await driver.connect()

        args, kwargs = mock_create_pool.call_args
        assert args == ("postgresql://app@db.internal:5432/shop",)
        assert kwargs["min_size"] == 1
        assert kwargs["max_size"] == 5
        assert kwargs["max_inactive_connection_lifetime"] == 30.0
        assert kwargs["timeout"] == 2.0
        assert kwargs["ssl"] is False
        assert kwargs["command_timeout"] is None
        pg_conn.fetchval.assert_awaited_once_with("SELECT version()")
        assert pg_pool.lease.exited == 1
        assert driver.state is DriverState.CONNECTED

    @pytest.mark.asyncio
    @patch("asyncpg.create_pool", new_callable=AsyncMock)
    async def test_connect_is_idempotent(self, mock_create_pool, pg_settings, pg_pool):
        mock_create_pool.return_value = pg_pool
        driver = PostgreSQLDriver(pg_settings)
        await driver.connect()
        await driver.connect()
        mock_create_pool.assert_awaited_once()

    @pytest.mark.asyncio
    @patch("asyncpg.create_pool", new_callable=AsyncMock)
    async def test_unreachable_server(self, mock_create_pool, pg_settings):
        mock_create_pool.side_effect = OSError("Connection refused")
        driver = PostgreSQLDriver(pg_settings)

        with pytest.raises(DatabaseConnectionError) as exc_info:
            await driver.connect()

        assert exc_info.value.retryable is True
        assert isinstance(exc_info.value.cause, OSError)
        assert driver.state is DriverState.DISCONNECTED

    @pytest.mark.asyncio
    @patch("asyncpg.create_pool", new_callable=AsyncMock)
    async def test_failed_probe_closes_pool(self, mock_create_pool, pg_settings, pg_pool, pg_conn):
        mock_create_pool.return_value = pg_pool
        pg_conn.fetchval.side_effect = asyncpg.InvalidPasswordError("password authentication failed")
        driver = PostgreSQLDriver(pg_settings)

        with pytest.raises(DatabaseConnectionError, match="probe failed"):
            await driver.connect()

        pg_pool.close.assert_awaited_once()
        assert driver.is_connected is False

    @pytest.mark.asyncio
    async def test_close(self, pg_settings, pg_pool):
        driver = await _connected(pg_settings, pg_pool)
        await driver.close()
        await driver.close()
        pg_pool.close.assert_awaited_once()
        assert driver.state is DriverState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_query_before_connect(self, pg_settings):
        driver = PostgreSQLDriver(pg_settings)
        with pytest.raises(LifecycleError):
            await driver.query("SELECT 1")


class TestPostgreSQLDriverStatements:
    @pytest.mark.asyncio
    async def test_query_leases_and_releases(self, pg_settings, pg_pool, pg_conn):
        pg_conn.fetch.return_value = [{"id": 1, "email": "a@x.io"}]
        driver = await _connected(pg_settings, pg_pool)

        rows = await driver.query("SELECT * FROM users WHERE id = $1", (1,))

        assert rows == [{"id": 1, "email": "a@x.io"}]
        pg_conn.fetch.assert_awaited_once_with("SELECT * FROM users WHERE id = $1", 1)
        # one lease for the probe, one for the query
        assert pg_pool.lease.exited == 2

    @pytest.mark.asyncio
    async def test_get(self, pg_settings, pg_pool, pg_conn):
        pg_conn.fetchrow.return_value = {"id": 1}
        driver = await _connected(pg_settings, pg_pool)

        assert await driver.get("SELECT id FROM users LIMIT 1") == {"id": 1}

        pg_conn.fetchrow.return_value = None
        assert await driver.get("SELECT id FROM users LIMIT 1") is None

    @pytest.mark.asyncio
    async def test_execute_uses_prepared_statement(self, pg_settings, pg_pool, pg_conn):
        stmt = pg_conn.prepare.return_value
        stmt.fetch.return_value = [{"id": 9}]
        stmt.get_statusmsg.return_value = "INSERT 0 1"
        driver = await _connected(pg_settings, pg_pool)

        outcome = await driver.execute("INSERT INTO users (email) VALUES ($1) RETURNING id", ("a@x.io",))

        pg_conn.prepare.assert_awaited_once_with("INSERT INTO users (email) VALUES ($1) RETURNING id")
        stmt.fetch.assert_awaited_once_with("a@x.io")
        assert outcome.rows == [{"id": 9}]
        assert outcome.rowcount == 1

    @pytest.mark.asyncio
    async def test_constraint_violation_releases_connection(self, pg_settings, pg_pool, pg_conn):
        pg_conn.prepare.return_value.fetch.side_effect = asyncpg.UniqueViolationError(
            'duplicate key value violates unique constraint "users_email_key"'
        )
        driver = await _connected(pg_settings, pg_pool)

        with pytest.raises(ConstraintViolationError) as exc_info:
            await driver.execute("INSERT INTO users (email) VALUES ($1)", ("a@x.io",))

        assert isinstance(exc_info.value.cause, asyncpg.UniqueViolationError)
        assert exc_info.value.context.engine == "postgresql"
        assert pg_pool.lease.exited == 2

    @pytest.mark.asyncio
    async def test_statement_error(self, pg_settings, pg_pool, pg_conn):
        pg_conn.fetch.side_effect = asyncpg.UndefinedTableError('relation "nope" does not exist')
        driver = await _connected(pg_settings, pg_pool)

        with pytest.raises(StatementError) as exc_info:
            await driver.query("SELECT * FROM nope")

        assert not isinstance(exc_info.value, ConstraintViolationError)
        assert exc_info.value.context.sql == "SELECT * FROM nope"
        assert pg_pool.lease.exited == 2

    @pytest.mark.asyncio
    async def test_timeout_is_retryable_statement_error(self, pg_settings, pg_pool, pg_conn):
        pg_conn.fetch.side_effect = TimeoutError()
        driver = await _connected(pg_settings, pg_pool)

        with pytest.raises(StatementError) as exc_info:
            await driver.query("SELECT pg_sleep(10)")

        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_lost_connection(self, pg_settings, pg_pool, pg_conn):
        pg_conn.fetch.side_effect = ConnectionResetError("reset by peer")
        driver = await _connected(pg_settings, pg_pool)

        with pytest.raises(DatabaseConnectionError):
            await driver.query("SELECT 1")


class TestPostgreSQLDriverTransactions:
    @pytest.mark.asyncio
    async def test_begin_commit(self, pg_settings, pg_pool, pg_conn):
        driver = await _connected(pg_settings, pg_pool)
        tx = pg_conn.transaction.return_value

        handle = await driver.begin()
        assert handle.connection is pg_conn
        tx.start.assert_awaited_once()

        await driver.commit(handle)
        tx.commit.assert_awaited_once()
        tx.rollback.assert_not_awaited()
        pg_pool.release.assert_awaited_once_with(pg_conn)
        assert handle.closed

    @pytest.mark.asyncio
    async def test_begin_rollback(self, pg_settings, pg_pool, pg_conn):
        driver = await _connected(pg_settings, pg_pool)
        tx = pg_conn.transaction.return_value

        handle = await driver.begin()
        await driver.rollback(handle)

        tx.rollback.assert_awaited_once()
        pg_pool.release.assert_awaited_once_with(pg_conn)
        assert handle.closed

    @pytest.mark.asyncio
    async def test_statements_use_held_connection(self, pg_settings, pg_pool, pg_conn):
        driver = await _connected(pg_settings, pg_pool)
        handle = await driver.begin()
        acquired = pg_pool.acquire.call_count

        await driver.query("SELECT 1", (), handle)
        await driver.execute("UPDATE users SET name = $1", ("x",), handle)

        assert pg_pool.acquire.call_count == acquired
        await driver.commit(handle)

    @pytest.mark.asyncio
    async def test_commit_failure_still_releases(self, pg_settings, pg_pool, pg_conn):
        pg_conn.transaction.return_value.commit.side_effect = asyncpg.SerializationError(
            "could not serialize access due to concurrent update"
        )
        driver = await _connected(pg_settings, pg_pool)
        handle = await driver.begin()

        with pytest.raises(TransactionError, match="COMMIT failed"):
            await driver.commit(handle)

        pg_pool.release.assert_awaited_once_with(pg_conn)
        assert handle.closed

    @pytest.mark.asyncio
    async def test_begin_failure_releases(self, pg_settings, pg_pool, pg_conn):
        pg_conn.transaction.return_value.start.side_effect = OSError("broken pipe")
        driver = await _connected(pg_settings, pg_pool)

        with pytest.raises(TransactionError, match="BEGIN failed"):
            await driver.begin()

        pg_pool.release.assert_awaited_once_with(pg_conn)

    @pytest.mark.asyncio
    async def test_closed_handle_is_rejected(self, pg_settings, pg_pool):
        driver = await _connected(pg_settings, pg_pool)
        handle = await driver.begin()
        await driver.commit(handle)

        with pytest.raises(TransactionError, match="already closed"):
            await driver.query("SELECT 1", (), handle)
        with pytest.raises(TransactionError):
            await driver.rollback(handle)
        pg_pool.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_cancelled_begin_releases(self, pg_settings, pg_pool, pg_conn):
        started = asyncio.Event()

        async def hang() -> None:
            started.set()
            await asyncio.Event().wait()

        pg_conn.transaction.return_value.start.side_effect = hang
        driver = await _connected(pg_settings, pg_pool)

        task = asyncio.create_task(driver.begin())
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        pg_pool.release.assert_awaited_once_with(pg_conn)

    @pytest.mark.asyncio
    async def test_finish_after_close_keeps_original_error(self, pg_settings, pg_pool, pg_conn):
        pg_conn.transaction.return_value.commit.side_effect = OSError("connection reset")
        driver = await _connected(pg_settings, pg_pool)
        handle = await driver.begin()
        await driver.close()

        with pytest.raises(TransactionError, match="COMMIT failed"):
            await driver.commit(handle)

        pg_pool.release.assert_awaited_once_with(pg_conn)
        assert handle.closed

    @pytest.mark.asyncio
    async def test_concurrent_transactions_hold_separate_connections(
        self, pg_settings, pg_pool, pg_connection_factory, pg_lease_factory
    ):
        conn_a = pg_connection_factory(rows=[{"who": "a"}])
        conn_b = pg_connection_factory(rows=[{"who": "b"}])
        driver = await _connected(pg_settings, pg_pool)
        pg_pool.acquire.reset_mock()
        pg_pool.acquire.side_effect = [pg_lease_factory(conn_a), pg_lease_factory(conn_b)]

        first, second = await asyncio.gather(driver.begin(), driver.begin())
        assert first.connection is conn_a
        assert second.connection is conn_b

        rows_a, rows_b = await asyncio.gather(
            driver.query("SELECT $1 AS who", ("a",), first),
            driver.query("SELECT $1 AS who", ("b",), second),
        )
        assert rows_a == [{"who": "a"}]
        assert rows_b == [{"who": "b"}]
        conn_a.fetch.assert_awaited_once_with("SELECT $1 AS who", "a")
        conn_b.fetch.assert_awaited_once_with("SELECT $1 AS who", "b")

        await asyncio.gather(driver.commit(first), driver.rollback(second))
        conn_a.transaction.return_value.commit.assert_awaited_once()
        conn_b.transaction.return_value.rollback.assert_awaited_once()
        conn_a.transaction.return_value.rollback.assert_not_awaited()
        released = [c.args[0] for c in pg_pool.release.await_args_list]
        assert sorted(map(id, released)) == sorted([id(conn_a), id(conn_b)])
        assert pg_pool.acquire.call_count == 2


class TestPostgreSQLDriverSchema:
    @pytest.mark.asyncio
    async def test_ddl_runs_on_one_connection(self, pg_settings, pg_pool, pg_conn, schema):
        driver = await _connected(pg_settings, pg_pool)

        report = await driver.initialize_schema(SchemaDefinition(postgresql_ddl=schema.postgresql_ddl))

        pg_conn.execute.assert_awaited_once_with(schema.postgresql_ddl)
        assert report.success
        assert driver.state is DriverState.SCHEMA_READY

    @pytest.mark.asyncio
    async def test_missing_column_is_added(self, pg_settings, pg_pool, pg_conn):
        pg_conn.fetchrow.return_value = None
        driver = await _connected(pg_settings, pg_pool)
        schema = SchemaDefinition(migrations=[AddColumn("users", "specifications", postgresql_type="JSONB")])

        report = await driver.initialize_schema(schema)

        assert report.applied == ["add column users.specifications"]
        probe_sql, *probe_args = pg_conn.fetchrow.call_args.args
        assert "information_schema.columns" in probe_sql
        assert probe_args == ["users", "specifications"]
        pg_conn.prepare.assert_awaited_once_with("ALTER TABLE users ADD COLUMN specifications JSONB")

    @pytest.mark.asyncio
    async def test_existing_column_and_index_are_skipped(self, pg_settings, pg_pool, pg_conn):
        pg_conn.fetchrow.return_value = {"column_name": "specifications"}
        driver = await _connected(pg_settings, pg_pool)
        schema = SchemaDefinition(
            migrations=[
                AddColumn("users", "specifications", postgresql_type="JSONB"),
                AddIndex("idx_orders_user", "orders", ["user_id"]),
            ]
        )

        report = await driver.initialize_schema(schema)

        assert report.applied == []
        assert len(report.skipped) == 2
        pg_conn.prepare.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_already_exists_error_counts_as_applied(self, pg_settings, pg_pool, pg_conn):
        # a concurrent startup can add the column between probe and ALTER
        pg_conn.fetchrow.return_value = None
        pg_conn.prepare.return_value.fetch.side_effect = asyncpg.DuplicateColumnError(
            'column "specifications" of relation "users" already exists'
        )
        driver = await _connected(pg_settings, pg_pool)

        report = await driver.initialize_schema(SchemaDefinition(migrations=[AddColumn("users", "specifications")]))

        assert report.skipped == ["add column users.specifications"]

    @pytest.mark.asyncio
    async def test_other_migration_failure_raises(self, pg_settings, pg_pool, pg_conn):
        pg_conn.fetchrow.return_value = None
        pg_conn.prepare.return_value.fetch.side_effect = asyncpg.UndefinedTableError(
            'relation "carts" does not exist'
        )
        driver = await _connected(pg_settings, pg_pool)

        with pytest.raises(MigrationError):
            await driver.initialize_schema(SchemaDefinition(migrations=[AddColumn("carts", "note")]))


class TestPostgreSQLDriverStats:
    @pytest.mark.asyncio
    async def test_stats(self, pg_settings, pg_pool, pg_conn):
        pg_conn.fetchrow.side_effect = [{"count": 3}, {"count": 0}, {"size": "8192 kB"}]
        driver = await _connected(pg_settings, pg_pool)

        stats = await driver.stats(["users", "orders"])

        assert stats["engine"] == "postgresql"
        assert stats["tables"] == {"users": 3, "orders": 0}
        assert stats["database_size"] == "8192 kB"
        assert stats["pool"] == {"size": 2, "idle": 1, "min": 1, "max": 5}

    @pytest.mark.asyncio
    async def test_pool_status(self, pg_settings, pg_pool):
        driver = await _connected(pg_settings, pg_pool)
        assert driver.pool_status()["max"] == 5
