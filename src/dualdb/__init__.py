"""dualdb -- one relational data-access layer over SQLite and PostgreSQL.

Manifesto:
    Application code should be written once. The same ``?``-marker SQL, the
    same result shapes and the same transaction callback must run unchanged
    against an embedded SQLite file in development and a pooled PostgreSQL
    server in production. The engine is picked from configuration at startup
    and nothing above the drivers branches on it.

Architecture::

    Layer 1 -- Foundations
        errors.py          Typed error hierarchy (category, retryable, cause)
        logging.py         structlog configuration
        settings.py        DB_* settings (pydantic-settings)
        engine.py          EngineKind + selector aliases
        types.py           WriteResult, StatementOutcome, TransactionHandle

    Layer 2 -- Engine differences
        dialect.py         Placeholder/result conversion + SQL fragments
        adapter.py         Stateless adapter functions, handle_transaction
        schema.py          Startup DDL + additive migrations

    Layer 3 -- Drivers
        drivers/sqlite.py      Shared sqlite3 connection, serialized
        drivers/postgresql.py  asyncpg pool, per-operation leases
        drivers/registry.py    EngineKind -> driver class

    Layer 4 -- Surface
        health.py          HealthReport model + probe
        manager.py         EngineManager lifecycle
        facade.py          Database / Transaction
        cli.py             ``dualdb`` command

Examples:
    >>> from dualdb import DatabaseSettings, create_database
    >>> db = create_database(DatabaseSettings(client="sqlite", path=":memory:"))
    >>> db.engine.value
    'sqlite'
"""

__version__ = "0.1.0"

from dualdb.adapter import (
    convert_placeholders,
    convert_result,
    get_like_syntax,
    get_limit_syntax,
    handle_transaction,
)
from dualdb.engine import EngineKind, resolve_engine
from dualdb.errors import (
    ConfigError,
    ConstraintViolationError,
    DatabaseConnectionError,
    DualDBError,
    InvalidConfigError,
    LifecycleError,
    MigrationError,
    StatementError,
    TransactionError,
)
from dualdb.facade import Database, Transaction, create_database
from dualdb.health import HealthReport
from dualdb.manager import EngineManager
from dualdb.schema import AddColumn, AddIndex, SchemaDefinition
from dualdb.settings import DatabaseSettings
from dualdb.types import TransactionHandle, WriteResult

__all__ = [
    "__version__",
    # adapter
    "convert_placeholders",
    "convert_result",
    "get_limit_syntax",
    "get_like_syntax",
    "handle_transaction",
    # engine
    "EngineKind",
    "resolve_engine",
    # errors
    "DualDBError",
    "ConfigError",
    "InvalidConfigError",
    "DatabaseConnectionError",
    "StatementError",
    "ConstraintViolationError",
    "TransactionError",
    "MigrationError",
    "LifecycleError",
    # surface
    "Database",
    "Transaction",
    "create_database",
    "EngineManager",
    "HealthReport",
    "DatabaseSettings",
    "SchemaDefinition",
    "AddColumn",
    "AddIndex",
    "TransactionHandle",
    "WriteResult",
]
