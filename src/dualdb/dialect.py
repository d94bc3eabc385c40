"""Engine capability interface: placeholder rewriting, result shapes, SQL fragments.

Calling code always writes SQLite-style ``?`` markers. Each ``Dialect`` knows
how to turn that canonical statement into its engine's native form, how to
normalize the engine's raw write outcome, and how to spell the handful of
fragments (pagination, pattern match, date arithmetic, metadata probes) that
differ between engines.

Manifesto:
    The facade must never branch on engine identity. Everything engine-specific
    lives behind one interface with one implementation per engine, selected
    once at startup.

    - **One interface:** ``Dialect`` protocol for every engine difference
    - **Stateless:** dialects are pre-instantiated singletons
    - **Literal-aware:** markers inside strings, quoted identifiers and
      comments are never rewritten

Architecture::

    caller SQL:  SELECT * FROM t WHERE a = ? AND b LIKE ?
                              │
              ┌───────────────┴────────────────┐
              ▼                                ▼
    ┌───────────────────┐          ┌──────────────────────┐
    │ SQLiteDialect     │          │ PostgreSQLDialect    │
    │ $n  -> ?          │          │ ?   -> $1, $2, ...   │
    │ lastrowid -> id   │          │ RETURNING id -> id   │
    │ datetime('now')   │          │ NOW()                │
    └───────────────────┘          └──────────────────────┘

Examples:
    >>> d = get_dialect("postgresql")
    >>> d.convert_placeholders("INSERT INTO t (a, b) VALUES (?, ?)")
    'INSERT INTO t (a, b) VALUES ($1, $2)'
    >>> d.convert_placeholders("SELECT '?' AS q, a FROM t WHERE b = ?")
    "SELECT '?' AS q, a FROM t WHERE b = $1"

Guardrails:
    ❌ DON'T: Re-apply ``convert_placeholders`` to its own PostgreSQL output
       and then hand it to the SQLite dialect; ``$n`` numbering is discarded
    ✅ DO: Convert exactly once, at dispatch time

    ❌ DON'T: Use the PostgreSQL jsonb ``?`` / ``?|`` / ``?&`` operators in
       caller SQL; they are indistinguishable from markers
    ✅ DO: Use ``jsonb_exists()`` / ``jsonb_exists_any()`` instead

Tags:
    dialect, sql, placeholders, portability, sqlite, postgresql
"""

from __future__ import annotations

import re
from itertools import count
from typing import Any, Protocol, runtime_checkable

from dualdb.engine import EngineKind, resolve_engine
from dualdb.types import Operation, StatementOutcome, WriteResult

# String literals, quoted identifiers, comments and dollar-quoted bodies.
# Markers inside any of these are left alone.
_LITERAL_RE = re.compile(
    r"""
      '(?:[^']|'')*'
    | "(?:[^"]|"")*"
    | --[^\n]*
    | /\*.*?\*/
    | \$(?P<tag>[A-Za-z_][A-Za-z0-9_]*|)\$.*?\$(?P=tag)\$
    """,
    re.VERBOSE | re.DOTALL,
)

_QMARK_RE = re.compile(r"\?")
_NUMBERED_RE = re.compile(r"\$(\d+)")

_COMPARISON_OPERATORS = frozenset({"<", "<=", ">", ">=", "=", "!=", "<>"})
_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")


def rewrite_outside_literals(sql: str, pattern: re.Pattern[str], repl: Any) -> str:
    """Apply ``pattern.sub(repl, ...)`` only to the code parts of ``sql``."""
    parts: list[str] = []
    pos = 0
    for match in _LITERAL_RE.finditer(sql):
        parts.append(pattern.sub(repl, sql[pos : match.start()]))
        parts.append(match.group(0))
        pos = match.end()
    parts.append(pattern.sub(repl, sql[pos:]))
    return "".join(parts)


def check_identifier(column: str) -> str:
    if not _IDENTIFIER_RE.match(column):
        raise ValueError(f"Invalid column reference: {column!r}")
    return column


def _check_operator(operator: str) -> str:
    if operator not in _COMPARISON_OPERATORS:
        raise ValueError(f"Unsupported comparison operator: {operator!r}")
    return operator


def _check_operation(operation: str) -> None:
    if operation not in ("query", "get", "execute"):
        raise ValueError(f"Unknown operation: {operation!r}")


@runtime_checkable
class Dialect(Protocol):
    """Per-engine capability contract.

    Fragment methods return SQL text; callers interpolate them into their own
    statement templates. Parameter indexes are 1-based positions in the full
    parameter list of the final statement.
    """

    @property
    def engine(self) -> EngineKind:
        """Engine this dialect serves."""
        ...

    @property
    def name(self) -> str:
        """Human-readable dialect name (e.g. ``'sqlite'``)."""
        ...

    # -- Placeholders / results --------------------------------------------

    def convert_placeholders(self, sql: str) -> str:
        """Rewrite canonical ``?`` markers to the engine's native markers."""
        ...

    def convert_result(self, raw: Any, operation: Operation) -> Any:
        """Normalize a driver's raw outcome.

        ``execute`` outcomes become :class:`WriteResult`; rows from ``query``
        and ``get`` pass through unchanged.
        """
        ...

    # -- Fragments ---------------------------------------------------------

    def limit_clause(self, limit_index: int = 1, offset_index: int = 2) -> str:
        """``LIMIT … OFFSET …`` with parameter markers."""
        ...

    def like_clause(self, column: str, param_index: int = 1, *, case_insensitive: bool = False) -> str:
        """Pattern-match predicate on ``column``."""
        ...

    def date_comparison(self, column: str, operator: str) -> str:
        """``column <op> (now - ? days)``; takes one day-count parameter."""
        ...

    def date_range(self, column: str) -> str:
        """``column BETWEEN (now - ? days) AND (now - ? days)``."""
        ...

    def now(self) -> str:
        """Current-timestamp expression."""
        ...

    # -- Introspection / DDL -------------------------------------------------

    def health_query(self) -> str:
        """Trivial read used by health checks."""
        ...

    def column_exists_query(self) -> str:
        """Probe taking (table, column) parameters; returns a row if present."""
        ...

    def index_exists_query(self) -> str:
        """Probe taking (index_name,) parameter; returns a row if present."""
        ...

    def add_column_sql(self, table: str, column: str, column_type: str) -> str:
        """``ALTER TABLE … ADD COLUMN …``."""
        ...

    def create_index_sql(self, name: str, table: str, columns: list[str], *, unique: bool = False) -> str:
        """``CREATE [UNIQUE] INDEX IF NOT EXISTS …``."""
        ...


# =========================================================================
# Concrete Dialect Implementations
# =========================================================================


class SQLiteDialect:
    """SQLite dialect — ``?`` markers, ``lastrowid`` ids, ``datetime('now')``."""

    @property
    def engine(self) -> EngineKind:
        return EngineKind.EMBEDDED

    @property
    def name(self) -> str:
        return "sqlite"

    # -- Placeholders / results --------------------------------------------

    def convert_placeholders(self, sql: str) -> str:
        # $n -> ?; n is discarded, so out-of-order numbering is not preserved
        return rewrite_outside_literals(sql, _NUMBERED_RE, "?")

    def convert_result(self, raw: Any, operation: Operation) -> Any:
        _check_operation(operation)
        if operation != "execute":
            return raw
        outcome: StatementOutcome = raw
        # the driver reports lastrowid only for inserting statements
        row_id = outcome.lastrowid if outcome.lastrowid else None
        return WriteResult(id=row_id, changes=max(outcome.rowcount, 0))

    # -- Fragments ---------------------------------------------------------

    def limit_clause(self, limit_index: int = 1, offset_index: int = 2) -> str:  # noqa: ARG002
        return "LIMIT ? OFFSET ?"

    def like_clause(self, column: str, param_index: int = 1, *, case_insensitive: bool = False) -> str:  # noqa: ARG002
        return f"{check_identifier(column)} LIKE ?"

    def date_comparison(self, column: str, operator: str) -> str:
        col = check_identifier(column)
        op = _check_operator(operator)
        return f"{col} {op} datetime('now', '-' || ? || ' days')"

    def date_range(self, column: str) -> str:
        col = check_identifier(column)
        return f"{col} BETWEEN datetime('now', '-' || ? || ' days') AND datetime('now', '-' || ? || ' days')"

    def now(self) -> str:
        return "datetime('now')"

    # -- Introspection / DDL -------------------------------------------------

    def health_query(self) -> str:
        return "SELECT 1 AS health_check"

    def column_exists_query(self) -> str:
        return "SELECT name FROM pragma_table_info(?) WHERE name = ?"

    def index_exists_query(self) -> str:
        return "SELECT name FROM sqlite_master WHERE type = 'index' AND name = ?"

    def add_column_sql(self, table: str, column: str, column_type: str) -> str:
        return f"ALTER TABLE {check_identifier(table)} ADD COLUMN {check_identifier(column)} {column_type}"

    def create_index_sql(self, name: str, table: str, columns: list[str], *, unique: bool = False) -> str:
        kind = "UNIQUE INDEX" if unique else "INDEX"
        cols = ", ".join(check_identifier(c) for c in columns)
        return f"CREATE {kind} IF NOT EXISTS {check_identifier(name)} ON {check_identifier(table)} ({cols})"


class PostgreSQLDialect:
    """PostgreSQL dialect — ``$n`` markers (asyncpg), ``RETURNING id``, ``NOW()``."""

    @property
    def engine(self) -> EngineKind:
        return EngineKind.CLIENT_SERVER

    @property
    def name(self) -> str:
        return "postgresql"

    # -- Placeholders / results --------------------------------------------

    def convert_placeholders(self, sql: str) -> str:
        numbers = count(1)
        return rewrite_outside_literals(sql, _QMARK_RE, lambda _m: f"${next(numbers)}")

    def convert_result(self, raw: Any, operation: Operation) -> Any:
        _check_operation(operation)
        if operation != "execute":
            return raw
        outcome: StatementOutcome = raw
        row_id = None
        if outcome.rows:
            row_id = outcome.rows[0].get("id")
        return WriteResult(id=row_id, changes=outcome.rowcount)

    # -- Fragments ---------------------------------------------------------

    def limit_clause(self, limit_index: int = 1, offset_index: int = 2) -> str:
        return f"LIMIT ${limit_index} OFFSET ${offset_index}"

    def like_clause(self, column: str, param_index: int = 1, *, case_insensitive: bool = False) -> str:
        keyword = "ILIKE" if case_insensitive else "LIKE"
        return f"{check_identifier(column)} {keyword} ${param_index}"

    def date_comparison(self, column: str, operator: str) -> str:
        col = check_identifier(column)
        op = _check_operator(operator)
        return f"{col} {op} (NOW() - (INTERVAL '1 day' * ?))"

    def date_range(self, column: str) -> str:
        col = check_identifier(column)
        return (
            f"{col} BETWEEN (NOW() - (INTERVAL '1 day' * ?)) "
            f"AND (NOW() - (INTERVAL '1 day' * ?))"
        )

    def now(self) -> str:
        return "NOW()"

    # -- Introspection / DDL -------------------------------------------------

    def health_query(self) -> str:
        return "SELECT NOW() AS current_time"

    def column_exists_query(self) -> str:
        return (
            "SELECT column_name FROM information_schema.columns "
            "WHERE table_schema = current_schema() AND table_name = $1 AND column_name = $2"
        )

    def index_exists_query(self) -> str:
        return "SELECT indexname FROM pg_indexes WHERE schemaname = current_schema() AND indexname = $1"

    def add_column_sql(self, table: str, column: str, column_type: str) -> str:
        return f"ALTER TABLE {check_identifier(table)} ADD COLUMN {check_identifier(column)} {column_type}"

    def create_index_sql(self, name: str, table: str, columns: list[str], *, unique: bool = False) -> str:
        kind = "UNIQUE INDEX" if unique else "INDEX"
        cols = ", ".join(check_identifier(c) for c in columns)
        return f"CREATE {kind} IF NOT EXISTS {check_identifier(name)} ON {check_identifier(table)} ({cols})"


# =========================================================================
# Registry / Factory
# =========================================================================

# Pre-instantiated singletons (dialects are stateless)
_DIALECTS: dict[EngineKind, Dialect] = {
    EngineKind.EMBEDDED: SQLiteDialect(),
    EngineKind.CLIENT_SERVER: PostgreSQLDialect(),
}


def get_dialect(engine: EngineKind | str) -> Dialect:
    """Get the dialect for an engine kind or any configured alias.

    Raises:
        InvalidConfigError: If ``engine`` is not a known alias.

    Example:
        >>> get_dialect("pg").name
        'postgresql'
    """
    return _DIALECTS[resolve_engine(engine)]


def register_dialect(engine: EngineKind, dialect: Dialect) -> None:
    """Replace the dialect used for ``engine`` (test doubles, instrumented dialects)."""
    _DIALECTS[engine] = dialect


__all__ = [
    "Dialect",
    "SQLiteDialect",
    "PostgreSQLDialect",
    "get_dialect",
    "register_dialect",
    "rewrite_outside_literals",
    "check_identifier",
]
