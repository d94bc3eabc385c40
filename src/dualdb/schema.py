"""Startup schema and additive migrations.

The business schema belongs to the caller. This module only describes what to
apply at startup: one DDL script per engine, then an ordered list of additive
changes (new columns, new indexes) that must be safe to re-run on every boot.

Example::

    schema = SchemaDefinition(
        sqlite_ddl=Path("schema.sql").read_text(),
        postgresql_ddl=Path("schema.pg.sql").read_text(),
        migrations=[
            AddColumn("cart_items", "specifications", sqlite_type="TEXT", postgresql_type="JSONB"),
            AddIndex("idx_orders_user", "orders", ["user_id"]),
        ],
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path

from dualdb.engine import EngineKind
from dualdb.errors import ConfigError


@dataclass(frozen=True)
class AddColumn:
    """Add ``column`` to ``table`` unless it already exists."""

    table: str
    column: str
    sqlite_type: str = "TEXT"
    postgresql_type: str | None = None

    def column_type(self, engine: EngineKind) -> str:
        if engine is EngineKind.CLIENT_SERVER:
            return self.postgresql_type or self.sqlite_type
        return self.sqlite_type

    def describe(self) -> str:
        return f"add column {self.table}.{self.column}"


@dataclass(frozen=True)
class AddIndex:
    """Create index ``name`` on ``table(columns)`` unless it already exists."""

    name: str
    table: str
    columns: list[str]
    unique: bool = False

    def describe(self) -> str:
        return f"add index {self.name} on {self.table}({', '.join(self.columns)})"


Migration = AddColumn | AddIndex


@dataclass
class SchemaDefinition:
    """DDL scripts per engine plus additive migrations, applied in order."""

    sqlite_ddl: str | None = None
    postgresql_ddl: str | None = None
    migrations: list[Migration] = field(default_factory=list)

    def ddl_for(self, engine: EngineKind) -> str | None:
        if engine is EngineKind.CLIENT_SERVER:
            return self.postgresql_ddl
        return self.sqlite_ddl

    @classmethod
    def from_file(cls, path: Path | str, engine: EngineKind, migrations: list[Migration] | None = None) -> SchemaDefinition:
        """Load a single engine's DDL script from ``path``."""
        script = Path(path)
        if not script.is_file():
            raise ConfigError(f"Schema file does not exist: {script}")
        ddl = script.read_text(encoding="utf-8")
        if engine is EngineKind.CLIENT_SERVER:
            return cls(postgresql_ddl=ddl, migrations=list(migrations or []))
        return cls(sqlite_ddl=ddl, migrations=list(migrations or []))


def is_already_applied(exc: BaseException) -> bool:
    """Whether a migration failure just means the change is already in place."""
    # "duplicate key value" (unique index over duplicated data) is a real failure
    message = str(exc).lower()
    return "duplicate column" in message or "already exists" in message


__all__ = [
    "AddColumn",
    "AddIndex",
    "Migration",
    "SchemaDefinition",
    "is_already_applied",
]
