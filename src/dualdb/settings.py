"""Environment-driven configuration for the data-access layer.

All fields read from ``DB_*`` environment variables (or a ``.env`` file), so
the same process can be pointed at the embedded engine or the pooled engine
without code changes.

Examples:
    >>> from dualdb.settings import DatabaseSettings
    >>> s = DatabaseSettings(client="postgres", host="db", name="shop", user="app")
    >>> s.dsn()
    'postgresql://app@db:5432/shop'

Requires ``pydantic-settings``.
"""

from __future__ import annotations

import re
from pathlib import Path
from typing import Literal
from urllib.parse import quote

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def normalize_database_url(url: str) -> str:
    """Normalize a PostgreSQL URL for asyncpg.

    Strips SQLAlchemy-style driver suffixes (``postgresql+asyncpg://``) and the
    ``sslmode`` query parameter, which asyncpg configures through ``ssl=``.

    Examples:
        >>> normalize_database_url("postgresql+asyncpg://localhost/db")
        'postgresql://localhost/db'
        >>> normalize_database_url("postgres://localhost/db?sslmode=require")
        'postgres://localhost/db'
    """
    url = re.sub(r"^(postgres(?:ql)?)\+\w+://", r"\1://", url)

    if "?sslmode=" in url or "&sslmode=" in url:
        url = re.sub(r"[?&]sslmode=[^&]*", "", url)
        url = url.rstrip("?&")
        # a remaining parameter may have lost its leading "?"
        if "?" not in url and "&" in url:
            url = url.replace("&", "?", 1)

    return url


class DatabaseSettings(BaseSettings):
    """Connection and startup settings.

    Fields
    ──────
    client        : engine selector alias (``sqlite3``, ``sqlite``, ``pg``,
                    ``postgres``, ``postgresql``), case-insensitive
    path          : embedded engine database file (``:memory:`` allowed)
    host … ssl    : pooled engine connection parameters
    pool_*        : pool sizing and timeouts (milliseconds, as in DB_* env)
    url           : full PostgreSQL URL, overrides host/port/name/user/password
    schema_path   : DDL script applied at startup
    strict_migrations : fail ``initialize()`` on a migration error
    log_level     : structlog level for library events (CLI default)
    """

    model_config = SettingsConfigDict(
        env_prefix="DB_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Engine selection ─────────────────────────────────────────
    client: str = "sqlite3"

    # ── Embedded engine ──────────────────────────────────────────
    path: str = Field(
        default="data/store.db",
        description="SQLite database file",
    )

    # ── Pooled engine ────────────────────────────────────────────
    url: str | None = None
    host: str = "localhost"
    port: int = 5432
    name: str = ""
    user: str | None = None
    password: SecretStr | None = None
    ssl: bool = False

    pool_min: int = Field(default=1, ge=0)
    pool_max: int = Field(default=20, ge=1)
    pool_idle_timeout: int = Field(default=30000, ge=0, description="ms before an idle connection is closed")
    pool_connection_timeout: int = Field(default=2000, ge=0, description="ms to wait when opening a connection")
    command_timeout: float | None = Field(default=None, description="seconds per statement, None for no limit")

    # ── Startup ──────────────────────────────────────────────────
    schema_path: Path | None = None
    strict_migrations: bool = True

    # ── Observability ────────────────────────────────────────────
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"

    @field_validator("log_level", mode="before")
    @classmethod
    def _upper_log_level(cls, v: object) -> object:
        return v.upper() if isinstance(v, str) else v

    def dsn(self) -> str:
        """PostgreSQL connection URL, built from parts unless ``url`` is set."""
        if self.url:
            return normalize_database_url(self.url)

        auth = ""
        if self.user:
            auth = quote(self.user, safe="")
            if self.password is not None:
                auth += ":" + quote(self.password.get_secret_value(), safe="")
            auth += "@"
        return f"postgresql://{auth}{self.host}:{self.port}/{self.name}"


__all__ = [
    "DatabaseSettings",
    "normalize_database_url",
]
