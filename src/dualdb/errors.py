"""
Structured error types for the dualdb data-access layer.

Every failure that crosses the facade boundary is a ``DualDBError`` subclass
carrying a category, a retryable flag, and the chained native exception, so
callers can apply their own retry/backoff without parsing driver messages.

Manifesto:
    - **Typed hierarchy:** One class per failure domain (config, connection,
      statement, transaction, migration, lifecycle)
    - **Explicit retry semantics:** Connection failures are retryable,
      statement and configuration failures are not
    - **Error chaining:** Native ``sqlite3`` / ``asyncpg`` errors are kept as
      ``cause`` and ``__cause__``
    - **No wrapping of caller errors:** Exceptions raised inside a transaction
      callback are re-raised unchanged

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                        DualDBError                           │
        │           (category, retryable, context, cause)             │
        ├─────────────────────────────────────────────────────────────┤
        │  ConfigError            DatabaseConnectionError             │
        │  (CONFIG)               (CONNECTION, retryable)             │
        │     │                                                        │
        │  InvalidConfigError     StatementError                       │
        │                         (STATEMENT)                          │
        │                            │                                 │
        │                         ConstraintViolationError             │
        │                                                              │
        │  TransactionError       MigrationError      LifecycleError   │
        │  (TRANSACTION)          (MIGRATION)         (LIFECYCLE)      │
        └─────────────────────────────────────────────────────────────┘

Examples:
    >>> err = StatementError("syntax error near 'SELEC'")
    >>> err.retryable
    False
    >>> err.to_dict()["category"]
    'STATEMENT'

Tags:
    error-handling, exception-hierarchy, database, dualdb
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Failure domains used for classification and log routing."""

    CONFIG = "CONFIG"
    CONNECTION = "CONNECTION"
    STATEMENT = "STATEMENT"
    TRANSACTION = "TRANSACTION"
    MIGRATION = "MIGRATION"
    LIFECYCLE = "LIFECYCLE"
    INTERNAL = "INTERNAL"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging.

    Only non-None fields are serialized by ``to_dict()``; anything without a
    dedicated field goes in ``metadata``.
    """

    engine: str | None = None
    operation: str | None = None
    sql: str | None = None
    table: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["engine", "operation", "sql", "table"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class DualDBError(Exception):
    """
    Base exception for every error raised by dualdb.

    Subclasses set ``default_category`` and ``default_retryable``; both can be
    overridden per instance.

    Examples:
        >>> try:
        ...     raise OSError("connection refused")
        ... except OSError as e:
        ...     error = DatabaseConnectionError("Failed to connect", cause=e)
        >>> error.cause
        OSError('connection refused')
        >>> error.retryable
        True
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> DualDBError:
        """
        Add context to this error (fluent API).

        Usage:
            raise StatementError("Failed").with_context(engine="sqlite", sql=sql)
        """
        for key, value in kwargs.items():
            if key != "metadata" and hasattr(self.context, key):
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION ERRORS
# =============================================================================


class ConfigError(DualDBError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class InvalidConfigError(ConfigError):
    """Configuration value is invalid."""

    def __init__(self, key: str, value: Any, message: str | None = None):
        self.key = key
        self.value = value
        super().__init__(message or f"Invalid configuration for {key}: {value!r}")


# =============================================================================
# CONNECTION ERRORS
# =============================================================================


class DatabaseConnectionError(DualDBError):
    """Engine unreachable or misconfigured. Fatal at startup."""

    default_category = ErrorCategory.CONNECTION
    default_retryable = True


# =============================================================================
# STATEMENT ERRORS
# =============================================================================


class StatementError(DualDBError):
    """Malformed SQL or driver-level statement failure. Never retried."""

    default_category = ErrorCategory.STATEMENT
    default_retryable = False


class ConstraintViolationError(StatementError):
    """Unique, foreign-key, not-null or check constraint violated."""

    pass


# =============================================================================
# TRANSACTION / MIGRATION / LIFECYCLE ERRORS
# =============================================================================


class TransactionError(DualDBError):
    """BEGIN/COMMIT/ROLLBACK failed, or a closed transaction handle was reused."""

    default_category = ErrorCategory.TRANSACTION
    default_retryable = False


class MigrationError(DualDBError):
    """An additive column/index migration failed for a reason other than
    "already applied"."""

    default_category = ErrorCategory.MIGRATION
    default_retryable = False

    def __init__(self, message: str, *, migration: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.migration = migration

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.migration:
            result["migration"] = self.migration
        return result


class LifecycleError(DualDBError):
    """Operation issued before ``initialize()`` or ``initialize()`` called twice."""

    default_category = ErrorCategory.LIFECYCLE
    default_retryable = False


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, DualDBError):
        return error.retryable
    return False


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "DualDBError",
    "ConfigError",
    "InvalidConfigError",
    "DatabaseConnectionError",
    "StatementError",
    "ConstraintViolationError",
    "TransactionError",
    "MigrationError",
    "LifecycleError",
    "is_retryable",
]
