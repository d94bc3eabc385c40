"""Result and transaction-handle types shared by drivers, adapter and facade."""

from __future__ import annotations

from dataclasses import dataclass, field
from itertools import count
from typing import Any, Literal

from dualdb.engine import EngineKind
from dualdb.errors import TransactionError

Row = dict[str, Any]
Params = tuple[Any, ...] | list[Any]
Operation = Literal["query", "get", "execute"]

_handle_ids = count(1)


@dataclass
class StatementOutcome:
    """Engine-neutral raw outcome of a write, before normalization.

    ``rows`` holds whatever the statement returned (``RETURNING`` rows on
    PostgreSQL, always empty on SQLite). ``lastrowid`` is only supplied by
    engines that track it natively.
    """

    rows: list[Row] = field(default_factory=list)
    rowcount: int = 0
    lastrowid: int | None = None


@dataclass(frozen=True)
class WriteResult:
    """Normalized result of ``execute``: generated id and affected-row count."""

    id: Any
    changes: int

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "changes": self.changes}


class TransactionHandle:
    """Opaque scope bound to one open transaction.

    Every engine returns one from ``begin()``. On the pooled engine it owns the
    leased connection; on the embedded engine it wraps the single shared
    connection, so two open handles are not isolated from each other.
    """

    def __init__(self, engine: EngineKind, connection: Any, transaction: Any = None, source: Any = None):
        self.id = next(_handle_ids)
        self.engine = engine
        self._connection = connection
        self._transaction = transaction
        self._source = source
        self._closed = False

    @property
    def connection(self) -> Any:
        self.ensure_open()
        return self._connection

    @property
    def transaction(self) -> Any:
        return self._transaction

    @property
    def source(self) -> Any:
        """Where the connection came from (the pool on the pooled engine)."""
        return self._source

    @property
    def closed(self) -> bool:
        return self._closed

    def ensure_open(self) -> None:
        if self._closed:
            raise TransactionError(f"Transaction {self.id} is already closed").with_context(
                engine=self.engine.value
            )

    def close(self) -> None:
        self._closed = True

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"TransactionHandle(id={self.id}, engine={self.engine.value!r}, {state})"


__all__ = [
    "Row",
    "Params",
    "Operation",
    "StatementOutcome",
    "WriteResult",
    "TransactionHandle",
]
